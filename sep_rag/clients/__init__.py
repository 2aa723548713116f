"""HTTP and language-model clients used by ingestion and search."""

from .base import BaseHttpClient, ClientError, NotFoundError, ServiceError
from .conversion import ConversionClient
from .sep import SepClient
from .workers_ai import WorkersAIClient

__all__ = [
    "BaseHttpClient",
    "ClientError",
    "ConversionClient",
    "NotFoundError",
    "SepClient",
    "ServiceError",
    "WorkersAIClient",
]
