"""Queue-driven article ingestion."""

from .embedding_uploader import ChunkText, EmbeddingBatchUploader
from .pipeline import IngestionPipeline, QueueRunSummary

__all__ = ["ChunkText", "EmbeddingBatchUploader", "IngestionPipeline", "QueueRunSummary"]
