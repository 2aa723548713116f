"""Custom exception hierarchy for the ingestion and retrieval engine."""


class SepRagError(Exception):
    """Base exception for sep-rag errors."""


class ConfigError(SepRagError):
    """Raised when configuration is invalid or incomplete."""


class DatabaseError(SepRagError):
    """Raised when database operations fail."""


class FetchError(SepRagError):
    """Raised when an article cannot be fetched from the source site."""


class ParseError(SepRagError):
    """Raised when article HTML cannot be parsed into sections."""


class VectorIndexError(SepRagError):
    """Raised when vector indexing or search operations fail."""


class EmbeddingError(SepRagError):
    """Raised when the embedding service fails."""


class ContextLimitError(EmbeddingError):
    """Raised when an embedding batch exceeds the model's context window."""


class ChunkNotFoundError(SepRagError):
    """Raised when a chunk id does not exist in the store."""
