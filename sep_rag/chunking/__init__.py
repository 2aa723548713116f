"""Token-bounded chunking of aligned section units."""

from .semantic_chunker import PREAMBLE_MAX_TOKENS, SectionProcessor, SemanticChunker

__all__ = ["PREAMBLE_MAX_TOKENS", "SectionProcessor", "SemanticChunker"]
