"""Hybrid vector + lexical retrieval with rank fusion and reranking."""

from .fusion import merge_with_rrf, rrf_score, sanitize_lexical_query
from .neighbors import get_chunk_neighbors, neighbor_indices
from .search import ChunkStore, HybridSearchEngine, PostgresChunkStore

__all__ = [
    "ChunkStore",
    "HybridSearchEngine",
    "PostgresChunkStore",
    "get_chunk_neighbors",
    "merge_with_rrf",
    "neighbor_indices",
    "rrf_score",
    "sanitize_lexical_query",
]
