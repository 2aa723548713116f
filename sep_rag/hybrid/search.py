"""Hybrid search: vector + lexical retrieval, rank fusion and reranking."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Protocol, Sequence

from sep_rag.clients.workers_ai import WorkersAIClient
from sep_rag.index.chroma import ChromaVectorIndex
from sep_rag.models import (
    ChunkPosition,
    ChunkWithContext,
    HybridSearchResult,
    LexicalMatch,
    NeighborChunk,
    VectorMatch,
    generation_blob_key,
)
from sep_rag.storage import dao
from sep_rag.storage.blobs import BlobStore
from sep_rag.storage.db import get_connection

from .fusion import merge_with_rrf, sanitize_lexical_query

logger = logging.getLogger(__name__)


class ChunkStore(Protocol):
    """Read access to persisted chunks needed at query time."""

    def get_chunks_with_context(self, chunk_ids: Sequence[str]) -> List[ChunkWithContext]:
        ...

    def search_lexical(self, query: str, limit: int) -> List[LexicalMatch]:
        ...

    def get_chunk_position(self, chunk_id: str) -> Optional[ChunkPosition]:
        ...

    def get_section_chunks(self, section_id: str, chunk_indices: Sequence[int]) -> List[NeighborChunk]:
        ...


class PostgresChunkStore:
    """:class:`ChunkStore` backed by the PostgreSQL schema; one connection per call."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn

    def get_chunks_with_context(self, chunk_ids: Sequence[str]) -> List[ChunkWithContext]:
        with get_connection(self.dsn) as conn:
            return dao.get_chunks_with_context(conn, chunk_ids)

    def search_lexical(self, query: str, limit: int) -> List[LexicalMatch]:
        with get_connection(self.dsn) as conn:
            return dao.search_chunks_lexical(conn, query, limit)

    def get_chunk_position(self, chunk_id: str) -> Optional[ChunkPosition]:
        with get_connection(self.dsn) as conn:
            return dao.get_chunk_position(conn, chunk_id)

    def get_section_chunks(self, section_id: str, chunk_indices: Sequence[int]) -> List[NeighborChunk]:
        with get_connection(self.dsn) as conn:
            return dao.get_section_chunks(conn, section_id, chunk_indices)


class HybridSearchEngine:
    """Answer queries by fusing dense and lexical rankings, then reranking."""

    def __init__(
        self,
        store: ChunkStore,
        vector_index: ChromaVectorIndex,
        workers_ai: WorkersAIClient,
        blobs: BlobStore,
    ) -> None:
        self.store = store
        self.vector_index = vector_index
        self.workers_ai = workers_ai
        self.blobs = blobs

    def _vector_search(self, query: str, top_k: int) -> List[VectorMatch]:
        embedding = self.workers_ai.embed_one(query)
        return self.vector_index.query(embedding, top_k=top_k)

    def _generation_text(self, chunk: ChunkWithContext) -> str:
        key = chunk.blob_key or generation_blob_key(chunk.chunk_id)
        try:
            return self.blobs.get_text(key)
        except KeyError:
            logger.warning("Generation text missing for chunk %s", chunk.chunk_id)
            return ""

    def search(
        self,
        query: str,
        top_k: int = 10,
        vector_top_k: int = 50,
        bm25_top_k: int = 50,
        rrf_top_k: int = 50,
    ) -> List[HybridSearchResult]:
        """Return up to ``top_k`` results in reranker order."""

        if not query.strip():
            return []

        lexical_query = sanitize_lexical_query(query)
        if lexical_query:
            with ThreadPoolExecutor(max_workers=2) as pool:
                vector_future = pool.submit(self._vector_search, query, vector_top_k)
                lexical_future = pool.submit(self.store.search_lexical, lexical_query, bm25_top_k)
                vector_matches = vector_future.result()
                lexical_matches = lexical_future.result()
        else:
            # Nothing left for full-text search (e.g. a query made of symbols).
            vector_matches = self._vector_search(query, vector_top_k)
            lexical_matches = []

        fused = merge_with_rrf(vector_matches, lexical_matches, top_k=rrf_top_k)
        logger.debug(
            "Query %r: %d vector, %d lexical, %d fused",
            query,
            len(vector_matches),
            len(lexical_matches),
            len(fused),
        )
        if not fused:
            return []

        records: Dict[str, ChunkWithContext] = {
            record.chunk_id: record
            for record in self.store.get_chunks_with_context([item.chunk_id for item in fused])
        }
        candidates: List[tuple[ChunkWithContext, float]] = []
        for item in fused:
            record = records.get(item.chunk_id)
            # Ids still in the vector index but gone from the store are stale.
            if record is None:
                continue
            candidates.append((record, item.rrf_score))

        dropped = len(fused) - len(candidates)
        if dropped:
            logger.info("Dropped %d stale chunk ids from fused results", dropped)
        if not candidates:
            return []

        scores = self.workers_ai.rerank(
            query,
            [record.chunk_text for record, _ in candidates],
            top_k=top_k,
        )

        results: List[HybridSearchResult] = []
        for score in scores:
            if not 0 <= score.index < len(candidates):
                logger.warning("Reranker returned out-of-range index %d", score.index)
                continue
            record, rrf = candidates[score.index]
            results.append(
                HybridSearchResult(
                    **record.model_dump(),
                    rrf_score=rrf,
                    rerank_score=score.score,
                    generation_text=self._generation_text(record),
                )
            )
            if len(results) >= top_k:
                break
        return results


__all__ = ["ChunkStore", "HybridSearchEngine", "PostgresChunkStore"]
