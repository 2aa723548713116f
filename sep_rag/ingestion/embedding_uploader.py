"""Embed chunk retrieval texts in adaptive batches and upsert the vectors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from sep_rag.clients.workers_ai import MAX_TEXTS_PER_CALL
from sep_rag.exceptions import ContextLimitError

logger = logging.getLogger(__name__)

INITIAL_BATCH_SIZE = 48


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class VectorSink(Protocol):
    def upsert(self, vectors: Sequence[Dict[str, Any]]) -> None:
        ...


@dataclass(frozen=True)
class ChunkText:
    chunk_id: str
    text: str


class EmbeddingBatchUploader:
    """Upload embeddings, halving the batch size whenever a call hits the context limit.

    The cursor only advances on success; a context-limit failure retries the
    same window at half the size. Any other error, or a context-limit error
    at batch size 1, propagates.
    """

    def __init__(
        self,
        embedder: Embedder,
        sink: VectorSink,
        *,
        initial_batch_size: int = INITIAL_BATCH_SIZE,
        max_batch_size: int = MAX_TEXTS_PER_CALL,
    ) -> None:
        if initial_batch_size <= 0 or max_batch_size <= 0:
            raise ValueError("batch sizes must be positive")
        self.embedder = embedder
        self.sink = sink
        self.initial_batch_size = initial_batch_size
        self.max_batch_size = max_batch_size

    def upload(self, chunks: Sequence[ChunkText]) -> int:
        """Embed and store every chunk; return the number of vectors written."""

        if not chunks:
            return 0

        logger.info("Vectorizing %d chunks", len(chunks))
        batch_size = min(self.initial_batch_size, len(chunks))
        cursor = 0
        while cursor < len(chunks):
            size = min(batch_size, self.max_batch_size, len(chunks) - cursor)
            window = chunks[cursor : cursor + size]
            try:
                embeddings = self.embedder.embed([chunk.text for chunk in window])
            except ContextLimitError:
                if batch_size <= 1:
                    raise
                reduced = max(1, batch_size // 2)
                logger.warning(
                    "Context limit at batch size %d, retrying chunks %d-%d with %d",
                    batch_size,
                    cursor + 1,
                    cursor + size,
                    reduced,
                )
                batch_size = reduced
                continue

            self.sink.upsert(
                [
                    {
                        "id": chunk.chunk_id,
                        "values": embedding,
                        "metadata": {"chunkId": chunk.chunk_id},
                    }
                    for chunk, embedding in zip(window, embeddings)
                ]
            )
            logger.debug("Stored embeddings for chunks %d-%d", cursor + 1, cursor + size)
            cursor += size
        return len(chunks)


__all__ = ["ChunkText", "EmbeddingBatchUploader", "INITIAL_BATCH_SIZE"]
