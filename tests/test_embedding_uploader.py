from __future__ import annotations

from typing import Any, Dict, List, Sequence

import pytest

from sep_rag.exceptions import ContextLimitError, EmbeddingError
from sep_rag.ingestion.embedding_uploader import ChunkText, EmbeddingBatchUploader


class _Embedder:
    def __init__(self, context_limit: int = 1000, error: Exception | None = None):
        self.context_limit = context_limit
        self.error = error
        self.batch_sizes: List[int] = []

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.batch_sizes.append(len(texts))
        if self.error is not None:
            raise self.error
        if len(texts) > self.context_limit:
            raise ContextLimitError("max context reached")
        return [[float(len(text))] for text in texts]


class _Sink:
    def __init__(self):
        self.batches: List[List[Dict[str, Any]]] = []

    def upsert(self, vectors):
        self.batches.append(list(vectors))

    @property
    def ids(self) -> List[str]:
        return [vector["id"] for batch in self.batches for vector in batch]


def _chunks(count: int) -> List[ChunkText]:
    return [ChunkText(chunk_id=f"logic/1/chunk-{index}", text="x" * (index + 1)) for index in range(count)]


def test_batch_size_halves_on_context_limit_and_stays_reduced():
    embedder = _Embedder(context_limit=3)
    sink = _Sink()
    uploader = EmbeddingBatchUploader(embedder, sink, initial_batch_size=8)
    chunks = _chunks(10)

    assert uploader.upload(chunks) == 10

    assert embedder.batch_sizes == [8, 4, 2, 2, 2, 2, 2]
    assert sink.ids == [chunk.chunk_id for chunk in chunks]


def test_vectors_carry_chunk_id_metadata():
    sink = _Sink()
    EmbeddingBatchUploader(_Embedder(), sink).upload(_chunks(2))

    assert sink.batches[0][1] == {
        "id": "logic/1/chunk-1",
        "values": [2.0],
        "metadata": {"chunkId": "logic/1/chunk-1"},
    }


def test_batches_never_exceed_max_batch_size():
    embedder = _Embedder()
    EmbeddingBatchUploader(embedder, _Sink(), initial_batch_size=48, max_batch_size=5).upload(_chunks(12))

    assert embedder.batch_sizes == [5, 5, 2]


def test_context_limit_at_single_text_propagates():
    embedder = _Embedder(context_limit=0)
    sink = _Sink()

    with pytest.raises(ContextLimitError):
        EmbeddingBatchUploader(embedder, sink, initial_batch_size=4).upload(_chunks(3))

    assert embedder.batch_sizes == [3, 1]
    assert sink.batches == []


def test_other_errors_propagate_without_retry():
    embedder = _Embedder(error=EmbeddingError("unauthorized"))

    with pytest.raises(EmbeddingError):
        EmbeddingBatchUploader(embedder, _Sink()).upload(_chunks(5))

    assert embedder.batch_sizes == [5]


def test_no_chunks_means_no_calls():
    embedder = _Embedder()

    assert EmbeddingBatchUploader(embedder, _Sink()).upload([]) == 0
    assert embedder.batch_sizes == []


def test_batch_sizes_must_be_positive():
    with pytest.raises(ValueError):
        EmbeddingBatchUploader(_Embedder(), _Sink(), initial_batch_size=0)
