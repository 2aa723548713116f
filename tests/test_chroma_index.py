import importlib
from typing import Any, Dict, List

import pytest

from sep_rag.exceptions import VectorIndexError
from sep_rag.index import ChromaVectorIndex


class _FakeCollection:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.upserts: List[Dict[str, Any]] = []
        self.queries: List[Dict[str, Any]] = []
        self.deleted: List[List[str]] = []

    def upsert(self, **kwargs):
        if self.fail:
            raise RuntimeError("server unavailable")
        self.upserts.append(kwargs)

    def query(self, **kwargs):
        self.queries.append(kwargs)
        return {"ids": [["a", "b"]], "distances": [[0.0, 1.0]]}

    def delete(self, ids):
        self.deleted.append(ids)


class _FakeClient:
    def __init__(self, collection: _FakeCollection):
        self.collection = collection
        self.opened: List[str] = []

    def get_or_create_collection(self, name, embedding_function=None):
        self.opened.append(name)
        return self.collection


def _vectors(count: int) -> List[Dict[str, Any]]:
    return [
        {"id": f"logic/1/chunk-{index}", "values": [0.1, 0.2], "metadata": {"chunkId": f"logic/1/chunk-{index}"}}
        for index in range(count)
    ]


def test_upsert_is_batched_and_collection_opened_once():
    collection = _FakeCollection()
    client = _FakeClient(collection)
    index = ChromaVectorIndex(chroma_url="localhost", collection_name="test", client=client)

    index.upsert(_vectors(1200))
    index.delete(["logic/1/chunk-0"])

    assert [len(call["ids"]) for call in collection.upserts] == [500, 500, 200]
    assert collection.upserts[0]["metadatas"][0] == {"chunkId": "logic/1/chunk-0"}
    assert collection.deleted == [["logic/1/chunk-0"]]
    assert client.opened == ["test"]


def test_query_converts_distances_to_scores():
    collection = _FakeCollection()
    index = ChromaVectorIndex(chroma_url="localhost", client=_FakeClient(collection))

    matches = index.query([0.5, 0.5], top_k=2)

    assert [(match.id, match.score) for match in matches] == [("a", 1.0), ("b", 0.5)]
    assert collection.queries == [{"query_embeddings": [[0.5, 0.5]], "n_results": 2}]


def test_empty_operations_do_not_touch_the_server():
    client = _FakeClient(_FakeCollection(fail=True))
    index = ChromaVectorIndex(chroma_url="localhost", client=client)

    index.upsert([])
    index.delete([])

    assert client.opened == []


def test_server_failures_become_vector_index_errors():
    index = ChromaVectorIndex(chroma_url="localhost", client=_FakeClient(_FakeCollection(fail=True)))

    with pytest.raises(VectorIndexError):
        index.upsert(_vectors(1))


def test_missing_chromadb_raises_vector_index_error(monkeypatch):
    real_import = importlib.import_module

    def fake_import(name, *args, **kwargs):
        if name.startswith("chromadb"):
            raise ModuleNotFoundError("chromadb")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(importlib, "import_module", fake_import)

    index = ChromaVectorIndex(chroma_url="http://localhost:8000", collection_name="test-index")

    with pytest.raises(VectorIndexError) as excinfo:
        index.query([0.1])

    assert "pip install chromadb" in str(excinfo.value)
