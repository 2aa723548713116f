"""Wrapper around the ``chromadb`` HTTP client for chunk embeddings."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sep_rag.config import SepRagConfig
from sep_rag.exceptions import VectorIndexError
from sep_rag.models import VectorMatch

logger = logging.getLogger(__name__)

# Chroma rejects very large upserts; stay well below its batch ceiling.
_UPSERT_BATCH = 500


@dataclass
class ChromaVectorIndex:
    """Store and query precomputed chunk embeddings in a Chroma collection.

    The heavy ``chromadb`` dependency is imported lazily so that modules can be
    imported in environments where it is not available. Any operation that
    requires Chroma will raise :class:`VectorIndexError` when the dependency
    is missing or the server call fails.

    Vectors are passed as ``{"id", "values", "metadata"}`` mappings.
    """

    chroma_url: str
    collection_name: str = "sep-chunks"
    client: Any = None
    _collection: Any = field(default=None, init=False, repr=False)

    @classmethod
    def from_config(cls, config: SepRagConfig) -> "ChromaVectorIndex":
        return cls(chroma_url=config.chroma_url, collection_name=config.chroma_collection)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def upsert(self, vectors: Sequence[Mapping[str, Any]]) -> None:
        if not vectors:
            return
        collection = self._get_collection()
        for start in range(0, len(vectors), _UPSERT_BATCH):
            batch = vectors[start : start + _UPSERT_BATCH]
            try:
                collection.upsert(
                    ids=[vector["id"] for vector in batch],
                    embeddings=[list(vector["values"]) for vector in batch],
                    metadatas=[dict(vector.get("metadata") or {}) for vector in batch],
                )
            except Exception as exc:
                raise VectorIndexError(f"Failed to upsert {len(batch)} vectors: {exc}") from exc
        logger.debug("Upserted %d vectors into %s", len(vectors), self.collection_name)

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 10,
        where: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """Return the ``top_k`` nearest chunks as ``VectorMatch`` (best first)."""

        collection = self._get_collection()
        kwargs: Dict[str, Any] = {"query_embeddings": [list(vector)], "n_results": top_k}
        if where:
            kwargs["where"] = where
        try:
            results = collection.query(**kwargs)
        except Exception as exc:
            raise VectorIndexError(f"Vector query failed: {exc}") from exc

        ids: Sequence[str] = results.get("ids", [[]])[0] if results.get("ids") else []
        distances: Sequence[float] = (
            results.get("distances", [[]])[0] if results.get("distances") else []
        )

        matches: List[VectorMatch] = []
        for chunk_id, distance in zip(ids, distances):
            # 1/(1+d) keeps scores in (0, 1] for any non-negative distance
            similarity = 1.0 / (1.0 + float(distance)) if distance is not None else 0.0
            matches.append(VectorMatch(id=chunk_id, score=similarity))
        return matches

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        collection = self._get_collection()
        try:
            collection.delete(ids=list(ids))
        except Exception as exc:
            raise VectorIndexError(f"Failed to delete {len(ids)} vectors: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _get_collection(self):
        if self._collection is None:
            client = self.client if self.client is not None else self._connect()
            try:
                self._collection = client.get_or_create_collection(
                    name=self.collection_name,
                    embedding_function=None,
                )
            except Exception as exc:
                raise VectorIndexError(
                    f"Could not open Chroma collection {self.collection_name}: {exc}"
                ) from exc
        return self._collection

    def _connect(self):
        try:
            chromadb = importlib.import_module("chromadb")
        except ModuleNotFoundError as exc:  # pragma: no cover - exercised in tests
            raise VectorIndexError(
                "The vector index requires the 'chromadb' package. Install with "
                "`pip install chromadb`."
            ) from exc
        return chromadb.HttpClient(host=self.chroma_url)
