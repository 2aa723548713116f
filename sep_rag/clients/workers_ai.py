"""Cloudflare Workers AI client for embeddings and reranking."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from sep_rag.clients.base import BaseHttpClient, ClientError, ServiceError
from sep_rag.config import SepRagConfig
from sep_rag.exceptions import ContextLimitError, EmbeddingError
from sep_rag.models import RerankScore

logger = logging.getLogger(__name__)

MAX_TEXTS_PER_CALL = 100
CONTEXT_LIMIT_MARKER = "max context reached"


class WorkersAIClient(BaseHttpClient):
    """Run the embedding and reranker models on Workers AI."""

    BASE_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        account_id: str,
        api_token: str,
        *,
        embedding_model: str = "@cf/baai/bge-m3",
        reranker_model: str = "@cf/baai/bge-reranker-base",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.account_id = account_id
        self.embedding_model = embedding_model
        self.reranker_model = reranker_model
        self.session.headers["Authorization"] = f"Bearer {api_token}"

    @classmethod
    def from_config(cls, config: SepRagConfig) -> "WorkersAIClient":
        return cls(
            config.cloudflare_account_id,
            config.cloudflare_api_token,
            embedding_model=config.embedding_model,
            reranker_model=config.reranker_model,
            session=config.build_session(),
            timeout=config.request_timeout_s,
        )

    def _run(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        path = f"/accounts/{self.account_id}/ai/run/{model}"
        try:
            response = self._request("POST", path, json=payload)
        except ServiceError as exc:
            if exc.mentions(CONTEXT_LIMIT_MARKER):
                raise ContextLimitError(f"Workers AI context limit reached: {exc}") from exc
            raise EmbeddingError(f"Workers AI request to {model} failed: {exc}") from exc
        except ClientError as exc:
            raise EmbeddingError(f"Workers AI request to {model} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise EmbeddingError(f"Workers AI returned invalid JSON for {model}") from exc
        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict):
            raise EmbeddingError(f"Unexpected response format from Workers AI for {model}")
        return result

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed 1 to 100 texts; vectors come back in input order."""

        if not texts:
            raise ValueError("texts cannot be empty")
        if len(texts) > MAX_TEXTS_PER_CALL:
            raise ValueError(f"at most {MAX_TEXTS_PER_CALL} texts can be embedded per call")

        logger.debug("Embedding %d texts with %s", len(texts), self.embedding_model)
        result = self._run(self.embedding_model, {"text": list(texts)})

        vectors = result.get("data")
        if vectors is None:
            response = result.get("response")
            if isinstance(response, list) and response and isinstance(response[0], list):
                vectors = response
        if not isinstance(vectors, list):
            raise EmbeddingError("Unexpected embedding response format from Workers AI")
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Workers AI returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        return vectors

    def embed_one(self, text: str) -> List[float]:
        return self.embed([text])[0]

    def rerank(
        self,
        query: str,
        contexts: Sequence[str],
        top_k: Optional[int] = None,
    ) -> List[RerankScore]:
        """Score ``contexts`` against ``query``, best first.

        Each returned ``index`` refers to the position in ``contexts``.
        """

        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        if not contexts:
            raise ValueError("contexts cannot be empty")

        payload: Dict[str, Any] = {
            "query": query,
            "contexts": [{"text": text} for text in contexts],
        }
        if top_k is not None:
            payload["top_k"] = top_k

        result = self._run(self.reranker_model, payload)
        response = result.get("response")
        if not isinstance(response, list):
            raise EmbeddingError("Unexpected rerank response format from Workers AI")

        scores = [RerankScore(index=entry["id"], score=entry["score"]) for entry in response]
        scores.sort(key=lambda entry: entry.score, reverse=True)
        return scores
