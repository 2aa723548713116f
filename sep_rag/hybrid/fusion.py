"""Reciprocal Rank Fusion over vector and lexical result lists."""

from __future__ import annotations

import re
from typing import Dict, List, Sequence

from sep_rag.models import FusedResult, LexicalMatch, VectorMatch

DEFAULT_RRF_K = 60

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def rrf_score(rank: int, k: int = DEFAULT_RRF_K) -> float:
    """Contribution of a zero-based ``rank``: ``1 / (k + rank + 1)``."""

    return 1.0 / (k + rank + 1)


def sanitize_lexical_query(query: str) -> str:
    """Keep word characters and spaces only, with whitespace collapsed."""

    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", query)).strip()


def merge_with_rrf(
    vector_matches: Sequence[VectorMatch],
    lexical_matches: Sequence[LexicalMatch],
    top_k: int = 50,
    k: int = DEFAULT_RRF_K,
) -> List[FusedResult]:
    """Fuse both rankings; an id present in both lists gets the sum of its scores.

    Equal scores keep first-seen order (vector list first, then lexical),
    falling back to ``chunk_id``.
    """

    scores: Dict[str, float] = {}
    first_seen: Dict[str, int] = {}

    def accumulate(chunk_ids: Sequence[str]) -> None:
        for rank, chunk_id in enumerate(chunk_ids):
            if chunk_id not in scores:
                scores[chunk_id] = 0.0
                first_seen[chunk_id] = len(first_seen)
            scores[chunk_id] += rrf_score(rank, k)

    accumulate([match.id for match in vector_matches])
    accumulate([match.chunk_id for match in lexical_matches])

    ordered = sorted(scores, key=lambda chunk_id: (-scores[chunk_id], first_seen[chunk_id], chunk_id))
    return [FusedResult(chunk_id=chunk_id, rrf_score=scores[chunk_id]) for chunk_id in ordered[:top_k]]


__all__ = ["DEFAULT_RRF_K", "merge_with_rrf", "rrf_score", "sanitize_lexical_query"]
