"""Pack aligned retrieval/generation units into token-bounded chunks."""

from __future__ import annotations

import logging
import math
import threading
from typing import List, Optional, Sequence, Tuple

import tiktoken

from sep_rag.models import ArticleSection, ProcessedChunk
from sep_rag.preprocessing.dual_format import DualFormatBuilder
from sep_rag.preprocessing.segmenter import split_html_into_items

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1024
PREAMBLE_MAX_TOKENS = math.inf

_SEPARATOR = "\n\n"


class SemanticChunker:
    """Greedy packer over (retrieval, generation) unit pairs.

    Budgets are measured on the retrieval text only and units are never
    split: a unit larger than the budget becomes a chunk of its own.
    """

    def __init__(
        self,
        *,
        encoding_name: str = "cl100k_base",
        max_tokens: float = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.max_tokens = max_tokens
        self.encoding = self._build_encoding(encoding_name)

    def count_tokens(self, text: str) -> int:
        return len(self.encoding.encode(text))

    def chunk_units(
        self,
        units: Sequence[Tuple[str, str]],
        max_tokens: Optional[float] = None,
    ) -> List[ProcessedChunk]:
        budget = self.max_tokens if max_tokens is None else max_tokens
        chunks: List[ProcessedChunk] = []
        retrieval_parts: List[str] = []
        generation_parts: List[str] = []
        current_tokens = 0

        def flush(token_count: int) -> None:
            chunks.append(
                ProcessedChunk(
                    retrieval_text=_SEPARATOR.join(retrieval_parts).strip(),
                    generation_text=_SEPARATOR.join(generation_parts).strip(),
                    token_count=token_count,
                )
            )
            retrieval_parts.clear()
            generation_parts.clear()

        for retrieval, generation in units:
            unit_tokens = self.count_tokens(retrieval)

            if retrieval_parts and current_tokens + unit_tokens > budget:
                flush(current_tokens)
                current_tokens = 0

            retrieval_parts.append(retrieval)
            generation_parts.append(generation)
            current_tokens += unit_tokens

            if unit_tokens > budget and len(retrieval_parts) == 1:
                flush(unit_tokens)
                current_tokens = 0

        if any(part.strip() for part in retrieval_parts + generation_parts):
            flush(current_tokens)

        return chunks

    def _build_encoding(self, encoding_name: str):
        try:
            return tiktoken.get_encoding(encoding_name)
        except Exception:  # pragma: no cover - network or cache dependent
            logger.warning("tiktoken encoding %s unavailable, counting whitespace tokens", encoding_name)
            return _WhitespaceEncoding()


class _WhitespaceEncoding:
    """Minimal encoding fallback that tokenizes on whitespace."""

    def encode(self, text: str) -> List[str]:
        return text.split()

    def decode(self, tokens: List[str]) -> str:
        return " ".join(tokens)


class SectionProcessor:
    """Segment, normalize and chunk one article section."""

    def __init__(self, builder: DualFormatBuilder, chunker: SemanticChunker) -> None:
        self.builder = builder
        self.chunker = chunker

    @staticmethod
    def section_heading(section: ArticleSection) -> str:
        if section.number:
            return f"{section.number} {section.heading}"
        return section.heading

    def process(
        self,
        section: ArticleSection,
        article_title: str,
        max_tokens: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ProcessedChunk]:
        items = split_html_into_items(section.content)
        units = self.builder.build(
            items,
            article_title=article_title,
            section_heading=self.section_heading(section),
            cancel_event=cancel_event,
        )
        chunks = self.chunker.chunk_units(units, max_tokens=max_tokens)
        logger.debug(
            "Section %s: %d items, %d units, %d chunks",
            section.number or section.heading,
            len(items),
            len(units),
            len(chunks),
        )
        return chunks
