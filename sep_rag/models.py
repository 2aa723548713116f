"""Pydantic models for articles, chunks, queue entries and search results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

PREAMBLE_NUMBER = "0"
PREAMBLE_HEADING = "Preamble"


def section_id_for(article_id: str, number: str) -> str:
    """Return the persisted section id ``{article_id}/{number}``."""

    return f"{article_id}/{number}"


def chunk_id_for(section_id: str, index: int) -> str:
    """Return the persisted chunk id ``{section_id}/chunk-{index}``."""

    return f"{section_id}/chunk-{index}"


def generation_blob_key(chunk_id: str) -> str:
    """Return the blob-store key holding the generation text of a chunk."""

    return f"chunks/{chunk_id}.txt"


# ─────────────────────────────────────────────────────────────────────────────
# Source content
# ─────────────────────────────────────────────────────────────────────────────


class ArticleSection(BaseModel):
    """A heading-delimited slice of an article, in document order."""

    number: str  # dotted, e.g. "3.3"; "0" is the preamble
    heading: str
    content: str  # raw HTML


class Article(BaseModel):
    """An article as fetched from the source site."""

    id: str
    title: str  # diacritics stripped
    original_title: str
    authors: list[str] = Field(default_factory=list)
    preamble: str = ""
    sections: list[ArticleSection] = Field(default_factory=list)
    related: list[str] = Field(default_factory=list)
    created: str = ""  # YYYY-MM-DD
    updated: str = ""  # YYYY-MM-DD


class RssFeedItem(BaseModel):
    """A recently published or revised article announced by the RSS feed."""

    article_id: str
    pub_date: datetime


class ItemKind(str, Enum):
    """Block-level classification of a section item."""

    PARAGRAPH = "paragraph"
    LIST = "list"
    TABLE = "table"
    PRE = "pre"
    BLOCKQUOTE = "blockquote"
    FIGURE = "figure"
    OTHER = "other"


class SectionItem(BaseModel):
    """One block-level unit of a section; the indivisible packing unit."""

    kind: ItemKind
    html: str


class ProcessedChunk(BaseModel):
    """Aligned retrieval/generation texts for one chunk of a section."""

    retrieval_text: str
    generation_text: str
    token_count: int  # measured on retrieval_text


# ─────────────────────────────────────────────────────────────────────────────
# Persisted records
# ─────────────────────────────────────────────────────────────────────────────


class ArticleRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    article_id: str
    title: str
    authors: str | None = None
    created: str | None = None
    updated: str | None = None


class SectionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    section_id: str
    article_id: str
    number: str
    heading: str | None = None
    num_chunks: int = 0


class ChunkRecord(BaseModel):
    """A persisted chunk; ``chunk_text`` is the retrieval-format text."""

    model_config = ConfigDict(from_attributes=True)

    chunk_id: str
    section_id: str
    chunk_index: int = Field(ge=0)
    chunk_text: str
    num_tokens: int = 0
    blob_key: str | None = None


class IngestionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionQueueEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    article_id: str
    status: IngestionStatus = IngestionStatus.PENDING
    retry_count: int = 0
    last_attempt: datetime | None = None
    error_message: str | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Query-time records
# ─────────────────────────────────────────────────────────────────────────────


class VectorMatch(BaseModel):
    id: str
    score: float


class LexicalMatch(BaseModel):
    chunk_id: str
    section_id: str | None = None
    rank: float = 0.0


class FusedResult(BaseModel):
    chunk_id: str
    rrf_score: float


class RerankScore(BaseModel):
    """Reranker output; ``index`` points into the submitted context list."""

    index: int
    score: float


class ChunkWithContext(BaseModel):
    """A chunk joined with its section and article metadata."""

    model_config = ConfigDict(from_attributes=True)

    chunk_id: str
    section_id: str
    chunk_index: int
    chunk_text: str
    num_tokens: int = 0
    blob_key: str | None = None
    heading: str | None = None
    section_number: str
    article_id: str
    article_title: str


class ChunkPosition(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chunk_id: str
    section_id: str
    chunk_index: int
    num_chunks: int


class NeighborChunk(ChunkWithContext):
    """A chunk adjacent to a retrieved chunk within the same section."""


class HybridSearchResult(ChunkWithContext):
    """Final search output, ordered by reranker score."""

    rrf_score: float
    rerank_score: float
    generation_text: str = ""
