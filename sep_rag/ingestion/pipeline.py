"""Article ingestion: fetch, normalize, chunk, store and vectorize."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from psycopg import Connection

from sep_rag.chunking.semantic_chunker import PREAMBLE_MAX_TOKENS, SectionProcessor, SemanticChunker
from sep_rag.clients.conversion import ConversionClient
from sep_rag.clients.sep import SepClient
from sep_rag.clients.workers_ai import WorkersAIClient
from sep_rag.config import SepRagConfig
from sep_rag.index.chroma import ChromaVectorIndex
from sep_rag.models import (
    PREAMBLE_HEADING,
    PREAMBLE_NUMBER,
    Article,
    ArticleRecord,
    ArticleSection,
    ChunkRecord,
    IngestionStatus,
    SectionRecord,
    chunk_id_for,
    generation_blob_key,
    section_id_for,
)
from sep_rag.preprocessing.dual_format import DualFormatBuilder
from sep_rag.storage import dao
from sep_rag.storage.blobs import BlobStore
from sep_rag.storage.db import get_connection

from .embedding_uploader import ChunkText, EmbeddingBatchUploader

logger = logging.getLogger(__name__)

AUTHOR_SEPARATOR = "; "


@dataclass
class QueueRunSummary:
    processed: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)


def _section_key(section: ArticleSection, position: int) -> str:
    # Unnumbered headings would otherwise share the id "{article_id}/".
    return section.number or f"u{position}"


class IngestionPipeline:
    """Runs the per-article ingestion steps and drains the ingestion queue.

    Sections are processed one after another; each section batches its own
    language-model calls.
    """

    def __init__(
        self,
        *,
        connect: Callable[[], Connection],
        sep_client: SepClient,
        processor: SectionProcessor,
        blobs: BlobStore,
        vector_index: ChromaVectorIndex,
        uploader: EmbeddingBatchUploader,
        max_tokens_per_chunk: int = 1024,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.connect = connect
        self.sep_client = sep_client
        self.processor = processor
        self.blobs = blobs
        self.vector_index = vector_index
        self.uploader = uploader
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.cancel_event = cancel_event

    @classmethod
    def from_config(cls, config: SepRagConfig) -> "IngestionPipeline":
        vector_index = ChromaVectorIndex.from_config(config)
        processor = SectionProcessor(
            DualFormatBuilder(ConversionClient.from_config(config)),
            SemanticChunker(
                encoding_name=config.encoding_name,
                max_tokens=config.max_tokens_per_chunk,
            ),
        )
        return cls(
            connect=lambda: get_connection(config.db_dsn),
            sep_client=SepClient.from_config(config),
            processor=processor,
            blobs=BlobStore(config.data_dir),
            vector_index=vector_index,
            uploader=EmbeddingBatchUploader(WorkersAIClient.from_config(config), vector_index),
            max_tokens_per_chunk=config.max_tokens_per_chunk,
        )

    # ------------------------------------------------------------------
    # Single article
    # ------------------------------------------------------------------
    def process_article(self, article_id: str) -> int:
        """Ingest one article from scratch; return the number of chunks stored.

        Any failure marks the queue entry ``failed`` with the error message
        and is re-raised.
        """

        conn = self.connect()
        try:
            dao.update_ingestion_status(conn, article_id, IngestionStatus.PROCESSING)
            conn.commit()
            try:
                chunk_count = self._ingest(conn, article_id)
            except Exception as exc:
                conn.rollback()
                message = str(exc) or exc.__class__.__name__
                logger.error("Failed to process article %s: %s", article_id, message)
                dao.update_ingestion_status(
                    conn,
                    article_id,
                    IngestionStatus.FAILED,
                    error_message=message,
                    increment_retry=True,
                )
                conn.commit()
                raise
            dao.update_ingestion_status(conn, article_id, IngestionStatus.COMPLETED)
            conn.commit()
        finally:
            conn.close()

        logger.info("Article %s processed: %d chunks", article_id, chunk_count)
        return chunk_count

    def _ingest(self, conn: Connection, article_id: str) -> int:
        article = self.sep_client.fetch_article(article_id)

        stale_ids = dao.delete_article_content(conn, article_id)

        dao.upsert_article(
            conn,
            ArticleRecord(
                article_id=article.id,
                title=article.title,
                authors=AUTHOR_SEPARATOR.join(article.authors) or None,
                created=article.created or None,
                updated=article.updated or None,
            ),
        )

        pending: List[ChunkText] = []
        staged: Dict[str, str] = {}
        preamble = ArticleSection(
            number=PREAMBLE_NUMBER, heading=PREAMBLE_HEADING, content=article.preamble
        )
        pending.extend(
            self._store_section(
                conn, article, preamble, PREAMBLE_NUMBER, PREAMBLE_MAX_TOKENS, staged
            )
        )
        for position, section in enumerate(article.sections, start=1):
            logger.info(
                "Processing section %s: %s", section.number or "-", section.heading or "(untitled)"
            )
            pending.extend(
                self._store_section(
                    conn,
                    article,
                    section,
                    _section_key(section, position),
                    self.max_tokens_per_chunk,
                    staged,
                )
            )
        conn.commit()

        self._replace_derived_data(article_id, stale_ids, staged, pending)
        self.uploader.upload(pending)
        return len(pending)

    def _replace_derived_data(
        self,
        article_id: str,
        stale_ids: List[str],
        staged: Dict[str, str],
        pending: List[ChunkText],
    ) -> None:
        # Runs only after the new rows are committed; a rollback must find
        # the previous blobs and vectors intact.
        for key, text in staged.items():
            self.blobs.put_text(key, text)
        for key in self.blobs.list_keys(f"chunks/{article_id}"):
            if key not in staged:
                self.blobs.delete(key)

        fresh_ids = {chunk.chunk_id for chunk in pending}
        obsolete = [chunk_id for chunk_id in stale_ids if chunk_id not in fresh_ids]
        if obsolete:
            logger.info("Removing %d obsolete vectors of %s", len(obsolete), article_id)
            self.vector_index.delete(obsolete)

    def _store_section(
        self,
        conn: Connection,
        article: Article,
        section: ArticleSection,
        key: str,
        max_tokens: float,
        staged: Dict[str, str],
    ) -> List[ChunkText]:
        chunks = self.processor.process(
            section,
            article.title,
            max_tokens=max_tokens,
            cancel_event=self.cancel_event,
        )
        section_id = section_id_for(article.id, key)
        dao.upsert_section(
            conn,
            SectionRecord(
                section_id=section_id,
                article_id=article.id,
                number=section.number,
                heading=section.heading or None,
                num_chunks=len(chunks),
            ),
        )

        records: List[ChunkRecord] = []
        for index, chunk in enumerate(chunks):
            chunk_id = chunk_id_for(section_id, index)
            blob_key = generation_blob_key(chunk_id)
            staged[blob_key] = chunk.generation_text
            records.append(
                ChunkRecord(
                    chunk_id=chunk_id,
                    section_id=section_id,
                    chunk_index=index,
                    chunk_text=chunk.retrieval_text,
                    num_tokens=chunk.token_count,
                    blob_key=blob_key,
                )
            )
        dao.insert_chunks(conn, records)
        return [ChunkText(chunk_id=record.chunk_id, text=record.chunk_text) for record in records]

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------
    def process_queue(self, limit: Optional[int] = None) -> QueueRunSummary:
        """Claim and ingest queued articles one at a time until none remain.

        Each article is attempted at most once per run, so entries that keep
        failing stay ``failed`` for the next run instead of being retried here.
        """

        summary = QueueRunSummary()
        attempted: Set[str] = set()
        while limit is None or summary.processed + summary.failed < limit:
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.info("Queue processing cancelled")
                break
            with self.connect() as conn:
                entry = dao.claim_next_article(conn, exclude=sorted(attempted))
                conn.commit()
            if entry is None:
                break
            attempted.add(entry.article_id)
            try:
                self.process_article(entry.article_id)
            except Exception as exc:
                summary.failed += 1
                summary.failures[entry.article_id] = str(exc)
                continue
            summary.processed += 1

        logger.info(
            "Queue run finished: %d processed, %d failed", summary.processed, summary.failed
        )
        return summary

    def enqueue_all(self) -> int:
        """Queue every published entry; return how many were new."""

        article_ids = self.sep_client.fetch_article_ids()
        added = 0
        with self.connect() as conn:
            for article_id in article_ids:
                if dao.enqueue_article(conn, article_id):
                    added += 1
            conn.commit()
        logger.info("Queued %d of %d published entries", added, len(article_ids))
        return added

    def enqueue_recent(self, since: Optional[datetime] = None) -> List[str]:
        """Re-queue entries announced in the RSS feed, optionally only after ``since``."""

        items = self.sep_client.fetch_rss_articles()
        if since is not None:
            items = [item for item in items if item.pub_date >= since]
        queued: List[str] = []
        with self.connect() as conn:
            for item in items:
                if dao.enqueue_article(conn, item.article_id, requeue=True):
                    queued.append(item.article_id)
            conn.commit()
        logger.info("Queued %d recently revised entries", len(queued))
        return queued

    def enqueue(self, article_ids: List[str]) -> int:
        added = 0
        with self.connect() as conn:
            for article_id in article_ids:
                if dao.enqueue_article(conn, article_id, requeue=True):
                    added += 1
            conn.commit()
        return added


__all__ = ["IngestionPipeline", "QueueRunSummary"]
