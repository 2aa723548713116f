from __future__ import annotations

import math
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

from sep_rag.exceptions import FetchError
from sep_rag.ingestion.pipeline import IngestionPipeline
from sep_rag.models import (
    Article,
    ArticleSection,
    IngestionQueueEntry,
    IngestionStatus,
    ProcessedChunk,
    RssFeedItem,
)
from sep_rag.storage import dao
from sep_rag.storage.blobs import BlobStore


class _FakeConn:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False


class _FakeDao:
    def __init__(self, monkeypatch):
        self.statuses: List[tuple] = []
        self.articles: List[Any] = []
        self.sections: List[Any] = []
        self.chunks: List[Any] = []
        self.enqueued: List[tuple[str, bool]] = []
        self.queue: Dict[str, IngestionStatus] = {}
        self.claims: List[List[str]] = []
        self.busy: set[str] = set()
        self.stale_ids: List[str] = ["logic/1/chunk-0", "logic/1/chunk-1"]

        monkeypatch.setattr(dao, "update_ingestion_status", self.update_ingestion_status)
        monkeypatch.setattr(dao, "delete_article_content", lambda conn, article_id: list(self.stale_ids))
        monkeypatch.setattr(dao, "upsert_article", lambda conn, record: self.articles.append(record))
        monkeypatch.setattr(dao, "upsert_section", lambda conn, record: self.sections.append(record))
        monkeypatch.setattr(dao, "insert_chunks", lambda conn, records: self.chunks.extend(records))
        monkeypatch.setattr(dao, "enqueue_article", self.enqueue_article)
        monkeypatch.setattr(dao, "claim_next_article", self.claim_next_article)

    def update_ingestion_status(self, conn, article_id, status, *, error_message=None, increment_retry=False):
        self.statuses.append((article_id, status, error_message, increment_retry))
        self.queue[article_id] = status

    def queue_up(self, *article_ids):
        for article_id in article_ids:
            self.queue[article_id] = IngestionStatus.PENDING

    def waiting(self) -> List[str]:
        return [article_id for article_id, status in self.queue.items() if status == IngestionStatus.PENDING]

    def enqueue_article(self, conn, article_id, *, requeue=False):
        self.enqueued.append((article_id, requeue))
        return article_id not in self.busy

    def claim_next_article(self, conn, exclude=()):
        # Same eligibility as the SQL claim: pending and failed entries.
        self.claims.append(list(exclude))
        if len(self.claims) > 25:
            raise RuntimeError("queue is still draining after 25 claims")
        for article_id, status in self.queue.items():
            if article_id in exclude:
                continue
            if status in (IngestionStatus.PENDING, IngestionStatus.FAILED):
                self.queue[article_id] = IngestionStatus.PROCESSING
                return IngestionQueueEntry(article_id=article_id, status=IngestionStatus.PROCESSING)
        return None


class _FakeSepClient:
    def __init__(self, error: Exception | None = None, failing: set[str] | None = None):
        self.error = error
        self.failing = failing

    def fetch_article(self, article_id: str) -> Article:
        if self.error is not None and (self.failing is None or article_id in self.failing):
            raise self.error
        return Article(
            id=article_id,
            title="Logic",
            original_title="Logic",
            authors=["Smith, Jane", "Doe, John"],
            preamble="<p>Intro</p>",
            sections=[
                ArticleSection(number="1", heading="Syntax", content="<p>Syntax</p>"),
                ArticleSection(number="", heading="Notes", content="<p>Notes</p>"),
            ],
            created="2001-02-03",
        )

    def fetch_article_ids(self) -> List[str]:
        return ["abelard", "logic"]

    def fetch_rss_articles(self) -> List[RssFeedItem]:
        return [
            RssFeedItem(article_id="logic", pub_date=datetime(2024, 1, 3, tzinfo=timezone.utc)),
            RssFeedItem(article_id="frege", pub_date=datetime(2023, 6, 1, tzinfo=timezone.utc)),
            RssFeedItem(article_id="busy", pub_date=datetime(2024, 2, 1, tzinfo=timezone.utc)),
        ]


class _FakeProcessor:
    def __init__(self, failing_heading: str | None = None):
        self.budgets: Dict[str, float] = {}
        self.failing_heading = failing_heading

    def process(self, section, article_title, max_tokens=None, cancel_event=None):
        self.budgets[section.heading] = max_tokens
        if section.heading == self.failing_heading:
            raise RuntimeError(f"cannot process {section.heading}")
        key = section.number or section.heading
        return [
            ProcessedChunk(retrieval_text=f"retrieval {key}", generation_text=f"generation {key}", token_count=2)
        ]


class _FakeVectorIndex:
    def __init__(self):
        self.deleted: List[List[str]] = []

    def delete(self, ids):
        self.deleted.append(list(ids))


class _FakeUploader:
    def __init__(self):
        self.uploaded: List[Any] = []

    def upload(self, chunks):
        self.uploaded.extend(chunks)
        return len(chunks)


def _pipeline(tmp_path, sep_client=None, cancel_event=None, processor=None):
    connections: List[_FakeConn] = []

    def connect():
        conn = _FakeConn()
        connections.append(conn)
        return conn

    pipeline = IngestionPipeline(
        connect=connect,
        sep_client=sep_client or _FakeSepClient(),
        processor=processor or _FakeProcessor(),
        blobs=BlobStore(tmp_path),
        vector_index=_FakeVectorIndex(),
        uploader=_FakeUploader(),
        max_tokens_per_chunk=256,
        cancel_event=cancel_event,
    )
    return pipeline, connections


def test_process_article_replaces_content_and_marks_completed(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    pipeline, connections = _pipeline(tmp_path)
    pipeline.blobs.put_text("chunks/logic/1/chunk-0.txt", "old text")
    pipeline.blobs.put_text("chunks/logic/1/chunk-1.txt", "old text")

    assert pipeline.process_article("logic") == 3

    assert [status for _, status, _, _ in fake_dao.statuses] == [
        IngestionStatus.PROCESSING,
        IngestionStatus.COMPLETED,
    ]
    assert pipeline.vector_index.deleted == [["logic/1/chunk-1"]]
    assert not pipeline.blobs.exists("chunks/logic/1/chunk-1.txt")
    assert pipeline.blobs.get_text("chunks/logic/1/chunk-0.txt") == "generation 1"

    assert fake_dao.articles[0].authors == "Smith, Jane; Doe, John"
    assert fake_dao.articles[0].updated is None
    assert [section.section_id for section in fake_dao.sections] == ["logic/0", "logic/1", "logic/u2"]
    assert [section.number for section in fake_dao.sections] == ["0", "1", ""]
    assert fake_dao.sections[0].heading == "Preamble"
    assert all(section.num_chunks == 1 for section in fake_dao.sections)

    chunk_ids = [chunk.chunk_id for chunk in fake_dao.chunks]
    assert chunk_ids == ["logic/0/chunk-0", "logic/1/chunk-0", "logic/u2/chunk-0"]
    assert fake_dao.chunks[1].chunk_text == "retrieval 1"
    assert pipeline.blobs.get_text(fake_dao.chunks[1].blob_key) == "generation 1"
    assert [chunk.chunk_id for chunk in pipeline.uploader.uploaded] == chunk_ids

    assert pipeline.processor.budgets == {"Preamble": math.inf, "Syntax": 256, "Notes": 256}
    assert connections[0].closed


def test_process_article_failure_marks_failed_and_reraises(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    pipeline, connections = _pipeline(tmp_path, sep_client=_FakeSepClient(FetchError("gone")))

    with pytest.raises(FetchError):
        pipeline.process_article("logic")

    assert fake_dao.statuses[-1] == ("logic", IngestionStatus.FAILED, "gone", True)
    assert connections[0].rollbacks == 1
    assert connections[0].closed
    assert fake_dao.chunks == []


def test_failure_after_reading_old_content_keeps_its_blobs_and_vectors(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    pipeline, connections = _pipeline(tmp_path, processor=_FakeProcessor(failing_heading="Notes"))
    pipeline.blobs.put_text("chunks/logic/1/chunk-0.txt", "old text")
    pipeline.blobs.put_text("chunks/logic/1/chunk-1.txt", "old text")

    with pytest.raises(RuntimeError):
        pipeline.process_article("logic")

    assert connections[0].rollbacks == 1
    assert fake_dao.statuses[-1] == ("logic", IngestionStatus.FAILED, "cannot process Notes", True)
    assert pipeline.vector_index.deleted == []
    assert pipeline.uploader.uploaded == []
    assert pipeline.blobs.list_keys("chunks/logic") == [
        "chunks/logic/1/chunk-0.txt",
        "chunks/logic/1/chunk-1.txt",
    ]
    assert pipeline.blobs.get_text("chunks/logic/1/chunk-0.txt") == "old text"


def test_process_queue_attempts_each_failing_article_once_per_run(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    fake_dao.queue_up("broken", "logic")
    pipeline, _ = _pipeline(tmp_path, sep_client=_FakeSepClient(FetchError("404"), failing={"broken"}))

    summary = pipeline.process_queue()

    assert summary.processed == 1
    assert summary.failed == 1
    assert summary.failures == {"broken": "404"}
    assert fake_dao.queue == {"broken": IngestionStatus.FAILED, "logic": IngestionStatus.COMPLETED}
    assert fake_dao.claims == [[], ["broken"], ["broken", "logic"]]


def test_process_queue_counts_failures_and_continues(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    fake_dao.queue_up("logic", "bad", "frege")
    pipeline, _ = _pipeline(tmp_path)
    processed: List[str] = []

    def process_article(article_id):
        if article_id == "bad":
            raise FetchError("boom")
        processed.append(article_id)
        return 1

    monkeypatch.setattr(pipeline, "process_article", process_article)

    summary = pipeline.process_queue()

    assert processed == ["logic", "frege"]
    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.failures == {"bad": "boom"}


def test_process_queue_respects_limit_and_cancellation(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    fake_dao.queue_up("a", "b", "c")
    pipeline, _ = _pipeline(tmp_path)
    monkeypatch.setattr(pipeline, "process_article", lambda article_id: 1)

    assert pipeline.process_queue(limit=2).processed == 2
    assert fake_dao.waiting() == ["c"]

    cancel = threading.Event()
    cancel.set()
    cancelled, _ = _pipeline(tmp_path, cancel_event=cancel)

    assert cancelled.process_queue().processed == 0
    assert fake_dao.waiting() == ["c"]


def test_enqueue_all_only_counts_new_entries(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    fake_dao.busy = {"logic"}
    pipeline, connections = _pipeline(tmp_path)

    assert pipeline.enqueue_all() == 1
    assert fake_dao.enqueued == [("abelard", False), ("logic", False)]
    assert connections[0].commits == 1


def test_enqueue_recent_requeues_feed_items_since_cutoff(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    fake_dao.busy = {"busy"}
    pipeline, _ = _pipeline(tmp_path)

    queued = pipeline.enqueue_recent(since=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert queued == ["logic"]
    assert fake_dao.enqueued == [("logic", True), ("busy", True)]


def test_enqueue_explicit_ids_requeues(tmp_path, monkeypatch):
    fake_dao = _FakeDao(monkeypatch)
    pipeline, _ = _pipeline(tmp_path)

    assert pipeline.enqueue(["logic", "frege"]) == 2
    assert fake_dao.enqueued == [("logic", True), ("frege", True)]
