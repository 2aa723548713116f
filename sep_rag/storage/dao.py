"""Data-access layer for articles, sections, chunks and the ingestion queue."""

from __future__ import annotations

from typing import Iterable, Sequence

from psycopg import Connection
from psycopg.rows import dict_row

from sep_rag.models import (
    ArticleRecord,
    ChunkPosition,
    ChunkRecord,
    ChunkWithContext,
    IngestionQueueEntry,
    IngestionStatus,
    LexicalMatch,
    NeighborChunk,
    SectionRecord,
)

_CONTEXT_COLUMNS = """
    c.chunk_id, c.section_id, c.chunk_index, c.chunk_text, c.num_tokens, c.blob_key,
    s.heading, s.number AS section_number, s.article_id, a.title AS article_title
"""

_CONTEXT_JOIN = """
    FROM chunks c
    JOIN sections s ON s.section_id = c.section_id
    JOIN articles a ON a.article_id = s.article_id
"""

_QUEUE_COLUMNS = "article_id, status, retry_count, last_attempt, error_message"


# ─────────────────────────────────────────────────────────────────────────────
# Articles, sections and chunks
# ─────────────────────────────────────────────────────────────────────────────


def upsert_article(conn: Connection, article: ArticleRecord) -> ArticleRecord:
    """Insert or update an article record and return the persisted model."""

    sql = """
        INSERT INTO articles (article_id, title, authors, created, updated)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (article_id) DO UPDATE
            SET title = EXCLUDED.title,
                authors = EXCLUDED.authors,
                created = EXCLUDED.created,
                updated = EXCLUDED.updated,
                ingested_at = now()
        RETURNING article_id, title, authors, created, updated
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            sql,
            (article.article_id, article.title, article.authors, article.created, article.updated),
        )
        return ArticleRecord.model_validate(cur.fetchone())


def upsert_section(conn: Connection, section: SectionRecord) -> SectionRecord:
    sql = """
        INSERT INTO sections (section_id, article_id, number, heading, num_chunks)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (section_id) DO UPDATE
            SET article_id = EXCLUDED.article_id,
                number = EXCLUDED.number,
                heading = EXCLUDED.heading,
                num_chunks = EXCLUDED.num_chunks
        RETURNING section_id, article_id, number, heading, num_chunks
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            sql,
            (
                section.section_id,
                section.article_id,
                section.number,
                section.heading,
                section.num_chunks,
            ),
        )
        return SectionRecord.model_validate(cur.fetchone())


def delete_article_content(conn: Connection, article_id: str) -> list[str]:
    """Delete every section and chunk of an article.

    Returns the deleted chunk ids so callers can clean up vectors and blobs.
    """

    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            DELETE FROM chunks
            WHERE section_id IN (SELECT section_id FROM sections WHERE article_id = %s)
            RETURNING chunk_id
            """,
            (article_id,),
        )
        chunk_ids = [row["chunk_id"] for row in cur.fetchall()]
        cur.execute("DELETE FROM sections WHERE article_id = %s", (article_id,))
    return chunk_ids


def insert_chunks(conn: Connection, chunks: Iterable[ChunkRecord]) -> list[ChunkRecord]:
    """Insert a collection of chunks and return the persisted rows."""

    sql = """
        INSERT INTO chunks (chunk_id, section_id, chunk_index, chunk_text, num_tokens, blob_key)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING chunk_id, section_id, chunk_index, chunk_text, num_tokens, blob_key
    """

    inserted: list[ChunkRecord] = []
    with conn.transaction():
        with conn.cursor(row_factory=dict_row) as cur:
            for chunk in chunks:
                cur.execute(
                    sql,
                    (
                        chunk.chunk_id,
                        chunk.section_id,
                        chunk.chunk_index,
                        chunk.chunk_text,
                        chunk.num_tokens,
                        chunk.blob_key,
                    ),
                )
                inserted.append(ChunkRecord.model_validate(cur.fetchone()))
    return inserted


def get_chunks_with_context(conn: Connection, chunk_ids: Sequence[str]) -> list[ChunkWithContext]:
    """Fetch chunks joined with their section and article; unknown ids are skipped."""

    if not chunk_ids:
        return []

    sql = f"""
        SELECT {_CONTEXT_COLUMNS}
        {_CONTEXT_JOIN}
        WHERE c.chunk_id = ANY(%s)
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (list(chunk_ids),))
        rows = cur.fetchall()
    return [ChunkWithContext.model_validate(row) for row in rows]


def get_chunk_position(conn: Connection, chunk_id: str) -> ChunkPosition | None:
    sql = """
        SELECT c.chunk_id, c.section_id, c.chunk_index, s.num_chunks
        FROM chunks c
        JOIN sections s ON s.section_id = c.section_id
        WHERE c.chunk_id = %s
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (chunk_id,))
        row = cur.fetchone()
    return ChunkPosition.model_validate(row) if row else None


def get_section_chunks(
    conn: Connection, section_id: str, chunk_indices: Sequence[int]
) -> list[NeighborChunk]:
    """Fetch the chunks of one section at ``chunk_indices``, ordered by index."""

    if not chunk_indices:
        return []

    sql = f"""
        SELECT {_CONTEXT_COLUMNS}
        {_CONTEXT_JOIN}
        WHERE c.section_id = %s AND c.chunk_index = ANY(%s)
        ORDER BY c.chunk_index
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (section_id, list(chunk_indices)))
        rows = cur.fetchall()
    return [NeighborChunk.model_validate(row) for row in rows]


def search_chunks_lexical(conn: Connection, query: str, limit: int) -> list[LexicalMatch]:
    """Full-text search over chunk text, best match first.

    ``query`` should already be sanitized; ``plainto_tsquery`` ANDs its words.
    """

    if not query.strip() or limit <= 0:
        return []

    sql = """
        SELECT c.chunk_id, c.section_id, ts_rank_cd(c.chunk_tsv, q) AS rank
        FROM chunks c, plainto_tsquery('simple', %s) AS q
        WHERE c.chunk_tsv @@ q
        ORDER BY rank DESC, c.chunk_id
        LIMIT %s
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (query, limit))
        rows = cur.fetchall()
    return [LexicalMatch.model_validate(row) for row in rows]


# ─────────────────────────────────────────────────────────────────────────────
# Ingestion queue
# ─────────────────────────────────────────────────────────────────────────────


def enqueue_article(conn: Connection, article_id: str, *, requeue: bool = False) -> bool:
    """Add an article to the queue as ``pending``.

    Existing entries are left alone unless ``requeue`` is set, in which case
    they are moved back to ``pending``. Returns whether a row changed.
    """

    if requeue:
        sql = """
            INSERT INTO ingestion_queue (article_id, status)
            VALUES (%s, 'pending')
            ON CONFLICT (article_id) DO UPDATE
                SET status = 'pending',
                    error_message = NULL
                WHERE ingestion_queue.status <> 'processing'
        """
    else:
        sql = """
            INSERT INTO ingestion_queue (article_id, status)
            VALUES (%s, 'pending')
            ON CONFLICT (article_id) DO NOTHING
        """
    with conn.cursor() as cur:
        cur.execute(sql, (article_id,))
        return cur.rowcount > 0


def update_ingestion_status(
    conn: Connection,
    article_id: str,
    status: IngestionStatus,
    *,
    error_message: str | None = None,
    increment_retry: bool = False,
) -> None:
    sql = """
        UPDATE ingestion_queue
        SET status = %s,
            error_message = %s,
            retry_count = retry_count + %s,
            last_attempt = now()
        WHERE article_id = %s
    """
    with conn.cursor() as cur:
        cur.execute(
            sql,
            (IngestionStatus(status).value, error_message, 1 if increment_retry else 0, article_id),
        )
        if cur.rowcount == 0:
            cur.execute(
                """
                INSERT INTO ingestion_queue (article_id, status, error_message, retry_count, last_attempt)
                VALUES (%s, %s, %s, %s, now())
                """,
                (article_id, IngestionStatus(status).value, error_message, 1 if increment_retry else 0),
            )


def claim_next_article(
    conn: Connection,
    exclude: Sequence[str] = (),
) -> IngestionQueueEntry | None:
    """Atomically move the next eligible article to ``processing`` and return it.

    Eligible entries are ``pending`` or ``failed`` and not in ``exclude``,
    oldest ``last_attempt`` first with never-attempted entries ahead of all
    others. Rows locked by another worker are skipped.
    """

    sql = f"""
        UPDATE ingestion_queue
        SET status = 'processing', last_attempt = now()
        WHERE article_id = (
            SELECT article_id
            FROM ingestion_queue
            WHERE status IN ('pending', 'failed')
              AND NOT (article_id = ANY(%s::text[]))
            ORDER BY last_attempt ASC NULLS FIRST, article_id
            LIMIT 1
            FOR UPDATE SKIP LOCKED
        )
        RETURNING {_QUEUE_COLUMNS}
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (list(exclude),))
        row = cur.fetchone()
    return IngestionQueueEntry.model_validate(row) if row else None


def get_queue_entry(conn: Connection, article_id: str) -> IngestionQueueEntry | None:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            f"SELECT {_QUEUE_COLUMNS} FROM ingestion_queue WHERE article_id = %s",
            (article_id,),
        )
        row = cur.fetchone()
    return IngestionQueueEntry.model_validate(row) if row else None


def get_queue_stats(conn: Connection) -> dict[str, int]:
    """Return the number of queue entries per status (every status present)."""

    stats = {status.value: 0 for status in IngestionStatus}
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute("SELECT status, COUNT(*) AS total FROM ingestion_queue GROUP BY status")
        for row in cur.fetchall():
            stats[row["status"]] = int(row["total"])
    return stats


def find_incomplete_articles(conn: Connection) -> list[str]:
    """Return completed articles with fewer than two chunks or unnumbered sections."""

    sql = """
        SELECT a.article_id
        FROM articles a
        JOIN ingestion_queue iq ON iq.article_id = a.article_id
        LEFT JOIN sections s ON s.article_id = a.article_id
        LEFT JOIN chunks c ON c.section_id = s.section_id
        WHERE iq.status = 'completed'
        GROUP BY a.article_id
        HAVING COUNT(c.chunk_id) < 2
        UNION
        SELECT DISTINCT s.article_id
        FROM sections s
        JOIN ingestion_queue iq ON iq.article_id = s.article_id
        WHERE iq.status = 'completed'
          AND (s.number IS NULL OR s.number = '')
        ORDER BY article_id
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql)
        return [row["article_id"] for row in cur.fetchall()]


def reset_articles(
    conn: Connection,
    article_ids: Sequence[str],
    status: IngestionStatus = IngestionStatus.PENDING,
) -> int:
    """Move queue entries back to ``pending`` or ``failed``; return rows updated."""

    target = IngestionStatus(status)
    if target not in (IngestionStatus.PENDING, IngestionStatus.FAILED):
        raise ValueError("articles can only be reset to pending or failed")
    if not article_ids:
        return 0

    sql = """
        UPDATE ingestion_queue
        SET status = %s,
            error_message = NULL
        WHERE article_id = ANY(%s)
    """
    with conn.cursor() as cur:
        cur.execute(sql, (target.value, list(article_ids)))
        return cur.rowcount
