"""initial_schema

Revision ID: 20260301_initial_schema
Revises:
Create Date: 2026-03-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "20260301_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
        CREATE TABLE IF NOT EXISTS articles (
            article_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            authors TEXT,
            created TEXT,
            updated TEXT,
            ingested_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # section_id format: {article_id}/{number}
    op.execute("""
        CREATE TABLE IF NOT EXISTS sections (
            section_id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL REFERENCES articles(article_id) ON DELETE CASCADE,
            number TEXT NOT NULL,
            heading TEXT,
            num_chunks INT NOT NULL DEFAULT 0
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_sections_article ON sections(article_id)")

    # chunk_text is the retrieval-format text; generation text lives in the blob store
    op.execute("""
        CREATE TABLE IF NOT EXISTS chunks (
            chunk_id TEXT PRIMARY KEY,
            section_id TEXT NOT NULL REFERENCES sections(section_id) ON DELETE CASCADE,
            chunk_index INT NOT NULL CHECK (chunk_index >= 0),
            chunk_text TEXT NOT NULL,
            num_tokens INT NOT NULL DEFAULT 0,
            blob_key TEXT,
            chunk_tsv tsvector GENERATED ALWAYS AS (to_tsvector('simple', chunk_text)) STORED,
            UNIQUE (section_id, chunk_index)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_chunks_tsv ON chunks USING GIN (chunk_tsv)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS ingestion_queue (
            article_id TEXT PRIMARY KEY,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
            retry_count INT NOT NULL DEFAULT 0,
            last_attempt TIMESTAMPTZ,
            error_message TEXT
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_pending_jobs
        ON ingestion_queue (status, last_attempt)
        WHERE status IN ('pending', 'failed')
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP TABLE IF EXISTS ingestion_queue")
    op.execute("DROP TABLE IF EXISTS chunks")
    op.execute("DROP TABLE IF EXISTS sections")
    op.execute("DROP TABLE IF EXISTS articles")
