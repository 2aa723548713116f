import os

import pytest

from sep_rag.storage.db import get_connection, missing_tables
from sep_rag.storage.migrations import current_revision, run_migrations


@pytest.mark.skipif(
    os.getenv("SEP_RAG_DB_DSN") is None,
    reason="SEP_RAG_DB_DSN not set",
)
def test_migrations_apply_and_tables_exist() -> None:
    dsn = os.getenv("SEP_RAG_DB_DSN")

    run_migrations(dsn=dsn)
    # Running again should be safe
    run_migrations(dsn=dsn)

    with get_connection(dsn) as conn:
        assert missing_tables(conn) == []
        assert current_revision(conn) is not None
