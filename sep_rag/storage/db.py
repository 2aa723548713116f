"""PostgreSQL connections and schema checks."""

from __future__ import annotations

import os
from typing import List, Sequence

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row

from sep_rag.exceptions import ConfigError, DatabaseError

DSN_ENV = "SEP_RAG_DB_DSN"
SCHEMA_TABLES = ("articles", "sections", "chunks", "ingestion_queue")


def resolve_dsn(dsn: str | None = None) -> str:
    resolved = dsn or os.getenv(DSN_ENV)
    if not resolved:
        raise ConfigError(f"Database DSN is not configured. Set {DSN_ENV} or pass dsn explicitly.")
    return resolved


def get_connection(dsn: str | None = None) -> Connection:
    """Open a connection to the given DSN, or to ``SEP_RAG_DB_DSN``."""

    resolved = resolve_dsn(dsn)
    try:
        return psycopg.connect(resolved)
    except psycopg.Error as exc:
        raise DatabaseError(f"Failed to connect to database: {exc}") from exc


def missing_tables(conn: Connection, table_names: Sequence[str] = SCHEMA_TABLES) -> List[str]:
    """Return the names in ``table_names`` absent from the current schema, in order."""

    if not table_names:
        return []
    query = """
        SELECT tablename
        FROM pg_catalog.pg_tables
        WHERE schemaname = current_schema()
          AND tablename = ANY(%s)
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(query, (list(table_names),))
        present = {row["tablename"] for row in cur.fetchall()}
    return [name for name in table_names if name not in present]


def ensure_schema(conn: Connection) -> None:
    """Raise :class:`DatabaseError` unless every sep-rag table exists."""

    missing = missing_tables(conn)
    if missing:
        raise DatabaseError(
            f"Database schema is incomplete (missing: {', '.join(missing)}); run `sep-rag migrate`."
        )
