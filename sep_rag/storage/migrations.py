"""Apply the Alembic migrations under ``alembic/`` from Python."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from psycopg import Connection

from sep_rag.storage.db import missing_tables, resolve_dsn

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def sqlalchemy_url(dsn: str) -> str:
    """Spell out the psycopg 3 driver, which SQLAlchemy does not pick by default."""

    for scheme in ("postgresql://", "postgres://"):
        if dsn.startswith(scheme):
            return "postgresql+psycopg://" + dsn[len(scheme):]
    return dsn


def get_alembic_config(dsn: str | None = None) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    # ConfigParser interpolation treats "%" specially.
    config.set_main_option("sqlalchemy.url", sqlalchemy_url(resolve_dsn(dsn)).replace("%", "%%"))
    return config


def run_migrations(dsn: str | None = None, revision: str = "head") -> None:
    logger.info("Upgrading database schema to %s", revision)
    command.upgrade(get_alembic_config(dsn), revision)


def current_revision(conn: Connection) -> str | None:
    """Return the applied Alembic revision, or ``None`` on an unmigrated database."""

    if missing_tables(conn, ("alembic_version",)):
        return None
    with conn.cursor() as cur:
        cur.execute("SELECT version_num FROM alembic_version")
        row = cur.fetchone()
    return row[0] if row else None
