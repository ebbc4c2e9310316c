"""Database connectivity for the SQL slot registry and case store.

Works against SQLite (tests, single-process tools) and PostgreSQL.

Environment Variables:
    SLOTENGINE_DATABASE_URL: SQLAlchemy connection string
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, text

from slotengine.errors import ConfigError

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

SLOTENGINE_DATABASE_URL_ENV = "SLOTENGINE_DATABASE_URL"


class DatabaseConfigError(ConfigError):
    """Raised when database configuration is missing or invalid."""


SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS slot_definitions (
        slot_key VARCHAR(255) PRIMARY KEY,
        position INTEGER NOT NULL,
        category VARCHAR(32) NOT NULL,
        jurisdiction_id VARCHAR(255),
        domain_id VARCHAR(255),
        active BOOLEAN NOT NULL,
        version INTEGER NOT NULL,
        record TEXT NOT NULL,
        updated_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cases (
        case_id VARCHAR(255) PRIMARY KEY,
        user_id VARCHAR(255),
        jurisdiction_id VARCHAR(255),
        domain_id VARCHAR(255),
        slot_values TEXT NOT NULL,
        calculation_log TEXT NOT NULL,
        created_at VARCHAR(64) NOT NULL,
        updated_at VARCHAR(64)
    )
    """,
)


def is_database_configured() -> bool:
    """Return True if SLOTENGINE_DATABASE_URL is set."""
    return bool(os.environ.get(SLOTENGINE_DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    """Map the legacy postgres:// scheme to the one SQLAlchemy accepts."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url() -> str:
    """Get the database URL from environment.

    Raises:
        DatabaseConfigError: If SLOTENGINE_DATABASE_URL is not set.
    """
    url = os.environ.get(SLOTENGINE_DATABASE_URL_ENV)
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {SLOTENGINE_DATABASE_URL_ENV} environment variable."
        )
    return _normalize_url(url)


def create_db_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        url: Connection string. Defaults to SLOTENGINE_DATABASE_URL.

    Raises:
        DatabaseConfigError: If no URL is given or configured.
    """
    url = _normalize_url(url) if url else get_database_url()
    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False)
    else:
        engine = create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    logger.info("Created database engine for %s", engine.url.get_backend_name())
    return engine


@contextmanager
def begin_conn(engine: Engine) -> Generator[Connection, None, None]:
    """Connection in a transaction: commits on success, rolls back on error."""
    with engine.connect() as conn, conn.begin():
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create the slot_definitions and cases tables if they do not exist."""
    with begin_conn(engine) as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    logger.debug("Ensured slot engine schema")
