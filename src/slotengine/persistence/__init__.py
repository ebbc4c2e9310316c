"""Case persistence and database helpers."""

from slotengine.persistence.cases import CaseStore, InMemoryCaseStore, SqlCaseStore
from slotengine.persistence.db import (
    DatabaseConfigError,
    begin_conn,
    create_db_engine,
    ensure_schema,
    get_database_url,
    is_database_configured,
)

__all__ = [
    "CaseStore",
    "DatabaseConfigError",
    "InMemoryCaseStore",
    "SqlCaseStore",
    "begin_conn",
    "create_db_engine",
    "ensure_schema",
    "get_database_url",
    "is_database_configured",
]
