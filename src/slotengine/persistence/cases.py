"""Case stores.

A store persists a case's slot values and calculation log. `save_case`
writes both fields atomically: after a failure neither has changed.
Retry policy belongs to the caller; stores never retry.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from slotengine.errors import CaseNotFoundError, StorageError
from slotengine.models.case import Case, LogEntry
from slotengine.models.values import dumps_values, loads_values
from slotengine.persistence.db import begin_conn

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@runtime_checkable
class CaseStore(Protocol):
    """Persistence boundary for cases."""

    def create_case(
        self,
        case_id: str | None = None,
        *,
        user_id: str | None = None,
        jurisdiction_id: str | None = None,
        domain_id: str | None = None,
    ) -> Case:
        """Create an empty case (a new id is generated when none is given)."""
        ...

    def load_case(self, case_id: str) -> Case:
        """Load a case.

        Raises:
            CaseNotFoundError: If the case does not exist.
            StorageError: If the store fails.
        """
        ...

    def save_case(
        self, case_id: str, slot_values: dict[str, Any], calculation_log: list[LogEntry]
    ) -> None:
        """Replace a case's values and log in one atomic write.

        Raises:
            CaseNotFoundError: If the case does not exist.
            StorageError: If the store fails.
        """
        ...


def _new_case(
    case_id: str | None,
    user_id: str | None,
    jurisdiction_id: str | None,
    domain_id: str | None,
) -> Case:
    return Case(
        case_id=case_id or str(uuid.uuid4()),
        user_id=user_id,
        jurisdiction_id=jurisdiction_id,
        domain_id=domain_id,
    )


class InMemoryCaseStore:
    """Dict-backed store. Cases are copied on the way in and out."""

    def __init__(self) -> None:
        self._cases: dict[str, Case] = {}
        self._lock = threading.Lock()

    def create_case(
        self,
        case_id: str | None = None,
        *,
        user_id: str | None = None,
        jurisdiction_id: str | None = None,
        domain_id: str | None = None,
    ) -> Case:
        case = _new_case(case_id, user_id, jurisdiction_id, domain_id)
        with self._lock:
            if case.case_id in self._cases:
                raise StorageError(f"Case already exists: {case.case_id}")
            self._cases[case.case_id] = case.model_copy(deep=True)
        return case

    def load_case(self, case_id: str) -> Case:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                raise CaseNotFoundError(case_id)
            return case.model_copy(deep=True)

    def save_case(
        self, case_id: str, slot_values: dict[str, Any], calculation_log: list[LogEntry]
    ) -> None:
        values = copy.deepcopy(slot_values)
        log = list(calculation_log)
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                raise CaseNotFoundError(case_id)
            self._cases[case_id] = case.model_copy(
                update={
                    "slot_values": values,
                    "calculation_log": log,
                    "updated_at": datetime.now(UTC),
                }
            )


class SqlCaseStore:
    """Cases in the `cases` table; values and log are JSON text columns.

    The schema must exist; see persistence.db.ensure_schema.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_case(
        self,
        case_id: str | None = None,
        *,
        user_id: str | None = None,
        jurisdiction_id: str | None = None,
        domain_id: str | None = None,
    ) -> Case:
        case = _new_case(case_id, user_id, jurisdiction_id, domain_id)
        try:
            with begin_conn(self._engine) as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO cases (
                            case_id, user_id, jurisdiction_id, domain_id,
                            slot_values, calculation_log, created_at, updated_at
                        ) VALUES (
                            :case_id, :user_id, :jurisdiction_id, :domain_id,
                            :slot_values, :calculation_log, :created_at, NULL
                        )
                        """
                    ),
                    {
                        "case_id": case.case_id,
                        "user_id": case.user_id,
                        "jurisdiction_id": case.jurisdiction_id,
                        "domain_id": case.domain_id,
                        "slot_values": "{}",
                        "calculation_log": "[]",
                        "created_at": case.created_at.isoformat(),
                    },
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create case {case.case_id}: {e}") from e
        logger.info("Created case %s", case.case_id)
        return case

    def load_case(self, case_id: str) -> Case:
        try:
            with begin_conn(self._engine) as conn:
                row = conn.execute(
                    text(
                        """
                        SELECT case_id, user_id, jurisdiction_id, domain_id,
                               slot_values, calculation_log, created_at, updated_at
                        FROM cases WHERE case_id = :case_id
                        """
                    ),
                    {"case_id": case_id},
                ).mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load case {case_id}: {e}") from e

        if row is None:
            raise CaseNotFoundError(case_id)

        try:
            return Case(
                case_id=row["case_id"],
                user_id=row["user_id"],
                jurisdiction_id=row["jurisdiction_id"],
                domain_id=row["domain_id"],
                slot_values=loads_values(row["slot_values"]),
                calculation_log=[
                    LogEntry.model_validate(entry)
                    for entry in loads_values(row["calculation_log"])
                ],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Corrupt case record {case_id}: {e}") from e

    def save_case(
        self, case_id: str, slot_values: dict[str, Any], calculation_log: list[LogEntry]
    ) -> None:
        try:
            values_json = dumps_values(slot_values)
            log_json = dumps_values([entry.to_record() for entry in calculation_log])
        except (TypeError, ValueError) as e:
            raise StorageError(f"Case {case_id} holds unserializable values: {e}") from e

        try:
            with begin_conn(self._engine) as conn:
                result = conn.execute(
                    text(
                        """
                        UPDATE cases
                        SET slot_values = :slot_values,
                            calculation_log = :calculation_log,
                            updated_at = :updated_at
                        WHERE case_id = :case_id
                        """
                    ),
                    {
                        "case_id": case_id,
                        "slot_values": values_json,
                        "calculation_log": log_json,
                        "updated_at": datetime.now(UTC).isoformat(),
                    },
                )
                if result.rowcount == 0:
                    raise CaseNotFoundError(case_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save case {case_id}: {e}") from e
        logger.debug("Saved case %s (%d log entries)", case_id, len(calculation_log))
