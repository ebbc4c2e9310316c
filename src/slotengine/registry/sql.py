"""SQL-backed slot registry.

Each slot is stored as its canonical JSON record in `slot_definitions`, with
the columns the registry filters on (category, scope, active) broken out.
Listing order is the `position` column, assigned on first insert.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Collection
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from slotengine.errors import SlotConfigError, StorageError
from slotengine.models.slot import ScopeFilter, Slot, SlotCategory
from slotengine.models.values import dumps_values, loads_values
from slotengine.persistence.db import begin_conn
from slotengine.registry.base import slot_to_record

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class SqlSlotRegistry:
    """Slot registry over a SQLAlchemy engine (SQLite or PostgreSQL).

    The schema must exist; see persistence.db.ensure_schema.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _parse(self, slot_key: str, record: str) -> Slot:
        try:
            return Slot.model_validate(loads_values(record))
        except (json.JSONDecodeError, ValidationError) as e:
            raise SlotConfigError(f"slot_definitions[{slot_key}]", [str(e)]) from e

    def upsert_slot(self, slot: Slot) -> None:
        """Insert or replace a slot record, keeping its original position."""
        params: dict[str, Any] = {
            "slot_key": slot.key,
            "category": slot.category.value,
            "jurisdiction_id": slot.scope.jurisdiction_id if slot.scope else None,
            "domain_id": slot.scope.domain_id if slot.scope else None,
            "active": slot.active,
            "version": slot.version,
            "record": dumps_values(slot_to_record(slot)),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            with begin_conn(self._engine) as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM slot_definitions WHERE slot_key = :slot_key"),
                    {"slot_key": slot.key},
                ).first()
                if exists:
                    conn.execute(
                        text(
                            """
                            UPDATE slot_definitions
                            SET category = :category, jurisdiction_id = :jurisdiction_id,
                                domain_id = :domain_id, active = :active, version = :version,
                                record = :record, updated_at = :updated_at
                            WHERE slot_key = :slot_key
                            """
                        ),
                        params,
                    )
                else:
                    position = conn.execute(
                        text("SELECT COALESCE(MAX(position), -1) + 1 FROM slot_definitions")
                    ).scalar_one()
                    conn.execute(
                        text(
                            """
                            INSERT INTO slot_definitions (
                                slot_key, position, category, jurisdiction_id, domain_id,
                                active, version, record, updated_at
                            ) VALUES (
                                :slot_key, :position, :category, :jurisdiction_id, :domain_id,
                                :active, :version, :record, :updated_at
                            )
                            """
                        ),
                        {**params, "position": position},
                    )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store slot {slot.key}: {e}") from e
        logger.debug("Stored slot %s (version %d)", slot.key, slot.version)

    def get_slot(self, key: str) -> Slot | None:
        try:
            with begin_conn(self._engine) as conn:
                row = conn.execute(
                    text("SELECT record FROM slot_definitions WHERE slot_key = :slot_key"),
                    {"slot_key": key},
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load slot {key}: {e}") from e
        return self._parse(key, row[0]) if row else None

    def list_active_slots(
        self,
        scope_filter: ScopeFilter,
        categories: Collection[SlotCategory] | None = None,
    ) -> list[Slot]:
        clauses = ["active = :active"]
        params: dict[str, Any] = {"active": True}
        if scope_filter.jurisdiction_id is not None:
            clauses.append("(jurisdiction_id IS NULL OR jurisdiction_id = :jurisdiction_id)")
            params["jurisdiction_id"] = scope_filter.jurisdiction_id
        if scope_filter.domain_id is not None:
            clauses.append("(domain_id IS NULL OR domain_id = :domain_id)")
            params["domain_id"] = scope_filter.domain_id

        statement = "SELECT slot_key, record FROM slot_definitions WHERE " + " AND ".join(clauses)
        query = text(statement + " ORDER BY position")
        if categories is not None:
            query = text(statement + " AND category IN :categories ORDER BY position").bindparams(
                bindparam("categories", expanding=True)
            )
            params["categories"] = sorted(category.value for category in categories)
            if not params["categories"]:
                return []

        try:
            with begin_conn(self._engine) as conn:
                rows = conn.execute(query, params).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list slots: {e}") from e
        return [self._parse(slot_key, record) for slot_key, record in rows]
