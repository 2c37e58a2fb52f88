"""
Value Set Store — value sets, their field values, and variance decisions.

Behavioral Contract:
- At most one Requirement and one AsBuilt value set per sheet; Offered sets
  are unique per (sheet, party). Creation is idempotent on that key.
- Value sets are never deleted here.
- Status changes are conditional writes (compare-and-set on the current
  status), never read-then-write.
- Field values and variance decisions are independent rows keyed by
  (value_set_id, info_template_id).
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from valueset_engine.models.value_set import (
    CONTEXT_SORT_ORDER,
    FieldValue,
    RawValue,
    ValueContext,
    ValueSet,
    ValueSetStatus,
)
from valueset_engine.models.variance import VarianceDecision, VarianceStatus

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ValueSetStore:
    """
    SQLite-backed value-set store.
    Prototype: SQLite. Production: the shared relational datasheet database.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS value_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sheet_id INTEGER NOT NULL,
                    context TEXT NOT NULL,
                    party_id INTEGER,
                    status TEXT NOT NULL DEFAULT 'Draft',
                    created_at TEXT NOT NULL,
                    created_by INTEGER,
                    updated_at TEXT
                )
            """)
            # NULL party ids must collide with each other, hence the IFNULL.
            self._conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_value_sets_key
                ON value_sets(sheet_id, context, IFNULL(party_id, -1))
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS field_values (
                    value_set_id INTEGER NOT NULL,
                    info_template_id INTEGER NOT NULL,
                    value_json TEXT NOT NULL,
                    uom TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (value_set_id, info_template_id)
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS variance_decisions (
                    value_set_id INTEGER NOT NULL,
                    info_template_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    requirement_value TEXT NOT NULL,
                    compared_value TEXT NOT NULL,
                    reviewed_by INTEGER,
                    reviewed_at TEXT NOT NULL,
                    PRIMARY KEY (value_set_id, info_template_id)
                )
            """)
            self._conn.commit()
        logger.debug("Value-set schema ready at %s", self.db_path)

    # --- Value sets ---

    def _row_to_value_set(self, row: sqlite3.Row) -> ValueSet:
        return ValueSet(
            value_set_id=row["id"],
            sheet_id=row["sheet_id"],
            context=ValueContext(row["context"]),
            party_id=row["party_id"],
            status=ValueSetStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            created_by=row["created_by"],
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    def find_value_set_id(
        self,
        sheet_id: int,
        context: ValueContext,
        party_id: Optional[int] = None,
    ) -> Optional[int]:
        """Value set id for (sheet, context, party), or None if none exists."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM value_sets WHERE sheet_id = ? AND context = ? "
                "AND IFNULL(party_id, -1) = IFNULL(?, -1)",
                (sheet_id, ValueContext(context).value, party_id),
            ).fetchone()
        return row["id"] if row else None

    def create_value_set(
        self,
        sheet_id: int,
        context: ValueContext,
        party_id: Optional[int] = None,
        created_by: Optional[int] = None,
    ) -> int:
        """
        Create a Draft value set, or return the existing one for the same
        (sheet, context, party). party_id is only kept for Offered sets.
        """
        context = ValueContext(context)
        if context != ValueContext.OFFERED:
            party_id = None

        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO value_sets (
                    sheet_id, context, party_id, status, created_at, created_by
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    sheet_id,
                    context.value,
                    party_id,
                    ValueSetStatus.DRAFT.value,
                    _now().isoformat(),
                    created_by,
                ),
            )
            self._conn.commit()
            if cursor.rowcount == 1:
                return cursor.lastrowid
            existing = self.find_value_set_id(sheet_id, context, party_id)
        if existing is None:
            raise RuntimeError(f"Failed to create {context.value} value set for sheet {sheet_id}")
        return existing

    def get_value_set(self, value_set_id: int) -> Optional[ValueSet]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM value_sets WHERE id = ?", (value_set_id,)
            ).fetchone()
        return self._row_to_value_set(row) if row else None

    def list_value_sets(self, sheet_id: int) -> List[ValueSet]:
        """All value sets of a sheet: Requirement, Offered, AsBuilt, then by id."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM value_sets WHERE sheet_id = ? ORDER BY id",
                (sheet_id,),
            ).fetchall()
        sets = [self._row_to_value_set(r) for r in rows]
        return sorted(sets, key=lambda vs: (CONTEXT_SORT_ORDER[vs.context], vs.value_set_id))

    def compare_and_set_status(
        self,
        value_set_id: int,
        expected: ValueSetStatus,
        new_status: ValueSetStatus,
    ) -> bool:
        """Single conditional write. True if the row was still in `expected`."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE value_sets SET status = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (
                    ValueSetStatus(new_status).value,
                    _now().isoformat(),
                    value_set_id,
                    ValueSetStatus(expected).value,
                ),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    # --- Field values ---

    def set_field_value(
        self,
        value_set_id: int,
        info_template_id: int,
        value: RawValue,
        uom: Optional[str] = None,
    ) -> FieldValue:
        """Insert or replace one field value."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO field_values (value_set_id, info_template_id, value_json, uom, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (value_set_id, info_template_id)
                DO UPDATE SET value_json = excluded.value_json,
                              uom = excluded.uom,
                              updated_at = excluded.updated_at
                """,
                (value_set_id, info_template_id, json.dumps(value), uom, _now().isoformat()),
            )
            self._conn.commit()
        return FieldValue(
            value_set_id=value_set_id,
            info_template_id=info_template_id,
            value=value,
            uom=uom,
        )

    def get_values(self, value_set_id: int) -> Dict[int, FieldValue]:
        """All field values of a value set keyed by info template id."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT info_template_id, value_json, uom FROM field_values "
                "WHERE value_set_id = ? ORDER BY info_template_id",
                (value_set_id,),
            ).fetchall()
        return {
            r["info_template_id"]: FieldValue(
                value_set_id=value_set_id,
                info_template_id=r["info_template_id"],
                value=json.loads(r["value_json"]),
                uom=r["uom"],
            )
            for r in rows
        }

    def get_field_value(self, value_set_id: int, info_template_id: int) -> Optional[FieldValue]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_json, uom FROM field_values "
                "WHERE value_set_id = ? AND info_template_id = ?",
                (value_set_id, info_template_id),
            ).fetchone()
        if row is None:
            return None
        return FieldValue(
            value_set_id=value_set_id,
            info_template_id=info_template_id,
            value=json.loads(row["value_json"]),
            uom=row["uom"],
        )

    def copy_missing_values(self, source_value_set_id: int, target_value_set_id: int) -> int:
        """Copy source field values the target does not hold yet. Returns rows copied."""
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO field_values (value_set_id, info_template_id, value_json, uom, updated_at)
                SELECT ?, src.info_template_id, src.value_json, src.uom, ?
                FROM field_values src
                WHERE src.value_set_id = ?
                  AND NOT EXISTS (
                      SELECT 1 FROM field_values dst
                      WHERE dst.value_set_id = ? AND dst.info_template_id = src.info_template_id
                  )
                """,
                (target_value_set_id, _now().isoformat(), source_value_set_id, target_value_set_id),
            )
            self._conn.commit()
        return cursor.rowcount

    # --- Variance decisions ---

    def _row_to_decision(self, row: sqlite3.Row) -> VarianceDecision:
        return VarianceDecision(
            value_set_id=row["value_set_id"],
            info_template_id=row["info_template_id"],
            status=VarianceStatus(row["status"]),
            requirement_value=row["requirement_value"],
            compared_value=row["compared_value"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=datetime.fromisoformat(row["reviewed_at"]),
        )

    def upsert_decision(self, decision: VarianceDecision) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO variance_decisions (
                    value_set_id, info_template_id, status,
                    requirement_value, compared_value, reviewed_by, reviewed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (value_set_id, info_template_id)
                DO UPDATE SET status = excluded.status,
                              requirement_value = excluded.requirement_value,
                              compared_value = excluded.compared_value,
                              reviewed_by = excluded.reviewed_by,
                              reviewed_at = excluded.reviewed_at
                """,
                (
                    decision.value_set_id,
                    decision.info_template_id,
                    decision.status.value,
                    decision.requirement_value,
                    decision.compared_value,
                    decision.reviewed_by,
                    decision.reviewed_at.isoformat(),
                ),
            )
            self._conn.commit()

    def delete_decision(self, value_set_id: int, info_template_id: int) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM variance_decisions WHERE value_set_id = ? AND info_template_id = ?",
                (value_set_id, info_template_id),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def delete_decisions_for_field(self, value_set_ids: List[int], info_template_id: int) -> int:
        """Drop the decisions on one field across several value sets. Returns rows removed."""
        if not value_set_ids:
            return 0
        placeholders = ", ".join("?" for _ in value_set_ids)
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM variance_decisions WHERE info_template_id = ? "
                f"AND value_set_id IN ({placeholders})",
                (info_template_id, *value_set_ids),
            )
            self._conn.commit()
        return cursor.rowcount

    def get_decision(self, value_set_id: int, info_template_id: int) -> Optional[VarianceDecision]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM variance_decisions WHERE value_set_id = ? AND info_template_id = ?",
                (value_set_id, info_template_id),
            ).fetchone()
        return self._row_to_decision(row) if row else None

    def get_decisions(self, value_set_id: int) -> Dict[int, VarianceDecision]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM variance_decisions WHERE value_set_id = ?",
                (value_set_id,),
            ).fetchall()
        return {r["info_template_id"]: self._row_to_decision(r) for r in rows}

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
