"""
Sheet Status Gate — decides whether value-set data may change.

Independent of which value set or field is touched: only the parent sheet's
review status matters. Reads are never routed through the gate.
"""

import logging

from valueset_engine.errors import ConflictError
from valueset_engine.models.sheet import SheetStatus

logger = logging.getLogger(__name__)

MUTABLE_SHEET_STATUSES = frozenset({
    SheetStatus.DRAFT,
    SheetStatus.MODIFIED_DRAFT,
    SheetStatus.REJECTED,
})


class SheetStatusGate:
    def is_mutable(self, sheet_status: SheetStatus) -> bool:
        return SheetStatus(sheet_status) in MUTABLE_SHEET_STATUSES

    def assert_mutable(self, sheet_status: SheetStatus) -> None:
        """Raise ConflictError unless the sheet is Draft, ModifiedDraft or Rejected."""
        if not self.is_mutable(sheet_status):
            status = SheetStatus(sheet_status).value
            logger.warning("Mutation refused: sheet status is %s", status)
            raise ConflictError(f"Sheet is not editable in status {status}")
