"""
Sheet Directory — the FilledSheet lookup collaborator.

Answers two questions for the engine: what is a sheet's current status and
structure, and does it belong to a given account. Also owns the one status
change the engine may request (Rejected -> ModifiedDraft after an edit).
"""

import logging
from typing import Dict, Optional

from valueset_engine.models.sheet import FilledSheet, SheetStatus

logger = logging.getLogger(__name__)


class SheetDirectory:
    """
    In-memory filled-sheet directory.
    Production would back this with the datasheet service.
    """

    def __init__(self):
        self._sheets: Dict[int, FilledSheet] = {}

    def upsert_sheet(self, sheet: FilledSheet) -> None:
        self._sheets[sheet.sheet_id] = sheet

    def get_sheet(self, sheet_id: int) -> Optional[FilledSheet]:
        return self._sheets.get(sheet_id)

    def sheet_belongs_to_account(self, sheet_id: int, account_id: int) -> bool:
        sheet = self._sheets.get(sheet_id)
        return sheet is not None and sheet.account_id == account_id

    def set_status(self, sheet_id: int, status: SheetStatus) -> None:
        sheet = self._sheets.get(sheet_id)
        if sheet:
            sheet.status = status

    def bump_rejected_to_modified_draft(
        self, sheet_id: int, user_id: Optional[int] = None
    ) -> bool:
        """Move a Rejected sheet back into ModifiedDraft. No-op for any other status."""
        sheet = self._sheets.get(sheet_id)
        if sheet is None or sheet.status != SheetStatus.REJECTED:
            return False
        sheet.status = SheetStatus.MODIFIED_DRAFT
        logger.info(
            "Sheet %s moved Rejected -> ModifiedDraft (user=%s)", sheet_id, user_id
        )
        return True
