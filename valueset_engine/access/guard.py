"""
Access Guard — tenant isolation for every sheet-scoped operation.

A sheet owned by another account is reported exactly like a sheet that does
not exist, so callers cannot probe for other tenants' sheet ids.
"""

import logging

from valueset_engine.errors import NotFoundError
from valueset_engine.models.sheet import FilledSheet
from valueset_engine.sheets.directory import SheetDirectory

logger = logging.getLogger(__name__)


class AccessGuard:
    def __init__(self, directory: SheetDirectory):
        self.directory = directory

    def owns_sheet(self, sheet_id: int, account_id: int) -> bool:
        return self.directory.sheet_belongs_to_account(sheet_id, account_id)

    def require_sheet(self, sheet_id: int, account_id: int) -> FilledSheet:
        """Return the sheet if the account owns it; raise NotFoundError otherwise."""
        if not self.owns_sheet(sheet_id, account_id):
            logger.warning(
                "Access refused: sheet %s not visible to account %s", sheet_id, account_id
            )
            raise NotFoundError("Sheet not found")
        sheet = self.directory.get_sheet(sheet_id)
        if sheet is None:
            raise NotFoundError("Sheet not found")
        return sheet
