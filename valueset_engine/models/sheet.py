"""Filled Sheet — the read-only collaborator entity the engine gates on."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class SheetStatus(str, Enum):
    """Review-lifecycle status of a filled datasheet."""
    DRAFT = "Draft"
    MODIFIED_DRAFT = "ModifiedDraft"
    REJECTED = "Rejected"
    VERIFIED = "Verified"
    APPROVED = "Approved"


NUMERIC_INFO_TYPES = ("int", "integer", "decimal", "number", "float")


class FieldTemplate(BaseModel):
    """A typed field on a subsheet (an InfoTemplate row)."""

    info_template_id: int
    label: str
    info_type: str = "varchar"              # "int" | "decimal" | "varchar" | "option" ...
    uom: Optional[str] = None
    order_index: int = 0

    @property
    def is_numeric(self) -> bool:
        return self.info_type.lower() in NUMERIC_INFO_TYPES


class Subsheet(BaseModel):
    id: int
    name: str
    order_index: int = 0
    fields: List[FieldTemplate] = []


class FilledSheet(BaseModel):
    """
    A filled datasheet as seen by the engine.

    The engine reads status and tenant ownership on every operation but
    never writes the sheet itself; the only status change it may request is
    the Rejected -> ModifiedDraft bump owned by the sheet directory.
    """

    sheet_id: int
    account_id: int
    status: SheetStatus = SheetStatus.DRAFT
    subsheets: List[Subsheet] = []

    def ordered_subsheets(self) -> List[Subsheet]:
        return sorted(self.subsheets, key=lambda s: (s.order_index, s.id))

    def find_field(self, info_template_id: int) -> Optional[FieldTemplate]:
        for sub in self.subsheets:
            for f in sub.fields:
                if f.info_template_id == info_template_id:
                    return f
        return None
