"""Value Sets — Requirement, Offered and AsBuilt collections of field values."""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class ValueContext(str, Enum):
    REQUIREMENT = "Requirement"   # Buyer-specified values
    OFFERED = "Offered"           # Vendor-proposed values, optionally per party
    AS_BUILT = "AsBuilt"          # Values confirmed after installation


class ValueSetStatus(str, Enum):
    DRAFT = "Draft"
    LOCKED = "Locked"
    VERIFIED = "Verified"


# Listing order used by the store.
CONTEXT_SORT_ORDER = {
    ValueContext.REQUIREMENT: 1,
    ValueContext.OFFERED: 2,
    ValueContext.AS_BUILT: 3,
}

RawValue = Union[str, int, float, None]


class ValueSet(BaseModel):
    """One named collection of field values attached to a sheet."""

    value_set_id: int
    sheet_id: int
    context: ValueContext
    party_id: Optional[int] = None          # Only ever set for Offered
    status: ValueSetStatus = ValueSetStatus.DRAFT
    created_at: datetime
    created_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    def to_api(self) -> dict:
        return {
            "valueSetId": self.value_set_id,
            "context": self.context.value,
            "partyId": self.party_id,
            "status": self.status.value,
        }


class FieldValue(BaseModel):
    """A single (infoTemplateId -> value) pair inside a value set."""

    value_set_id: int
    info_template_id: int
    value: RawValue = None
    uom: Optional[str] = None
