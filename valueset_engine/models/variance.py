"""Variance — field-level comparison outcomes and reviewer decisions."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class VarianceStatus(str, Enum):
    MATCHES = "Matches"
    DEVIATES = "Deviates"
    DEVIATES_ACCEPTED = "DeviatesAccepted"
    DEVIATES_REJECTED = "DeviatesRejected"


# Only these may be recorded by a reviewer; the other two are always computed.
DECISION_STATUSES = (
    VarianceStatus.DEVIATES_ACCEPTED,
    VarianceStatus.DEVIATES_REJECTED,
)


class VarianceDecision(BaseModel):
    """
    A reviewer's accept/reject ruling on one deviating field.

    Carries the normalized Requirement and compared values the reviewer saw.
    The decision only applies while both current values still normalize to
    these snapshots; once either side is edited the computed status wins.
    """
    value_set_id: int
    info_template_id: int
    status: VarianceStatus
    requirement_value: str
    compared_value: str
    reviewed_by: Optional[int] = None
    reviewed_at: datetime


class Variance(BaseModel):
    sheet_id: int
    value_set_id: int
    info_template_id: int
    status: VarianceStatus


class ComparedValue(BaseModel):
    """An Offered or AsBuilt value paired against the Requirement."""
    value_set_id: int
    party_id: Optional[int] = None
    value: Optional[str] = None
    uom: Optional[str] = None
    variance_status: VarianceStatus

    def to_api(self, include_party: bool = True) -> dict:
        data = {
            "valueSetId": self.value_set_id,
            "value": self.value,
            "uom": self.uom,
            "varianceStatus": self.variance_status.value,
        }
        if include_party:
            data["partyId"] = self.party_id
        return data


class CompareField(BaseModel):
    info_template_id: int
    label: str
    uom: Optional[str] = None
    requirement: Optional[str] = None
    offered: List[ComparedValue] = []
    as_built: Optional[ComparedValue] = None

    def to_api(self) -> dict:
        return {
            "infoTemplateId": self.info_template_id,
            "label": self.label,
            "uom": self.uom,
            "requirement": self.requirement,
            "offered": [o.to_api() for o in self.offered],
            "asBuilt": self.as_built.to_api(include_party=False) if self.as_built else None,
        }


class CompareSubsheet(BaseModel):
    id: int
    name: str
    fields: List[CompareField] = []


class CompareView(BaseModel):
    """Grouped comparison view returned by the compare endpoint."""
    subsheets: List[CompareSubsheet] = []

    def to_api(self) -> dict:
        return {
            "subsheets": [
                {"id": s.id, "name": s.name, "fields": [f.to_api() for f in s.fields]}
                for s in self.subsheets
            ]
        }
