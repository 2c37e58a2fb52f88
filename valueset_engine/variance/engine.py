"""
Variance Engine — Requirement vs Offered/AsBuilt comparison.

The computed path (Matches / Deviates) is side-effect free. Only reviewer
decisions are stored. Changing either paired value deletes the decision
(`retire_decisions`); each decision also carries the normalized pair it was
made against and is ignored if the stored pair no longer equals it.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from valueset_engine.errors import ConflictError, InputValidationError, NotFoundError
from valueset_engine.models.sheet import FieldTemplate, FilledSheet
from valueset_engine.models.value_set import (
    FieldValue,
    RawValue,
    ValueContext,
    ValueSet,
    ValueSetStatus,
)
from valueset_engine.models.variance import (
    DECISION_STATUSES,
    CompareField,
    CompareSubsheet,
    CompareView,
    ComparedValue,
    Variance,
    VarianceDecision,
    VarianceStatus,
)
from valueset_engine.store.value_sets import ValueSetStore

logger = logging.getLogger(__name__)


def _as_text(value: RawValue) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _as_number(text: str) -> Optional[Decimal]:
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def normalize_value(value: RawValue, numeric: bool = False) -> str:
    """
    Reduce a raw field value to its comparable form.

    Numeric fields normalize to a canonical decimal string ("120.0" and
    "1.2E+2" both become "120"); anything unparseable falls back to the
    trimmed text, as do string and option fields.
    """
    text = _as_text(value)
    if numeric:
        number = _as_number(text)
        if number is not None:
            if number == 0:
                return "0"
            # "f" keeps whole numbers out of exponent form (1.2E+2 -> 120)
            return format(number.normalize(), "f")
    return text


def compare_values(
    requirement: RawValue,
    other: RawValue,
    numeric: bool = False,
    decision: Optional[VarianceDecision] = None,
) -> VarianceStatus:
    """Matches if both sides normalize equal; Deviates or a still-current decision otherwise."""
    req_norm = normalize_value(requirement, numeric)
    other_norm = normalize_value(other, numeric)
    if req_norm == other_norm:
        return VarianceStatus.MATCHES
    if decision and decision_is_current(decision, req_norm, other_norm):
        return decision.status
    return VarianceStatus.DEVIATES


def decision_is_current(decision: VarianceDecision, req_norm: str, other_norm: str) -> bool:
    return (
        decision.status in DECISION_STATUSES
        and decision.requirement_value == req_norm
        and decision.compared_value == other_norm
    )


class VarianceEngine:
    def __init__(self, store: ValueSetStore):
        self.store = store

    def _requirement_values(self, sheet_id: int) -> Tuple[Optional[int], Dict[int, FieldValue]]:
        req_id = self.store.find_value_set_id(sheet_id, ValueContext.REQUIREMENT)
        values = self.store.get_values(req_id) if req_id is not None else {}
        return req_id, values

    def _pairing(
        self,
        sheet: FilledSheet,
        value_set_id: int,
        info_template_id: int,
    ) -> Tuple[ValueSet, FieldTemplate, FieldValue, FieldValue]:
        """Resolve the (Requirement value, compared value) pair or raise NotFoundError."""
        value_set = self.store.get_value_set(value_set_id)
        if value_set is None or value_set.sheet_id != sheet.sheet_id:
            raise NotFoundError("ValueSet not found")
        field = sheet.find_field(info_template_id)
        if field is None:
            raise NotFoundError(f"Field {info_template_id} not found on sheet")
        if value_set.context == ValueContext.REQUIREMENT:
            raise InputValidationError("Variances are not allowed on Requirement ValueSet")

        _, req_values = self._requirement_values(sheet.sheet_id)
        requirement = req_values.get(info_template_id)
        compared = self.store.get_values(value_set_id).get(info_template_id)
        if requirement is None or compared is None:
            raise NotFoundError(
                f"No Requirement/{value_set.context.value} pairing for field {info_template_id}"
            )
        return value_set, field, requirement, compared

    def get_variance(self, sheet: FilledSheet, value_set_id: int, info_template_id: int) -> Variance:
        """Current variance status of one field of one Offered/AsBuilt set."""
        _, field, requirement, compared = self._pairing(sheet, value_set_id, info_template_id)
        decision = self.store.get_decision(value_set_id, info_template_id)
        status = compare_values(requirement.value, compared.value, field.is_numeric, decision)
        return Variance(
            sheet_id=sheet.sheet_id,
            value_set_id=value_set_id,
            info_template_id=info_template_id,
            status=status,
        )

    def patch_variance(
        self,
        sheet: FilledSheet,
        value_set_id: int,
        info_template_id: int,
        status: Optional[VarianceStatus],
        reviewed_by: Optional[int] = None,
    ) -> Optional[VarianceDecision]:
        """
        Record (or, with status None, clear) a reviewer decision.

        Only DeviatesAccepted / DeviatesRejected can be recorded; Matches and
        Deviates are always computed. Recording the same decision twice is a
        plain overwrite.
        """
        if status is not None:
            status = VarianceStatus(status)
            if status not in DECISION_STATUSES:
                raise InputValidationError(
                    "Invalid status (DeviatesAccepted, DeviatesRejected, or null)"
                )

        value_set, field, requirement, compared = self._pairing(
            sheet, value_set_id, info_template_id
        )
        if value_set.status != ValueSetStatus.DRAFT:
            raise ConflictError(
                f"Cannot change variance when ValueSet status is {value_set.status.value}"
            )

        if status is None:
            self.store.delete_decision(value_set_id, info_template_id)
            logger.info(
                "Variance decision cleared: sheet=%s value_set=%s field=%s",
                sheet.sheet_id, value_set_id, info_template_id,
            )
            return None

        decision = VarianceDecision(
            value_set_id=value_set_id,
            info_template_id=info_template_id,
            status=status,
            requirement_value=normalize_value(requirement.value, field.is_numeric),
            compared_value=normalize_value(compared.value, field.is_numeric),
            reviewed_by=reviewed_by,
            reviewed_at=datetime.now(timezone.utc),
        )
        self.store.upsert_decision(decision)
        logger.info(
            "Variance decision %s: sheet=%s value_set=%s field=%s",
            status.value, sheet.sheet_id, value_set_id, info_template_id,
        )
        return decision

    def retire_decisions(self, sheet: FilledSheet, value_set: ValueSet, info_template_id: int) -> int:
        """
        Clear decisions paired with a field value that just changed.

        An edit on the Requirement side retires the field's decision in every
        compared set of the sheet; otherwise only the edited set's decision goes.
        """
        if value_set.context == ValueContext.REQUIREMENT:
            targets = [
                vs.value_set_id for vs in self.store.list_value_sets(sheet.sheet_id)
                if vs.context != ValueContext.REQUIREMENT
            ]
        else:
            targets = [value_set.value_set_id]
        removed = self.store.delete_decisions_for_field(targets, info_template_id)
        if removed:
            logger.info(
                "Retired %d variance decision(s): sheet=%s field=%s",
                removed, sheet.sheet_id, info_template_id,
            )
        return removed

    def get_compare_data(self, sheet: FilledSheet, party_id: Optional[int] = None) -> CompareView:
        """
        Build the grouped compare view for a sheet.

        Fields without a Requirement value are left out; an Offered/AsBuilt set
        without a value for a field simply has no entry for it. `party_id`
        narrows which Offered sets take part.
        """
        _, req_values = self._requirement_values(sheet.sheet_id)

        all_sets = self.store.list_value_sets(sheet.sheet_id)
        offered_sets = [
            vs for vs in all_sets
            if vs.context == ValueContext.OFFERED
            and (party_id is None or vs.party_id == party_id)
        ]
        as_built_set = next(
            (vs for vs in all_sets if vs.context == ValueContext.AS_BUILT), None
        )

        compared_sets: List[ValueSet] = offered_sets + ([as_built_set] if as_built_set else [])
        values = {vs.value_set_id: self.store.get_values(vs.value_set_id) for vs in compared_sets}
        decisions = {vs.value_set_id: self.store.get_decisions(vs.value_set_id) for vs in compared_sets}

        def _compared(vs: ValueSet, field: FieldTemplate, requirement: FieldValue) -> Optional[ComparedValue]:
            fv = values[vs.value_set_id].get(field.info_template_id)
            if fv is None:
                return None
            status = compare_values(
                requirement.value,
                fv.value,
                field.is_numeric,
                decisions[vs.value_set_id].get(field.info_template_id),
            )
            return ComparedValue(
                value_set_id=vs.value_set_id,
                party_id=vs.party_id,
                value=None if fv.value is None else _as_text(fv.value),
                uom=fv.uom,
                variance_status=status,
            )

        subsheets = []
        for sub in sheet.ordered_subsheets():
            fields = []
            for field in sorted(sub.fields, key=lambda f: (f.order_index, f.info_template_id)):
                requirement = req_values.get(field.info_template_id)
                if requirement is None:
                    continue
                offered = [
                    c for c in (_compared(vs, field, requirement) for vs in offered_sets)
                    if c is not None
                ]
                as_built = _compared(as_built_set, field, requirement) if as_built_set else None
                fields.append(CompareField(
                    info_template_id=field.info_template_id,
                    label=field.label,
                    uom=requirement.uom or field.uom,
                    requirement=None if requirement.value is None else _as_text(requirement.value),
                    offered=offered,
                    as_built=as_built,
                ))
            subsheets.append(CompareSubsheet(id=sub.id, name=sub.name, fields=fields))

        return CompareView(subsheets=subsheets)
