"""
Value Set Service — the engine's single entry point.

Callers first resolve a sheet through `open_sheet`, which is the access
guard; every operation then takes that resolved sheet and runs:

  SheetStatusGate (mutations only) -> store / machine / variance engine

and, when a mutation lands on a Rejected sheet, asks the sheet directory to
move the sheet back into ModifiedDraft.
"""

import logging
from typing import Dict, List, Optional

from valueset_engine.access.guard import AccessGuard
from valueset_engine.errors import NotFoundError
from valueset_engine.gate.status_gate import SheetStatusGate
from valueset_engine.models.sheet import FilledSheet, SheetStatus
from valueset_engine.models.value_set import (
    FieldValue,
    RawValue,
    ValueContext,
    ValueSet,
    ValueSetStatus,
)
from valueset_engine.models.variance import CompareView, Variance, VarianceStatus
from valueset_engine.settings import Settings
from valueset_engine.sheets.directory import SheetDirectory
from valueset_engine.store.value_sets import ValueSetStore
from valueset_engine.transitions.machine import StatusTransitionMachine
from valueset_engine.variance.engine import VarianceEngine, normalize_value

logger = logging.getLogger(__name__)


class ValueSetService:
    """
    Tenant-scoped, status-gated access to value sets and variances.
    """

    def __init__(
        self,
        directory: SheetDirectory,
        store: ValueSetStore,
        settings: Optional[Settings] = None,
    ):
        self.directory = directory
        self.store = store
        self.settings = settings or Settings()
        self.guard = AccessGuard(directory)
        self.gate = SheetStatusGate()
        self.machine = StatusTransitionMachine(store)
        self.variance = VarianceEngine(store)

    def open_sheet(self, sheet_id: int, account_id: int) -> FilledSheet:
        """Resolve a sheet for `account_id`; another tenant's sheet is NotFound."""
        return self.guard.require_sheet(sheet_id, account_id)

    # --- Pipeline helpers ---

    def _after_mutation(self, sheet: FilledSheet, user_id: Optional[int]) -> None:
        if self.settings.bump_rejected_on_mutation and sheet.status == SheetStatus.REJECTED:
            self.directory.bump_rejected_to_modified_draft(sheet.sheet_id, user_id)

    def _owned_value_set(self, sheet: FilledSheet, value_set_id: int) -> ValueSet:
        value_set = self.store.get_value_set(value_set_id)
        if value_set is None or value_set.sheet_id != sheet.sheet_id:
            raise NotFoundError("ValueSet not found")
        return value_set

    # --- Reads ---

    def list_value_sets(self, sheet: FilledSheet) -> List[ValueSet]:
        return self.store.list_value_sets(sheet.sheet_id)

    def find_value_set_id(
        self,
        sheet: FilledSheet,
        context: ValueContext,
        party_id: Optional[int] = None,
    ) -> Optional[int]:
        return self.store.find_value_set_id(sheet.sheet_id, context, party_id)

    def get_values(self, sheet: FilledSheet, value_set_id: int) -> Dict[int, FieldValue]:
        self._owned_value_set(sheet, value_set_id)
        return self.store.get_values(value_set_id)

    def get_compare_data(self, sheet: FilledSheet, party_id: Optional[int] = None) -> CompareView:
        return self.variance.get_compare_data(sheet, party_id)

    def get_variance(self, sheet: FilledSheet, value_set_id: int, info_template_id: int) -> Variance:
        return self.variance.get_variance(sheet, value_set_id, info_template_id)

    # --- Mutations ---

    def create_value_set(
        self,
        sheet: FilledSheet,
        context: ValueContext,
        party_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """
        Create (or return the existing) value set for the context.

        Offered and AsBuilt sets make sure a Requirement set exists and, when
        prefill is enabled, start out as a copy of the Requirement values.
        """
        self.gate.assert_mutable(sheet.status)
        context = ValueContext(context)
        sheet_id = sheet.sheet_id

        if context == ValueContext.REQUIREMENT:
            value_set_id = self.store.create_value_set(sheet_id, context, None, user_id)
        else:
            req_id = self.store.create_value_set(sheet_id, ValueContext.REQUIREMENT, None, user_id)
            value_set_id = self.store.create_value_set(sheet_id, context, party_id, user_id)
            if self.settings.prefill_from_requirement:
                copied = self.store.copy_missing_values(req_id, value_set_id)
                logger.debug("Prefilled %d values into value set %s", copied, value_set_id)

        logger.info(
            "Value set %s (%s, party=%s) ready on sheet %s",
            value_set_id, context.value, party_id, sheet_id,
        )
        self._after_mutation(sheet, user_id)
        return value_set_id

    def set_field_value(
        self,
        sheet: FilledSheet,
        value_set_id: int,
        info_template_id: int,
        value: RawValue,
        uom: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> FieldValue:
        """
        Write one field value. Only the sheet status freezes field values.

        A value that changes retires every reviewer decision made against it.
        """
        self.gate.assert_mutable(sheet.status)
        value_set = self._owned_value_set(sheet, value_set_id)
        field = sheet.find_field(info_template_id)
        if field is None:
            raise NotFoundError(f"Field {info_template_id} not found on sheet")

        previous = self.store.get_field_value(value_set_id, info_template_id)
        field_value = self.store.set_field_value(value_set_id, info_template_id, value, uom)
        logger.info(
            "Field %s set on value set %s (sheet %s)", info_template_id, value_set_id, sheet.sheet_id
        )
        if previous is None or (
            normalize_value(previous.value, field.is_numeric)
            != normalize_value(value, field.is_numeric)
        ):
            self.variance.retire_decisions(sheet, value_set, info_template_id)
        self._after_mutation(sheet, user_id)
        return field_value

    def transition(
        self,
        sheet: FilledSheet,
        value_set_id: int,
        target: ValueSetStatus,
        user_id: Optional[int] = None,
    ) -> ValueSet:
        self.gate.assert_mutable(sheet.status)
        value_set = self.machine.transition(sheet.sheet_id, value_set_id, target)
        self._after_mutation(sheet, user_id)
        return value_set

    def patch_variance(
        self,
        sheet: FilledSheet,
        value_set_id: int,
        info_template_id: int,
        status: Optional[VarianceStatus],
        user_id: Optional[int] = None,
    ) -> None:
        self.gate.assert_mutable(sheet.status)
        self.variance.patch_variance(sheet, value_set_id, info_template_id, status, user_id)
        self._after_mutation(sheet, user_id)
