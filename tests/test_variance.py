"""Tests for the Variance Engine."""

from datetime import datetime, timezone

import pytest

from valueset_engine.errors import ConflictError, InputValidationError, NotFoundError
from valueset_engine.models.sheet import FieldTemplate, FilledSheet, Subsheet
from valueset_engine.models.value_set import ValueContext, ValueSetStatus
from valueset_engine.models.variance import VarianceDecision, VarianceStatus
from valueset_engine.store.value_sets import ValueSetStore
from valueset_engine.variance.engine import (
    VarianceEngine,
    compare_values,
    normalize_value,
)


def _make_sheet() -> FilledSheet:
    return FilledSheet(
        sheet_id=1,
        account_id=1,
        subsheets=[
            Subsheet(id=20, name="Mechanical", order_index=2, fields=[
                FieldTemplate(info_template_id=201, label="Material", info_type="varchar"),
            ]),
            Subsheet(id=10, name="Process", order_index=1, fields=[
                FieldTemplate(info_template_id=102, label="Pressure", info_type="decimal", uom="bar", order_index=2),
                FieldTemplate(info_template_id=101, label="Flow", info_type="int", uom="m3/h", order_index=1),
                FieldTemplate(info_template_id=103, label="Notes", order_index=3),
            ]),
        ],
    )


def _decision(status: VarianceStatus, req: str, other: str) -> VarianceDecision:
    return VarianceDecision(
        value_set_id=2,
        info_template_id=101,
        status=status,
        requirement_value=req,
        compared_value=other,
        reviewed_at=datetime.now(timezone.utc),
    )


class TestNormalization:
    def test_numeric_equivalents(self):
        assert normalize_value("120", numeric=True) == "120"
        assert normalize_value("120.0", numeric=True) == "120"
        assert normalize_value(" 1.2E+2 ", numeric=True) == "120"
        assert normalize_value(120, numeric=True) == "120"
        assert normalize_value(120.0, numeric=True) == "120"
        assert normalize_value("0.50", numeric=True) == "0.5"
        assert normalize_value("-0.0", numeric=True) == "0"

    def test_unparseable_numeric_falls_back_to_text(self):
        assert normalize_value(" approx 120 ", numeric=True) == "approx 120"
        assert normalize_value("NaN", numeric=True) == "NaN"

    def test_text_is_trimmed_not_folded(self):
        assert normalize_value("  SS316 ") == "SS316"
        assert normalize_value("ss316") != normalize_value("SS316")
        assert normalize_value("120.0") == "120.0"

    def test_empty_values(self):
        assert normalize_value(None) == ""
        assert normalize_value("   ") == ""
        assert normalize_value(None, numeric=True) == ""


class TestCompareValues:
    def test_numeric_exact_equality(self):
        assert compare_values("120", "120.00", numeric=True) == VarianceStatus.MATCHES
        assert compare_values("120", "120.0001", numeric=True) == VarianceStatus.DEVIATES

    def test_string_equality(self):
        assert compare_values("SS316 ", " SS316") == VarianceStatus.MATCHES
        assert compare_values("SS316", "SS304") == VarianceStatus.DEVIATES

    def test_current_decision_overrides_deviates(self):
        decision = _decision(VarianceStatus.DEVIATES_ACCEPTED, "120", "125")
        assert compare_values("120", "125", True, decision) == VarianceStatus.DEVIATES_ACCEPTED

    def test_stale_decision_is_ignored(self):
        decision = _decision(VarianceStatus.DEVIATES_REJECTED, "120", "125")
        assert compare_values("120", "130", True, decision) == VarianceStatus.DEVIATES
        assert compare_values("110", "125", True, decision) == VarianceStatus.DEVIATES

    def test_decision_never_overrides_matches(self):
        decision = _decision(VarianceStatus.DEVIATES_ACCEPTED, "120", "125")
        assert compare_values("125", "125", True, decision) == VarianceStatus.MATCHES


class TestVarianceEngine:
    def setup_method(self):
        self.store = ValueSetStore(db_path=":memory:")
        self.engine = VarianceEngine(self.store)
        self.sheet = _make_sheet()
        self.req = self.store.create_value_set(1, ValueContext.REQUIREMENT)
        self.offered = self.store.create_value_set(1, ValueContext.OFFERED, party_id=5)
        self.store.set_field_value(self.req, 101, "120", "m3/h")
        self.store.set_field_value(self.offered, 101, "125", "m3/h")
        self.store.set_field_value(self.req, 201, "SS316")
        self.store.set_field_value(self.offered, 201, "SS316")

    def teardown_method(self):
        self.store.close()

    def test_get_variance(self):
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES
        assert self.engine.get_variance(self.sheet, self.offered, 201).status == VarianceStatus.MATCHES

    def test_patch_accept_persists(self):
        decision = self.engine.patch_variance(
            self.sheet, self.offered, 101, VarianceStatus.DEVIATES_ACCEPTED, reviewed_by=9
        )
        assert decision.requirement_value == "120"
        assert decision.compared_value == "125"
        assert decision.reviewed_by == 9
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES_ACCEPTED

    def test_patch_is_idempotent(self):
        for _ in range(2):
            self.engine.patch_variance(self.sheet, self.offered, 101, VarianceStatus.DEVIATES_REJECTED)
        assert len(self.store.get_decisions(self.offered)) == 1
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES_REJECTED

    def test_patch_none_clears_decision(self):
        self.engine.patch_variance(self.sheet, self.offered, 101, VarianceStatus.DEVIATES_ACCEPTED)
        assert self.engine.patch_variance(self.sheet, self.offered, 101, None) is None
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES

    def test_editing_either_value_retires_decision(self):
        self.engine.patch_variance(self.sheet, self.offered, 101, VarianceStatus.DEVIATES_ACCEPTED)
        self.store.set_field_value(self.offered, 101, "130")
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES

        self.store.set_field_value(self.offered, 101, "125")
        self.store.set_field_value(self.req, 101, "121")
        assert self.engine.get_variance(self.sheet, self.offered, 101).status == VarianceStatus.DEVIATES

    @pytest.mark.parametrize("status", ["Matches", "Deviates"])
    def test_computed_statuses_cannot_be_patched(self, status):
        with pytest.raises(InputValidationError):
            self.engine.patch_variance(self.sheet, self.offered, 101, VarianceStatus(status))

    def test_requirement_set_rejects_variances(self):
        with pytest.raises(InputValidationError):
            self.engine.patch_variance(self.sheet, self.req, 101, VarianceStatus.DEVIATES_ACCEPTED)

    def test_missing_pairing_not_found(self):
        # Field exists on the sheet but has no values on either side
        with pytest.raises(NotFoundError):
            self.engine.patch_variance(self.sheet, self.offered, 102, VarianceStatus.DEVIATES_ACCEPTED)
        # Field unknown to the sheet
        with pytest.raises(NotFoundError):
            self.engine.patch_variance(self.sheet, self.offered, 999, VarianceStatus.DEVIATES_ACCEPTED)
        # Value set of another sheet
        other = self.store.create_value_set(2, ValueContext.OFFERED, party_id=5)
        with pytest.raises(NotFoundError):
            self.engine.patch_variance(self.sheet, other, 101, VarianceStatus.DEVIATES_ACCEPTED)

    def test_locked_value_set_rejects_decisions(self):
        self.store.compare_and_set_status(self.offered, ValueSetStatus.DRAFT, ValueSetStatus.LOCKED)
        with pytest.raises(ConflictError) as exc:
            self.engine.patch_variance(self.sheet, self.offered, 101, VarianceStatus.DEVIATES_ACCEPTED)
        assert exc.value.message == "Cannot change variance when ValueSet status is Locked"

    def test_compare_view_structure(self):
        view = self.engine.get_compare_data(self.sheet)
        # Subsheets in structure order; fields without a Requirement value are left out
        assert [s.id for s in view.subsheets] == [10, 20]
        process = view.subsheets[0]
        assert [f.info_template_id for f in process.fields] == [101]
        flow = process.fields[0]
        assert flow.requirement == "120"
        assert flow.uom == "m3/h"
        assert len(flow.offered) == 1
        assert flow.offered[0].party_id == 5
        assert flow.offered[0].variance_status == VarianceStatus.DEVIATES
        assert flow.as_built is None
        material = view.subsheets[1].fields[0]
        assert material.offered[0].variance_status == VarianceStatus.MATCHES

    def test_compare_view_with_as_built_and_party_filter(self):
        other_offer = self.store.create_value_set(1, ValueContext.OFFERED, party_id=6)
        self.store.set_field_value(other_offer, 101, "120")
        as_built = self.store.create_value_set(1, ValueContext.AS_BUILT)
        self.store.set_field_value(as_built, 101, 120.0)

        view = self.engine.get_compare_data(self.sheet)
        flow = view.subsheets[0].fields[0]
        assert [o.party_id for o in flow.offered] == [5, 6]
        assert flow.offered[1].variance_status == VarianceStatus.MATCHES
        assert flow.as_built.value_set_id == as_built
        assert flow.as_built.variance_status == VarianceStatus.MATCHES

        filtered = self.engine.get_compare_data(self.sheet, party_id=6)
        flow = filtered.subsheets[0].fields[0]
        assert [o.party_id for o in flow.offered] == [6]
        # Material has no value in party 6's offer
        assert filtered.subsheets[1].fields[0].offered == []

    def test_compare_without_requirement_is_empty(self):
        store = ValueSetStore(db_path=":memory:")
        view = VarianceEngine(store).get_compare_data(self.sheet)
        assert all(s.fields == [] for s in view.subsheets)
        store.close()
