"""Value-set engine data models."""

from valueset_engine.models.sheet import (
    FieldTemplate,
    FilledSheet,
    SheetStatus,
    Subsheet,
)
from valueset_engine.models.value_set import (
    FieldValue,
    ValueContext,
    ValueSet,
    ValueSetStatus,
)
from valueset_engine.models.variance import (
    CompareField,
    CompareSubsheet,
    CompareView,
    ComparedValue,
    Variance,
    VarianceDecision,
    VarianceStatus,
)

__all__ = [
    "CompareField",
    "CompareSubsheet",
    "CompareView",
    "ComparedValue",
    "FieldTemplate",
    "FieldValue",
    "FilledSheet",
    "SheetStatus",
    "Subsheet",
    "ValueContext",
    "ValueSet",
    "ValueSetStatus",
    "Variance",
    "VarianceDecision",
    "VarianceStatus",
]
