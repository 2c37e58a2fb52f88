"""
Status Transition Machine — forward-only status changes for value sets.

Every context has exactly one legal move, and only out of Draft:

  Requirement: Draft -> Locked
  Offered:     Draft -> Locked
  AsBuilt:     Draft -> Verified

The table below drives all three; there is no per-context class.
"""

import logging
from typing import Dict

from valueset_engine.errors import ConflictError, NotFoundError
from valueset_engine.models.value_set import ValueContext, ValueSet, ValueSetStatus
from valueset_engine.store.value_sets import ValueSetStore

logger = logging.getLogger(__name__)

LEGAL_TARGETS: Dict[ValueContext, ValueSetStatus] = {
    ValueContext.REQUIREMENT: ValueSetStatus.LOCKED,
    ValueContext.OFFERED: ValueSetStatus.LOCKED,
    ValueContext.AS_BUILT: ValueSetStatus.VERIFIED,
}

_TARGET_MESSAGES: Dict[ValueContext, str] = {
    ValueContext.REQUIREMENT: "Requirement/Offered can only transition to Locked",
    ValueContext.OFFERED: "Requirement/Offered can only transition to Locked",
    ValueContext.AS_BUILT: "AsBuilt can only transition to Verified",
}


class StatusTransitionMachine:
    def __init__(self, store: ValueSetStore):
        self.store = store

    def legal_target(self, context: ValueContext) -> ValueSetStatus:
        return LEGAL_TARGETS[ValueContext(context)]

    def check(self, value_set: ValueSet, target: ValueSetStatus) -> None:
        """Raise ConflictError if `value_set` may not move to `target`."""
        if value_set.status != ValueSetStatus.DRAFT:
            raise ConflictError(
                f"Invalid transition: current status is {value_set.status.value}"
            )
        if ValueSetStatus(target) != self.legal_target(value_set.context):
            raise ConflictError(_TARGET_MESSAGES[value_set.context])

    def transition(self, sheet_id: int, value_set_id: int, target: ValueSetStatus) -> ValueSet:
        """
        Move a value set of `sheet_id` to `target`.

        The write is conditional on the stored status still being Draft, so of
        two concurrent identical requests exactly one succeeds.
        """
        target = ValueSetStatus(target)
        value_set = self.store.get_value_set(value_set_id)
        if value_set is None or value_set.sheet_id != sheet_id:
            raise NotFoundError("ValueSet not found")

        self.check(value_set, target)

        if not self.store.compare_and_set_status(value_set_id, ValueSetStatus.DRAFT, target):
            current = self.store.get_value_set(value_set_id)
            status = current.status.value if current else "unknown"
            raise ConflictError(f"Invalid transition: current status is {status}")

        logger.info(
            "Value set %s (%s) on sheet %s: Draft -> %s",
            value_set_id, value_set.context.value, sheet_id, target.value,
        )
        return value_set.model_copy(update={"status": target})
