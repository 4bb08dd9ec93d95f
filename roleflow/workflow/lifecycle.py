"""Feature lifecycle transitions with validation.

Thin destination-based layer over the FSM in fsm.py. Mode controllers say
where a feature should go; this module finds the trigger and refuses edges
the lifecycle does not have.

Usage:
    from roleflow.workflow.lifecycle import transition
    from roleflow.store.models import FeatureStatus

    transition("user-auth", record, FeatureStatus.CONFIRMED, reason="human confirmed")
"""

import logging

from transitions import MachineError

from roleflow.store.models import FeatureRecord, FeatureStatus
from roleflow.workflow.fsm import TRIGGER_FOR, FeatureFSM

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Raised when attempting a transition the lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: FeatureStatus, feature_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.feature_id = feature_id
        super().__init__(
            f"Invalid transition: {from_state} -> {to_state.value}"
            + (f" (feature: {feature_id})" if feature_id else "")
        )


def transition(
    feature_id: str,
    record: FeatureRecord,
    to_state: FeatureStatus,
    reason: str = "",
    via: str | None = None,
) -> None:
    """Move a feature to a new lifecycle state.

    Args:
        feature_id: Feature identifier
        record: FeatureRecord, updated in place
        to_state: Target state
        reason: Optional reason (for logging)
        via: Explicit trigger name, for edges reachable by more than one
            trigger (failed -> implementing is either "retry" or "reopen")

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    current_state = record.status
    reason_str = f" ({reason})" if reason else ""

    if current_state == to_state.value:
        logger.debug(f"[STATE] {feature_id}: already {to_state.value}, no-op")
        return

    trigger = via or TRIGGER_FOR.get((current_state, to_state.value))
    if trigger is None:
        raise InvalidTransition(current_state, to_state, feature_id)

    fsm = FeatureFSM(feature_id, record)
    if not fsm.can(trigger):
        raise InvalidTransition(current_state, to_state, feature_id)

    try:
        logger.debug(f"[STATE] {feature_id}: {current_state} -> {to_state.value}{reason_str}")
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current_state, to_state, feature_id) from e

    if record.status != to_state.value:
        raise InvalidTransition(current_state, to_state, feature_id)
