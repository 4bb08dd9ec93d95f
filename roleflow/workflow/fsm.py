"""Feature lifecycle state machine using transitions library.

Provides explicit triggers for every lifecycle edge a mode may take:

    draft -> confirmed -> steps_defined -> implementing -> completed
                                                      \\-> failed

plus the two re-entry edges into implementing (retry from failed, reopen from
failed or completed). There is no trigger that moves a feature backwards
along the line; hard reset deletes the record instead.

Usage:
    from roleflow.workflow.fsm import FeatureFSM

    fsm = FeatureFSM("user-auth", record)
    fsm.confirm()  # draft -> confirmed, written back to record.status
"""

import logging
from typing import Callable

from transitions import Machine

from roleflow.store.models import FeatureRecord, FeatureStatus, now_iso

logger = logging.getLogger(__name__)


STATES = [status.value for status in FeatureStatus]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Requirements mode: human confirmation of the specification
    {"trigger": "confirm", "source": "draft", "dest": "confirmed"},

    # Steps mode
    {"trigger": "define_steps", "source": "confirmed", "dest": "steps_defined"},

    # Implement mode
    {"trigger": "start_impl", "source": "steps_defined", "dest": "implementing"},
    {"trigger": "complete", "source": "implementing", "dest": "completed"},
    {"trigger": "fail", "source": "implementing", "dest": "failed"},

    # Re-entry (implement --retry / --force)
    {"trigger": "retry", "source": "failed", "dest": "implementing"},
    {"trigger": "reopen", "source": "failed", "dest": "implementing"},
    {"trigger": "reopen", "source": "completed", "dest": "implementing"},
]


# Pre-computed lookup: (source, dest) -> trigger name
def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:  # First trigger wins for a given source->dest
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class FeatureFSM:
    """State machine for one feature's lifecycle.

    Wraps the transitions library with feature-specific logic:
    - Starts from the record's persisted status
    - Writes the new status and set-once timestamps back to the record
    - Logs all transitions
    """

    def __init__(
        self,
        feature_id: str,
        record: FeatureRecord,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        """Initialize FSM for a feature.

        Args:
            feature_id: Feature identifier (for logging)
            record: FeatureRecord to read from and write back to
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        self.feature_id = feature_id
        self.record = record
        self.on_transition = on_transition

        if record.status not in STATES:
            raise ValueError(f"Feature {feature_id} has unknown status '{record.status}'")

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=record.status,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition.

        Writes status to the record, stamps first-entry timestamps and logs.
        """
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        self.record.status = to_state
        if to_state == FeatureStatus.STEPS_DEFINED.value and not self.record.steps_defined_at:
            self.record.steps_defined_at = now_iso()
        if to_state == FeatureStatus.IMPLEMENTING.value and not self.record.implementation_started_at:
            self.record.implementation_started_at = now_iso()

        logger.info(f"[FSM] {self.feature_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
