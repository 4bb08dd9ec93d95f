"""Tests for roleflow.workflow.fsm and roleflow.workflow.lifecycle."""

import pytest

from roleflow.store.models import FeatureRecord, FeatureStatus, LIFECYCLE_ORDER, lifecycle_rank
from roleflow.workflow.fsm import STATES, TRANSITIONS, TRIGGER_FOR, FeatureFSM
from roleflow.workflow.lifecycle import (
    InvalidTransition,
    transition,
)


class TestFSMStates:

    def test_all_states_defined(self):
        assert set(STATES) == {
            "draft", "confirmed", "steps_defined", "implementing", "completed", "failed",
        }

    def test_no_transition_goes_backwards(self):
        """Only the re-entry edges into implementing leave the forward line."""
        for t in TRANSITIONS:
            source = FeatureStatus(t["source"])
            dest = FeatureStatus(t["dest"])
            if t["trigger"] in ("retry", "reopen"):
                assert dest == FeatureStatus.IMPLEMENTING
                continue
            if dest == FeatureStatus.FAILED:
                assert source == FeatureStatus.IMPLEMENTING
                continue
            assert LIFECYCLE_ORDER.index(dest) == LIFECYCLE_ORDER.index(source) + 1

    def test_trigger_lookup_prefers_retry(self):
        assert TRIGGER_FOR[("failed", "implementing")] == "retry"
        assert TRIGGER_FOR[("completed", "implementing")] == "reopen"


class TestFeatureFSM:

    def test_initial_state_from_record(self):
        fsm = FeatureFSM("login", FeatureRecord(status="confirmed"))
        assert fsm.state == "confirmed"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            FeatureFSM("login", FeatureRecord(status="bogus"))

    def test_trigger_writes_back(self):
        record = FeatureRecord(status="confirmed")
        FeatureFSM("login", record).define_steps()
        assert record.status == "steps_defined"
        assert record.steps_defined_at is not None

    def test_timestamps_set_once(self):
        record = FeatureRecord(status="failed", steps_defined_at="2024-01-01T00:00:00",
                               implementation_started_at="2024-01-02T00:00:00")
        FeatureFSM("login", record).retry()
        assert record.status == "implementing"
        assert record.steps_defined_at == "2024-01-01T00:00:00"
        assert record.implementation_started_at == "2024-01-02T00:00:00"

    def test_available_triggers(self):
        fsm = FeatureFSM("login", FeatureRecord(status="implementing"))
        assert set(fsm.machine.get_triggers(fsm.state)) == {"complete", "fail"}
        assert fsm.can("complete")
        assert not fsm.can("confirm")

    def test_on_transition_callback(self):
        seen = []
        fsm = FeatureFSM("login", FeatureRecord(), on_transition=lambda *args: seen.append(args))
        fsm.confirm()
        assert seen == [("draft", "confirmed", "confirm")]

    def test_logs_transition(self, caplog):
        caplog.set_level("INFO")
        FeatureFSM("login", FeatureRecord()).confirm()
        assert "[FSM] login: draft -> confirmed" in caplog.text


class TestTransition:

    def test_forward_edge(self):
        record = FeatureRecord(status="steps_defined")
        transition("login", record, FeatureStatus.IMPLEMENTING)
        assert record.status == "implementing"
        assert record.implementation_started_at is not None

    def test_same_state_is_noop(self):
        record = FeatureRecord(status="confirmed")
        transition("login", record, FeatureStatus.CONFIRMED)
        assert record.status == "confirmed"

    def test_skipping_a_stage_is_invalid(self):
        record = FeatureRecord(status="draft")
        with pytest.raises(InvalidTransition) as exc:
            transition("login", record, FeatureStatus.STEPS_DEFINED)
        assert exc.value.feature_id == "login"
        assert record.status == "draft"

    def test_backward_edge_is_invalid(self):
        record = FeatureRecord(status="completed")
        with pytest.raises(InvalidTransition):
            transition("login", record, FeatureStatus.CONFIRMED)

    def test_explicit_trigger(self):
        record = FeatureRecord(status="failed")
        transition("login", record, FeatureStatus.IMPLEMENTING, via="reopen")
        assert record.status == "implementing"

    def test_retry_only_from_failed(self):
        record = FeatureRecord(status="completed")
        with pytest.raises(InvalidTransition):
            transition("login", record, FeatureStatus.IMPLEMENTING, via="retry")
        assert record.status == "completed"

    def test_implementing_may_fail(self):
        record = FeatureRecord(status="implementing")
        transition("login", record, FeatureStatus.FAILED, reason="2 failing")
        assert record.status == "failed"

    def test_rank_never_decreases_on_forward_edges(self):
        for (source, dest), trigger in TRIGGER_FOR.items():
            if trigger in ("retry", "reopen") or dest == "failed":
                continue
            assert lifecycle_rank(FeatureStatus(dest)) > lifecycle_rank(FeatureStatus(source))
