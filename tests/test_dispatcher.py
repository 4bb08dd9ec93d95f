"""Tests for roleflow.dispatcher: mode switching, audit trail and scenarios."""

import json

import pytest

from roleflow.dispatcher import dispatch, resolve_mode
from roleflow.lib.errors import (
    BaselineNotGreen,
    ConstraintViolation,
    ModeConflict,
    Timeout,
    UnknownMode,
    UsageError,
)
from roleflow.runner.context import ModeOptions
from roleflow.runner.locking import state_lock
from roleflow.store.models import FeatureRecord, HistoryEntry, WorkflowState, now_iso

from conftest import green, red


def seed(workspace, state: WorkflowState):
    workspace.store.save(state)


class TestResolveMode:

    def test_known_modes(self):
        for name in ("requirements", "steps", "implement", "refactor", "step_optimize", "status", "reset"):
            assert resolve_mode(name) == name

    def test_alias(self):
        assert resolve_mode("step-optimize") == "step_optimize"

    def test_unknown_mode_writes_nothing(self, workspace):
        with pytest.raises(UnknownMode) as exc:
            dispatch("deploy", ModeOptions(), workspace)
        assert exc.value.mode_name == "deploy"
        assert not workspace.store.exists()

    def test_invalid_feature_id_rejected_before_lock(self, workspace):
        with pytest.raises(UsageError):
            dispatch("requirements", ModeOptions(feature="Bad Name"), workspace)
        assert not workspace.store.exists()


class TestScenarios:

    def test_requirements_creates_draft_then_confirm(self, run, workspace):
        state, report = run("requirements", feature="user-auth")
        assert state.features["user-auth"].status == "draft"
        assert state.mode == "requirements"  # a targeted draft is left
        assert workspace.config.spec_path("user-auth").exists()

        state, _ = run("requirements", feature="user-auth", confirm=True)
        assert state.features["user-auth"].status == "confirmed"
        assert state.mode == "idle"

    def test_steps_advances_confirmed_feature(self, run, confirmed_feature, validator):
        validator.default = green(passed=0, pending=4)
        state, report = run("steps", feature=confirmed_feature)

        record = state.features[confirmed_feature]
        assert record.status == "steps_defined"
        assert record.steps_defined_at is not None
        assert record.test_results.pending == 4
        assert report.outcome == "ok"

    def test_steps_on_draft_is_constraint_violation(self, run, workspace):
        """requirements stays active after drafting, so steps needs force=True.

        Without it ModeConflict is raised first and the constraint check never runs.
        """
        run("requirements", feature="user-auth")
        with pytest.raises(ConstraintViolation):
            run("steps", feature="user-auth", force=True)

        state = workspace.store.load()
        assert state.features["user-auth"].status == "draft"
        assert state.history[-1].outcome == "failed"
        assert state.history[-1].mode == "steps"
        # mode fields restored to their pre-invocation values
        assert state.mode == "requirements"

    def test_implement_all_with_one_exhausted_feature(self, run, ready_features, validator, workspace):
        validator.scripts["beta"] = [red()]
        state, report = run("implement", all=True)

        counts = {"completed": 0, "failed": 0}
        for record in state.features.values():
            counts[record.status] = counts.get(record.status, 0) + 1
        assert counts["completed"] == 2
        assert counts["failed"] == 1
        assert state.features["beta"].attempts == 3
        assert report.outcome == "partial"
        assert state.mode == "implement"  # failed work is left
        assert state.history[-1].outcome == "partial"
        assert "beta" in state.history[-1].reason

    def test_hard_reset_empties_history(self, run, workspace):
        state = WorkflowState(mode="implement", started_at=now_iso(), context={"app": "shop"})
        for i in range(5):
            state.features[f"f{i}"] = FeatureRecord(status="completed", created=now_iso())
        state.history = [
            HistoryEntry(timestamp=now_iso(), mode="implement", action="implement", outcome="ok")
            for _ in range(40)
        ]
        seed(workspace, state)

        state, _ = run("reset", hard=True)
        assert state.features == {}
        assert state.history == []
        assert state.mode == "idle"
        assert state.context == {"app": "shop"}
        assert workspace.store.load().history == []

    def test_soft_reset_keeps_features_and_is_audited(self, run):
        run("requirements", feature="user-auth")
        state, _ = run("reset")
        assert state.mode == "idle"
        assert "user-auth" in state.features
        assert state.history[-1].action == "soft_reset"


class TestModeSwitching:

    def test_conflict_without_force(self, run, workspace):
        run("requirements", feature="user-auth")
        with pytest.raises(ModeConflict) as exc:
            run("implement")
        assert exc.value.active == "requirements"

        state = workspace.store.load()
        assert state.mode == "requirements"
        assert state.current_feature == "user-auth"
        assert state.history[-1].outcome == "failed"
        assert "requirements" in state.history[-1].reason

    def test_same_mode_is_not_a_conflict(self, run):
        run("requirements", feature="a")
        state, _ = run("requirements", feature="b")
        assert set(state.features) == {"a", "b"}

    def test_force_switch_leaves_abandoned_feature_untouched(self, run, workspace, confirmed_feature):
        run("requirements", feature="second")
        state, _ = run("steps", feature=confirmed_feature, force=True)
        assert state.features["second"].status == "draft"
        assert state.features["second"].failure_reason is None
        assert state.mode == "idle"

    def test_force_clears_in_progress_fields(self, run, workspace, confirmed_feature, generator):
        run("requirements", feature="second")
        generator.fail_for.add(confirmed_feature)
        state, _ = run("steps", feature=confirmed_feature, force=True)
        # the steps run did not finish, so steps is now the active mode
        assert state.mode == "steps"
        assert state.current_feature == confirmed_feature


class TestAuditTrail:

    def test_one_history_entry_per_invocation(self, run, validator):
        run("requirements", feature="a")
        run("requirements", feature="a", confirm=True)
        run("steps", feature="a")
        run("implement", feature="a")
        state, _ = run("refactor")
        assert len(state.history) == 5
        assert [h.mode for h in state.history] == ["requirements", "requirements", "steps", "implement", "refactor"]

    def test_failures_are_audited(self, run, workspace):
        run("requirements", feature="a")
        run("requirements", feature="a", confirm=True)
        with pytest.raises(ConstraintViolation):
            run("requirements", feature="a")

        state = workspace.store.load()
        assert len(state.history) == 3
        assert state.history[-1].outcome == "failed"
        assert "locked" in state.history[-1].reason

    def test_status_is_not_audited_and_idempotent(self, run, workspace):
        run("requirements", feature="a")
        before = workspace.store.load()
        _, first = run("status")
        _, second = run("status")
        assert first.to_dict() == second.to_dict()
        assert len(workspace.store.load().history) == len(before.history)

    def test_status_on_empty_workspace_writes_nothing(self, run, workspace):
        state, report = run("status")
        assert state.mode == "idle"
        assert report.details["features"] == []
        assert not workspace.store.exists()

    def test_status_leaves_corrupt_state_in_place(self, run, workspace):
        path = workspace.config.state_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json")

        state, report = run("status")
        assert state.mode == "idle"
        assert path.read_text() == "{not json"
        assert list(path.parent.glob(f"{path.name}.corrupt-*")) == []

    def test_status_reports_held_lock(self, run, workspace):
        _, report = run("status")
        assert report.details["locked"] is False
        with state_lock(workspace.config.lock_dir, timeout=1):
            _, report = run("status")
        assert report.details["locked"] is True


class TestFailureRecovery:

    def test_baseline_not_green_rolls_back(self, run, ready_features, validator, workspace):
        before = workspace.store.load()
        validator.scripts[None] = [red()]
        with pytest.raises(BaselineNotGreen):
            run("refactor")
        after = workspace.store.load()
        assert {f: r.status for f, r in after.features.items()} == {f: r.status for f, r in before.features.items()}
        assert after.mode == "idle"
        assert len(after.history) == len(before.history) + 1

    def test_timeout_keeps_completed_features_and_leaves_current_unchanged(
            self, run, ready_features, generator, workspace):
        original = generator.generate

        def generate(mode, feature_id, existing, options=None):
            if feature_id == "beta":
                raise Timeout("implement exceeded its deadline")
            return original(mode, feature_id, existing, options)

        generator.generate = generate
        with pytest.raises(Timeout):
            run("implement", all=True)

        state = workspace.store.load()
        assert state.features["alpha"].status == "completed"  # checkpointed
        assert state.features["beta"].status == "steps_defined"  # not advanced, not failed
        assert state.features["gamma"].status == "steps_defined"
        assert state.mode == "idle"
        assert state.history[-1].outcome == "failed"

    def test_report_written(self, run, workspace):
        _, report = run("requirements", feature="a")
        data = json.loads(open(report.report_path).read())
        assert data["mode"] == "requirements"
        assert data["features"][0]["feature_id"] == "a"

    def test_report_write_failure_still_audited(self, run, workspace, caplog):
        def write(kind, content):
            raise OSError("disk full")

        workspace.collaborators.reports.write = write
        state, report = run("requirements", feature="a")
        assert report.outcome == "ok"
        assert report.report_path is None
        assert "disk full" in report.details["report_error"]
        assert "Could not write requirements report" in caplog.text

        saved = workspace.store.load()
        assert len(saved.history) == 1
        assert saved.history[-1].outcome == "ok"
        assert saved.features["a"].status == "draft"
