"""
Command dispatcher: the single entry point for every mode invocation.

dispatch() resolves the mode, takes the workspace lock, loads the state,
enforces the one-active-mode rule, runs the controller under the mode
deadline and records exactly one HistoryEntry per invocation:

- success: the mode stays active while the controller reports unfinished
  work and returns to idle otherwise
- failure: the last per-feature checkpoint is kept (the pre-run snapshot
  for refactor and step_optimize), the mode fields go back to what they
  were before the call, a failed entry with the reason is appended and
  the error is re-raised

Rejected before the lock (not audited): unknown modes and malformed
arguments. status reads without the lock and writes nothing, not even the
quarantine of a corrupt file; state writes are atomic renames, so it never
sees a half-written file.
"""

import logging
from pathlib import Path
from typing import Optional

from roleflow.lib.config import ProjectConfig, load_project_config
from roleflow.lib.constants import FEATURE_ID_PATTERN, MAX_FEATURE_ID_LEN, OUTCOME_FAILED
from roleflow.lib.errors import ModeConflict, RoleflowError, UnknownMode, UsageError
from roleflow.modes import ALIASES, CONTROLLERS, PSEUDO_MODES
from roleflow.modes.base import ModeReport, ModeResult
from roleflow.runner.collaborators import Collaborators
from roleflow.runner.context import ModeContext, ModeOptions
from roleflow.runner.locking import STATE_LOCK_FILE, is_locked, state_lock
from roleflow.store.models import Mode, WorkflowState, now_iso
from roleflow.store.state_store import StateStore, append_history, snapshot

logger = logging.getLogger(__name__)

MODE_FIELDS = ("mode", "started_at", "current_feature")


class Workspace:
    """A project root with its configuration, state store and collaborators."""

    def __init__(self, root: Path, config: Optional[ProjectConfig] = None, collaborators=None):
        self.root = Path(root)
        self.config = config or load_project_config(self.root)
        self.store = StateStore(self.config.state_path)
        self._collaborators = collaborators

    @property
    def collaborators(self):
        # collaborators.yaml is only read by modes that call collaborators
        if self._collaborators is None:
            self._collaborators = Collaborators.from_config(self.config)
        return self._collaborators


def resolve_mode(mode_name: str) -> str:
    """Canonical mode name, or UnknownMode."""
    name = ALIASES.get(mode_name, mode_name)
    if name not in CONTROLLERS and name not in PSEUDO_MODES:
        raise UnknownMode(mode_name)
    return name


def validate_feature_id(feature_id: str) -> None:
    if len(feature_id) > MAX_FEATURE_ID_LEN:
        raise UsageError(f"Feature id too long (max {MAX_FEATURE_ID_LEN}): {feature_id}")
    if not FEATURE_ID_PATTERN.match(feature_id):
        raise UsageError(
            f"Invalid feature id '{feature_id}': use lowercase letters, digits, '-' and '_'"
        )


def dispatch(mode_name: str, options: Optional[ModeOptions], workspace: Workspace) -> tuple[WorkflowState, ModeReport]:
    """
    Run one mode invocation against a workspace.

    Returns:
        (state, report) as persisted

    Raises:
        UnknownMode, UsageError: before anything is read or written
        LockTimeout: another invocation holds the workspace
        RoleflowError: any failure of the mode itself, after it was recorded
    """
    name = resolve_mode(mode_name)
    options = options or ModeOptions()
    if options.feature:
        validate_feature_id(options.feature)

    if name == "status":
        state = workspace.store.load(quarantine=False)
        locked = is_locked(workspace.config.lock_dir / STATE_LOCK_FILE)
        return state, PSEUDO_MODES["status"]().report(state, locked=locked)

    with state_lock(workspace.config.lock_dir, timeout=workspace.config.lock_timeout):
        state = workspace.store.load()
        if name == "reset":
            return _run_reset(state, options, workspace)
        return _run_mode(name, state, options, workspace)


def _run_reset(state: WorkflowState, options: ModeOptions, workspace: Workspace):
    controller = PSEUDO_MODES["reset"]()
    ctx = ModeContext.create(Mode.IDLE, workspace.config, options, collaborators=None)
    ctx.log(f"reset ({controller.action(options)})")
    result = controller.run(state, ctx)
    if result.audit:
        append_history(result.state, "reset", controller.action(options), result.report.outcome)
    result.report.mode_after = result.state.mode
    workspace.store.save(result.state)
    return result.state, result.report


def _run_mode(name: str, state: WorkflowState, options: ModeOptions, workspace: Workspace):
    controller = CONTROLLERS[name]()
    requested = controller.mode
    action = controller.action(options)
    store = workspace.store

    before = snapshot(state)
    last_checkpoint = {"state": before}

    def checkpoint(current: WorkflowState):
        store.save(current)
        last_checkpoint["state"] = snapshot(current)

    try:
        _enter_mode(state, requested, options)
        ctx = ModeContext.create(
            requested, workspace.config, options, workspace.collaborators,
            checkpoint_fn=None if requested in (Mode.REFACTOR, Mode.STEP_OPTIMIZE) else checkpoint,
        )
        ctx.log(f"{requested.value} ({action}) feature={options.feature or '-'}")
        result: ModeResult = controller.run(state, ctx)
    except Exception as e:
        recovered = snapshot(last_checkpoint["state"])
        for attr in MODE_FIELDS:
            setattr(recovered, attr, getattr(before, attr))
        reason = getattr(e, "message", None) or str(e) or type(e).__name__
        append_history(recovered, requested.value, action, OUTCOME_FAILED, options.feature, reason)
        store.save(recovered)
        logger.error(f"[DISPATCH] {requested.value} failed: {reason}")
        raise

    state = result.state
    report = result.report
    if result.finished:
        state.mode = Mode.IDLE.value
        state.started_at = None
        state.current_feature = None
    report.mode_after = state.mode

    try:
        report.report_path = str(workspace.collaborators.reports.write(requested.value, report.to_dict()))
    except (OSError, RoleflowError) as e:
        # The work is already checkpointed; the audit entry must still follow
        report.report_path = None
        report.details["report_error"] = str(e)
        logger.error(f"[DISPATCH] Could not write {requested.value} report: {e}")
        ctx.log(f"Report not written: {e}")
    append_history(state, requested.value, action, report.outcome, options.feature, report.reason)
    store.save(state)
    ctx.log(f"Finished: {report.outcome} (mode now {state.mode})")
    logger.info(f"[DISPATCH] {requested.value} {report.outcome}; mode now {state.mode}")
    return state, report


def _enter_mode(state: WorkflowState, requested: Mode, options: ModeOptions):
    """Make requested the active mode, or raise ModeConflict."""
    if not state.is_idle() and state.mode != requested.value:
        if not options.force:
            raise ModeConflict(state.mode, requested.value)
        # The abandoned feature keeps its status for later resumption
        logger.warning(
            f"[MODE] Forced switch {state.mode} -> {requested.value}; "
            f"leaving {state.current_feature or 'no feature'} as it is"
        )
        state.current_feature = None
        state.started_at = None

    if state.mode != requested.value:
        state.mode = requested.value
        state.started_at = now_iso()
        logger.info(f"[MODE] Entered {requested.value}")
    state.current_feature = options.feature
