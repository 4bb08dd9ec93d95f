"""
Persistence for the workflow state.

The state file is advisory: the specification documents are authoritative
over what the features require, the state only tracks progress. A missing
file yields a fresh idle state; a corrupt one is moved aside and replaced
by a fresh idle state rather than failing the whole workflow.
"""

import copy
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from roleflow.lib.validate import SchemaError, validate, validate_before_write
from roleflow.store.models import HistoryEntry, Mode, WorkflowState, now_iso

logger = logging.getLogger(__name__)

SCHEMA_NAME = "workflow_state"


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically via temp + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class StateStore:
    """Loads and saves WorkflowState at a fixed path."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, quarantine: bool = True) -> WorkflowState:
        """Load state, creating a default idle state if absent or unreadable.

        With quarantine=False an unreadable file is reported but left in
        place, for readers that do not hold the workspace lock.
        """
        if not self.path.exists():
            logger.debug(f"No state at {self.path}, starting idle")
            return WorkflowState()

        try:
            data = json.loads(self.path.read_text())
            validate(data, SCHEMA_NAME)
            return WorkflowState.from_dict(data)
        except (json.JSONDecodeError, SchemaError, TypeError) as e:
            if not quarantine:
                logger.warning(f"[STATE] Unreadable state file ({e}); left in place, showing idle")
                return WorkflowState()
            backup = self._quarantine()
            logger.warning(
                f"[STATE] Unreadable state file ({e}); moved to {backup.name}, starting idle"
            )
            return WorkflowState()

    def save(self, state: WorkflowState) -> None:
        """Validate and write state atomically."""
        data = state.to_dict()
        validate_before_write(data, SCHEMA_NAME, self.path)
        atomic_write(self.path, json.dumps(data, indent=2) + "\n")

    def _quarantine(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        os.replace(self.path, backup)
        return backup


def snapshot(state: WorkflowState) -> WorkflowState:
    """Independent copy of a state, for rollback."""
    return copy.deepcopy(state)


def append_history(
    state: WorkflowState,
    mode: str,
    action: str,
    outcome: str,
    feature_id: str | None = None,
    reason: str | None = None,
) -> HistoryEntry:
    """Append one audit entry. History is never edited in place."""
    entry = HistoryEntry(
        timestamp=now_iso(),
        mode=mode,
        action=action,
        outcome=outcome,
        feature_id=feature_id,
        reason=reason,
    )
    state.history.append(entry)
    return entry


def soft_reset(state: WorkflowState) -> WorkflowState:
    """Leave the active mode; features, history and context are kept."""
    state.mode = Mode.IDLE.value
    state.current_feature = None
    state.started_at = None
    return state


def hard_reset(state: WorkflowState) -> WorkflowState:
    """Forget all features and history. Specification documents are not
    touched and the workflow context is kept."""
    soft_reset(state)
    state.features = {}
    state.history = []
    return state
