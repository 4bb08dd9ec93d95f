"""
Run context for a single mode invocation.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from roleflow.lib.config import ProjectConfig
from roleflow.lib.errors import Timeout
from roleflow.store.models import Mode, WorkflowState


@dataclass
class ModeOptions:
    """Options a mode invocation was called with."""
    feature: Optional[str] = None
    all: bool = False
    retry: bool = False
    force: bool = False
    scope: Optional[str] = None
    hard: bool = False
    analyze: bool = False
    merge: bool = False
    generalize: bool = False
    confirm: bool = False
    amend: bool = False
    context: dict[str, str] = field(default_factory=dict)

    def generator_options(self) -> dict:
        """Options forwarded to generators. Only what they can act on."""
        options = {}
        if self.scope:
            options["scope"] = self.scope
        if self.analyze:
            options["analyze"] = True
        strategy = [name for name, on in (("merge", self.merge), ("generalize", self.generalize)) if on]
        if strategy:
            options["strategy"] = strategy
        return options


@dataclass
class ModeContext:
    """Context for one mode invocation."""
    run_id: str
    run_dir: Path
    mode: Mode
    config: ProjectConfig
    options: ModeOptions
    collaborators: object
    deadline: float  # time.monotonic() value
    start_time: datetime = field(default_factory=datetime.now)
    phases: list = field(default_factory=list)
    checkpoint_fn: Optional[Callable[[WorkflowState], None]] = None

    @classmethod
    def create(cls, mode: Mode, config: ProjectConfig, options: ModeOptions, collaborators,
               checkpoint_fn: Callable[[WorkflowState], None] | None = None) -> 'ModeContext':
        """Create a new context with a fresh run directory."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        run_id = f"{timestamp}_{mode.value}"

        run_dir = config.runs_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        deadline = time.monotonic() + config.mode_timeout
        runner = getattr(collaborators, "runner", None)
        if runner is not None:
            runner.deadline = deadline

        return cls(
            run_id=run_id,
            run_dir=run_dir,
            mode=mode,
            config=config,
            options=options,
            collaborators=collaborators,
            deadline=deadline,
            checkpoint_fn=checkpoint_fn,
        )

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check_deadline(self):
        """Raise Timeout once the mode deadline has passed."""
        if self.remaining() <= 0:
            raise Timeout(f"{self.mode.value} exceeded its {self.config.mode_timeout}s deadline")

    def log(self, message: str):
        """Append to run log."""
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "run.log", "a") as f:
            f.write(f"[{timestamp}] {message}\n")

    def record_phase(self, phase: str, status: str, duration: float,
                     notes: str = "", feature_id: str | None = None):
        """Record phase result."""
        entry = {
            "phase": phase,
            "status": status,
            "duration_seconds": round(duration, 3),
            "notes": notes,
        }
        if feature_id:
            entry["feature_id"] = feature_id
        self.phases.append(entry)

    def checkpoint(self, state: WorkflowState):
        """Persist progress after a feature completes."""
        if self.checkpoint_fn is not None:
            self.checkpoint_fn(state)
            self.log(f"Checkpoint saved ({len(state.features)} features)")
