"""
Data models for the workflow state.

WorkflowState is a plain value: the dispatcher loads it, hands it to a mode
controller and saves what comes back. Nothing holds the active mode globally.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from roleflow.lib.constants import STATE_VERSION


class Mode(Enum):
    """Active role of the workflow. IDLE is both initial and post-reset."""

    IDLE = "idle"
    REQUIREMENTS = "requirements"
    STEPS = "steps"
    IMPLEMENT = "implement"
    REFACTOR = "refactor"
    STEP_OPTIMIZE = "step_optimize"


class FeatureStatus(Enum):
    """Feature lifecycle states. Values are what gets persisted."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    STEPS_DEFINED = "steps_defined"
    IMPLEMENTING = "implementing"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward order of the lifecycle; FAILED sits off the line
LIFECYCLE_ORDER = [
    FeatureStatus.DRAFT,
    FeatureStatus.CONFIRMED,
    FeatureStatus.STEPS_DEFINED,
    FeatureStatus.IMPLEMENTING,
    FeatureStatus.COMPLETED,
]


def lifecycle_rank(status: FeatureStatus) -> int:
    """Position on the forward lifecycle. FAILED ranks with IMPLEMENTING,
    the state it was entered from."""
    if status == FeatureStatus.FAILED:
        return LIFECYCLE_ORDER.index(FeatureStatus.IMPLEMENTING)
    return LIFECYCLE_ORDER.index(status)


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass
class ResultCounts:
    """Counts from the latest validation run, replaced wholesale each run."""
    passed: int = 0
    failed: int = 0
    pending: int = 0


@dataclass
class FeatureRecord:
    """Progress of one feature through the workflow."""
    status: str = FeatureStatus.DRAFT.value
    created: Optional[str] = None
    steps_defined_at: Optional[str] = None
    implementation_started_at: Optional[str] = None
    failure_reason: Optional[str] = None
    attempts: int = 0
    test_results: ResultCounts = field(default_factory=ResultCounts)

    @property
    def lifecycle(self) -> FeatureStatus:
        return FeatureStatus(self.status)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureRecord":
        data = dict(data)
        data["test_results"] = ResultCounts(**data.get("test_results", {}))
        return cls(**data)


@dataclass
class HistoryEntry:
    """One audited dispatcher invocation."""
    timestamp: str
    mode: str
    action: str
    outcome: str
    feature_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WorkflowState:
    """Persisted workflow state for one workspace."""
    mode: str = Mode.IDLE.value
    started_at: Optional[str] = None
    current_feature: Optional[str] = None
    context: dict[str, str] = field(default_factory=dict)
    features: dict[str, FeatureRecord] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    version: int = STATE_VERSION

    @property
    def active_mode(self) -> Mode:
        return Mode(self.mode)

    def is_idle(self) -> bool:
        return self.mode == Mode.IDLE.value

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "mode": self.mode,
            "started_at": self.started_at,
            "current_feature": self.current_feature,
            "context": dict(self.context),
            "features": {fid: rec.to_dict() for fid, rec in self.features.items()},
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowState":
        return cls(
            version=data.get("version", STATE_VERSION),
            mode=data.get("mode", Mode.IDLE.value),
            started_at=data.get("started_at"),
            current_feature=data.get("current_feature"),
            context=dict(data.get("context", {})),
            features={
                fid: FeatureRecord.from_dict(rec)
                for fid, rec in data.get("features", {}).items()
            },
            history=[HistoryEntry(**entry) for entry in data.get("history", [])],
        )
