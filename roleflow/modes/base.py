"""
Shared shape of the mode controllers.

A controller gets the loaded WorkflowState and a ModeContext and returns a
ModeResult. Lifecycle modes (requirements, steps, implement) work feature by
feature: each target is processed on a copy of its record, and the copy is
committed and checkpointed only when the feature is done. An abort in the
middle of a feature (Timeout, ConstraintViolation) therefore leaves that
feature exactly as it was.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from roleflow.lib.constants import OUTCOME_FAILED, OUTCOME_OK, OUTCOME_PARTIAL
from roleflow.lib.errors import MissingArtifact
from roleflow.runner.context import ModeContext
from roleflow.runner.stages import PHASE_GENERATE, PHASE_SCOPE, PHASE_TRANSITION, run_phase
from roleflow.store.models import FeatureRecord, Mode, WorkflowState
from roleflow.workflow.registry import FeatureRegistry

logger = logging.getLogger(__name__)


@dataclass
class FeatureOutcome:
    """What happened to one feature during an invocation."""
    feature_id: str
    status: Optional[str] = None
    outcome: str = OUTCOME_OK
    reason: Optional[str] = None
    attempts: int = 0
    files_written: list[str] = field(default_factory=list)
    pending_items: list[str] = field(default_factory=list)
    test_results: Optional[dict] = None

    def fail(self, reason: str):
        self.outcome = OUTCOME_FAILED
        self.reason = reason


@dataclass
class ModeReport:
    """Report returned by every dispatch and written by the report writer."""
    mode: str
    action: str = ""
    run_id: Optional[str] = None
    outcome: str = OUTCOME_OK
    reason: Optional[str] = None
    features: list[FeatureOutcome] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    details: dict = field(default_factory=dict)
    phases: list[dict] = field(default_factory=list)
    mode_after: Optional[str] = None
    report_path: Optional[str] = None

    def skip(self, feature_id: str, hint: str):
        logger.info(f"Skipping {feature_id}: {hint}")
        self.skipped.append({"feature_id": feature_id, "hint": hint})

    def summarize(self):
        """Derive outcome and reason from the per-feature outcomes."""
        failed = [f for f in self.features if f.outcome == OUTCOME_FAILED]
        if not failed:
            self.outcome = OUTCOME_OK
            self.reason = None
            return
        self.outcome = OUTCOME_FAILED if len(failed) == len(self.features) else OUTCOME_PARTIAL
        self.reason = "; ".join(f"{f.feature_id}: {f.reason}" for f in failed)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ModeResult:
    state: WorkflowState
    report: ModeReport
    finished: bool = True  # mode returns to idle
    audit: bool = True  # append a HistoryEntry


class ModeController:
    """Base for all controllers."""

    mode: Mode = Mode.IDLE

    def action(self, options) -> str:
        return self.mode.value

    def run(self, state: WorkflowState, ctx: ModeContext) -> ModeResult:
        raise NotImplementedError


class FeatureModeController(ModeController):
    """Controller that moves features along the lifecycle one at a time."""

    def run(self, state: WorkflowState, ctx: ModeContext) -> ModeResult:
        report = ModeReport(mode=self.mode.value, action=self.action(ctx.options), run_id=ctx.run_id)
        self.prepare(state, ctx, report)

        targets = run_phase(ctx, PHASE_SCOPE, lambda: self.resolve_scope(state, ctx, report))
        logger.info(f"[{self.mode.value.upper()}] {len(targets)} target(s): {', '.join(targets) or 'none'}")

        for feature_id in targets:
            ctx.check_deadline()
            record = copy.deepcopy(state.features.get(feature_id))
            outcome = FeatureOutcome(feature_id)

            record = run_phase(
                ctx, PHASE_GENERATE,
                lambda: self.generate(feature_id, record, ctx, outcome),
                feature_id=feature_id,
            )
            ctx.check_deadline()
            record = run_phase(
                ctx, PHASE_TRANSITION,
                lambda: self.transition(feature_id, record, ctx, outcome),
                feature_id=feature_id,
            )

            state.features[feature_id] = record
            outcome.status = record.status
            report.features.append(outcome)
            ctx.checkpoint(state)

        report.summarize()
        report.phases = list(ctx.phases)
        return ModeResult(state, report, finished=self.finished(state, targets, ctx))

    def prepare(self, state: WorkflowState, ctx: ModeContext, report: ModeReport):
        """Hook for work that precedes scope resolution."""

    def resolve_scope(self, state: WorkflowState, ctx: ModeContext, report: ModeReport) -> list[str]:
        raise NotImplementedError

    def generate(self, feature_id: str, record: FeatureRecord | None,
                 ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord | None:
        raise NotImplementedError

    def transition(self, feature_id: str, record: FeatureRecord | None,
                   ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        raise NotImplementedError

    def finished(self, state: WorkflowState, targets: list[str], ctx: ModeContext) -> bool:
        return True


def require_known(state: WorkflowState, feature_id: str) -> FeatureRecord:
    """Record of a named feature, or MissingArtifact."""
    record = FeatureRegistry(state).get(feature_id)
    if record is None:
        raise MissingArtifact(f"Unknown feature '{feature_id}'; create it with 'requirements {feature_id}'")
    return record


def spec_artifacts(ctx: ModeContext, feature_id: str) -> list[str]:
    """Existing artifacts handed to generators: the specification document."""
    specs = ctx.collaborators.specs
    return [str(specs.path(feature_id))] if specs.exists(feature_id) else []
