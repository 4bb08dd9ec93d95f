"""
Behavior-preserving modes (refactor, step_optimize).

They reorganize existing artifacts without changing what they do, so they
stay off the feature lifecycle entirely:

- the baseline validation must be green before anything is touched
  (one attempt, no retry, no auto-fix)
- --analyze only asks the generator for a report
- otherwise the restructure is authorized, generated, and validated once
  more; a regression aborts with ValidationFailure and the dispatcher
  rolls the state back to the pre-run snapshot
"""

import logging

from roleflow.lib.errors import BaselineNotGreen, ValidationFailure
from roleflow.modes.base import ModeController, ModeReport, ModeResult, spec_artifacts
from roleflow.runner.context import ModeContext
from roleflow.runner.retry import run_with_retry
from roleflow.runner.stages import PHASE_GENERATE, PHASE_SCOPE, PHASE_TRANSITION, run_phase
from roleflow.store.models import WorkflowState
from roleflow.workflow.constraints import Mutation, require_outputs

logger = logging.getLogger(__name__)


class RestructureController(ModeController):
    """Shared flow of refactor and step_optimize."""

    def action(self, options) -> str:
        return "analyze" if options.analyze else "restructure"

    def run(self, state: WorkflowState, ctx: ModeContext) -> ModeResult:
        report = ModeReport(mode=self.mode.value, action=self.action(ctx.options), run_id=ctx.run_id)
        scope = ctx.options.scope or ctx.options.feature
        report.details["scope"] = scope

        run_phase(ctx, PHASE_SCOPE, lambda: self._check_baseline(ctx, scope, report))
        ctx.check_deadline()

        if ctx.options.analyze:
            result = run_phase(ctx, PHASE_GENERATE, lambda: self._generate(ctx, scope))
            report.details["analysis"] = result.report
            report.details["pending_items"] = list(result.pending_items)
        else:
            require_outputs(self.mode, Mutation.RESTRUCTURE, feature_id=ctx.options.feature)
            result = run_phase(ctx, PHASE_GENERATE, lambda: self._generate(ctx, scope))
            report.details["files_written"] = list(result.files_written)
            if result.report:
                report.details["analysis"] = result.report
            ctx.check_deadline()
            run_phase(ctx, PHASE_TRANSITION, lambda: self._verify(ctx, scope, report))

        report.phases = list(ctx.phases)
        return ModeResult(state, report, finished=True)

    def _check_baseline(self, ctx: ModeContext, scope: str | None, report: ModeReport):
        validator = ctx.collaborators.validator
        baseline = run_with_retry(
            lambda: validator.run(scope),
            max_attempts=1,
            classifier=ctx.collaborators.classifier,
            label="baseline",
        )
        if baseline.outcome is not None:
            report.details["baseline"] = baseline.outcome.counts()
        if not baseline.success:
            failed = baseline.outcome.failed if baseline.outcome else 1
            raise BaselineNotGreen(failed, baseline.last_failure_reason)
        logger.info(f"[{self.mode.value.upper()}] Baseline green: {baseline.outcome.summary}")

    def _generate(self, ctx: ModeContext, scope: str | None):
        feature_id = ctx.options.feature
        existing = spec_artifacts(ctx, feature_id) if feature_id else []
        return ctx.collaborators.generator.generate(
            self.mode, feature_id, existing, ctx.options.generator_options(),
        )

    def _verify(self, ctx: ModeContext, scope: str | None, report: ModeReport):
        validator = ctx.collaborators.validator
        after = run_with_retry(
            lambda: validator.run(scope),
            max_attempts=1,
            classifier=ctx.collaborators.classifier,
            label="post-restructure validation",
        )
        if after.outcome is not None:
            report.details["after"] = after.outcome.counts()
        if not after.success:
            raise ValidationFailure(
                f"{self.mode.value} changed behavior: {after.last_failure_reason}; state rolled back"
            )
        logger.info(f"[{self.mode.value.upper()}] Behavior preserved: {after.outcome.summary}")
