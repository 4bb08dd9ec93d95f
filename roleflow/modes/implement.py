"""
Implement mode: business logic until the feature's scenarios pass.

Per feature:
1. enter implementing (steps_defined, or failed/completed when re-entered
   with --retry / --force)
2. run the implementation generator
3. validate through run_with_retry(), auto-fixing recoverable failures
4. completed on success, failed with the last reason otherwise

A batch continues past failed features; the invocation then reports a
partial outcome and the mode stays active.
"""

import logging

from roleflow.lib.constants import OUTCOME_OK
from roleflow.lib.errors import CollaboratorError
from roleflow.lib.test_parser import ValidationOutcome, format_outcome
from roleflow.modes.base import (
    FeatureModeController,
    FeatureOutcome,
    ModeReport,
    require_known,
    spec_artifacts,
)
from roleflow.runner.context import ModeContext
from roleflow.runner.retry import FailureClass, run_with_retry
from roleflow.store.models import FeatureRecord, FeatureStatus, Mode, ResultCounts, WorkflowState
from roleflow.workflow import lifecycle
from roleflow.workflow.constraints import Mutation, require_outputs
from roleflow.workflow.registry import FeatureRegistry

logger = logging.getLogger(__name__)


class ImplementController(FeatureModeController):
    mode = Mode.IMPLEMENT

    def action(self, options) -> str:
        if options.force:
            return "implement_force"
        if options.retry:
            return "implement_retry"
        return "implement"

    def resolve_scope(self, state: WorkflowState, ctx: ModeContext, report: ModeReport) -> list[str]:
        options = ctx.options
        feature_id = options.feature

        if feature_id and not options.all:
            record = require_known(state, feature_id)
            status = record.lifecycle
            if status == FeatureStatus.FAILED and not (options.retry or options.force):
                report.skip(feature_id, "feature failed; rerun with --retry to re-enter implementing")
                return []
            if status == FeatureStatus.COMPLETED and not options.force:
                report.skip(feature_id, "feature completed; rerun with --force to re-implement")
                return []
            require_outputs(self.mode, self._mutation(record), status, feature_id)
            return [feature_id]

        registry = FeatureRegistry(state)
        targets = [
            fid for fid in registry.next(include_failed=options.retry or options.force)
            if registry.get(fid).lifecycle not in (FeatureStatus.DRAFT, FeatureStatus.CONFIRMED)
        ]
        if options.force:
            targets += registry.pending(FeatureStatus.COMPLETED)
        elif not options.retry:
            for fid in registry.pending(FeatureStatus.FAILED):
                report.skip(fid, "feature failed; rerun with --retry to include it")
        return targets

    def generate(self, feature_id: str, record: FeatureRecord | None,
                 ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        collaborators = ctx.collaborators
        require_outputs(self.mode, self._mutation(record), record.lifecycle, feature_id)
        self._enter_implementing(feature_id, record, ctx)

        try:
            result = collaborators.generator.generate(
                self.mode, feature_id, spec_artifacts(ctx, feature_id), ctx.options.generator_options(),
            )
        except CollaboratorError as e:
            logger.warning(f"[IMPLEMENT] {feature_id}: generation failed: {e.message}")
            outcome.fail(e.message)
            return record

        outcome.files_written = list(result.files_written)
        outcome.pending_items = list(result.pending_items)

        ctx.check_deadline()
        retry = run_with_retry(
            lambda: collaborators.validator.run(feature_id),
            max_attempts=ctx.config.max_attempts,
            classifier=collaborators.classifier,
            fixer=self._fixer(feature_id, ctx),
            label=f"validate {feature_id}",
        )
        record.attempts = retry.attempts_used
        outcome.attempts = retry.attempts_used
        if retry.outcome is not None:
            record.test_results = ResultCounts(**retry.outcome.counts())
            outcome.test_results = retry.outcome.counts()
        if not retry.success:
            cls = retry.failure_class.value if retry.failure_class else "unknown"
            outcome.fail(f"{retry.last_failure_reason} ({cls}, {retry.attempts_used} attempt(s))")
        return record

    def transition(self, feature_id: str, record: FeatureRecord | None,
                   ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        if outcome.outcome == OUTCOME_OK:
            lifecycle.transition(feature_id, record, FeatureStatus.COMPLETED, reason="validation passed")
            record.failure_reason = None
        else:
            lifecycle.transition(feature_id, record, FeatureStatus.FAILED, reason=outcome.reason)
            record.failure_reason = outcome.reason
        return record

    def finished(self, state: WorkflowState, targets: list[str], ctx: ModeContext) -> bool:
        return all(state.features[fid].lifecycle == FeatureStatus.COMPLETED for fid in targets)

    def _enter_implementing(self, feature_id: str, record: FeatureRecord, ctx: ModeContext):
        status = record.lifecycle
        if status == FeatureStatus.FAILED:
            via = "retry" if ctx.options.retry else "reopen"
            lifecycle.transition(feature_id, record, FeatureStatus.IMPLEMENTING, reason=via, via=via)
        elif status == FeatureStatus.COMPLETED:
            lifecycle.transition(feature_id, record, FeatureStatus.IMPLEMENTING, reason="forced", via="reopen")
        else:
            lifecycle.transition(feature_id, record, FeatureStatus.IMPLEMENTING, reason="implementation started")

    def _fixer(self, feature_id: str, ctx: ModeContext):
        """Auto-fix for recoverable failures.

        The autofix collaborator when configured. Without one, assertion
        failures are handed back to the implementation generator with the
        failure details; other classes are retried as they are.
        """
        collaborators = ctx.collaborators
        if collaborators.fixer is not None:
            return lambda failure_class, outcome: collaborators.fixer.fix(failure_class, outcome, feature_id)

        def regenerate(failure_class: FailureClass, outcome: ValidationOutcome):
            if failure_class != FailureClass.ASSERTION:
                return
            require_outputs(self.mode, Mutation.MODIFY, FeatureStatus.IMPLEMENTING, feature_id)
            options = dict(ctx.options.generator_options(), failures=outcome.failure_details,
                           failure_report=format_outcome(outcome))
            collaborators.generator.generate(self.mode, feature_id, spec_artifacts(ctx, feature_id), options)

        return regenerate

    @staticmethod
    def _mutation(record: FeatureRecord) -> Mutation:
        if record.implementation_started_at is None:
            return Mutation.CREATE
        return Mutation.MODIFY
