"""
Steps mode: step definitions, page objects and helpers for confirmed features.

After generation one validation run is made for information only. Its
counts are recorded (pending scenarios are expected at this stage) but do
not decide the transition.
"""

import logging

from roleflow.lib.constants import OUTCOME_OK
from roleflow.lib.errors import CollaboratorError, ConfigError, Timeout
from roleflow.modes.base import (
    FeatureModeController,
    FeatureOutcome,
    ModeReport,
    require_known,
    spec_artifacts,
)
from roleflow.runner.context import ModeContext
from roleflow.store.models import FeatureRecord, FeatureStatus, Mode, ResultCounts, WorkflowState, now_iso
from roleflow.workflow import lifecycle
from roleflow.workflow.constraints import ArtifactClass, Mutation, require, require_outputs
from roleflow.workflow.registry import FeatureRegistry

logger = logging.getLogger(__name__)


class StepsController(FeatureModeController):
    mode = Mode.STEPS

    def action(self, options) -> str:
        return "generate_steps"

    def resolve_scope(self, state: WorkflowState, ctx: ModeContext, report: ModeReport) -> list[str]:
        feature_id = ctx.options.feature
        if feature_id and not ctx.options.all:
            record = require_known(state, feature_id)
            # Authorize up front so a draft fails before anything runs
            require_outputs(self.mode, self._mutation(record), record.lifecycle, feature_id)
            return [feature_id]
        return FeatureRegistry(state).pending(FeatureStatus.CONFIRMED)

    def generate(self, feature_id: str, record: FeatureRecord | None,
                 ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        collaborators = ctx.collaborators
        require_outputs(self.mode, self._mutation(record), record.lifecycle, feature_id)
        collaborators.specs.read(feature_id)

        try:
            result = collaborators.generator.generate(
                self.mode, feature_id, spec_artifacts(ctx, feature_id), ctx.options.generator_options(),
            )
        except CollaboratorError as e:
            logger.warning(f"[STEPS] {feature_id}: generation failed: {e.message}")
            outcome.fail(e.message)
            return record

        outcome.files_written = list(result.files_written)
        outcome.pending_items = list(result.pending_items)

        ctx.check_deadline()
        try:
            validation = collaborators.validator.run(feature_id)
        except (Timeout, ConfigError):
            raise
        except Exception as e:
            logger.warning(f"[STEPS] {feature_id}: informational validation failed to run: {e}")
        else:
            record.test_results = ResultCounts(**validation.counts())
            outcome.test_results = validation.counts()
            logger.info(f"[STEPS] {feature_id}: {validation.summary}")
        return record

    def transition(self, feature_id: str, record: FeatureRecord | None,
                   ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        if outcome.outcome != OUTCOME_OK:
            record.failure_reason = outcome.reason
            return record

        record.failure_reason = None
        if record.lifecycle == FeatureStatus.CONFIRMED:
            lifecycle.transition(feature_id, record, FeatureStatus.STEPS_DEFINED, reason="steps generated")
            if ctx.config.annotate_specs:
                require(self.mode, ArtifactClass.SPECIFICATION_METADATA, Mutation.MODIFY,
                        record.lifecycle, feature_id=feature_id)
                ctx.collaborators.specs.annotate(feature_id, f"steps defined {now_iso()}")
        return record

    def finished(self, state: WorkflowState, targets: list[str], ctx: ModeContext) -> bool:
        return not any(
            state.features[fid].lifecycle == FeatureStatus.CONFIRMED for fid in targets
        )

    @staticmethod
    def _mutation(record: FeatureRecord) -> Mutation:
        # Regenerating steps for a feature that already has them modifies them
        if record.lifecycle in (FeatureStatus.DRAFT, FeatureStatus.CONFIRMED):
            return Mutation.CREATE
        return Mutation.MODIFY
