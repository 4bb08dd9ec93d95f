"""
Requirements mode: capture specification documents and confirm them.

    requirements <id>                 create the document, feature is a draft
    requirements <id> --confirm       human confirmation, draft -> confirmed
    requirements --confirm --all      confirm every draft
    requirements <id> --amend         rewrite a locked document (override)
    requirements --context KEY=VALUE  record workflow context
"""

import logging

from roleflow.lib.constants import OUTCOME_OK
from roleflow.lib.errors import CollaboratorError, ConstraintViolation, MissingArtifact, UsageError
from roleflow.modes.base import FeatureModeController, FeatureOutcome, ModeReport, require_known
from roleflow.runner.context import ModeContext
from roleflow.store.models import FeatureRecord, FeatureStatus, Mode, WorkflowState, now_iso
from roleflow.workflow.constraints import ArtifactClass, Mutation, require
from roleflow.workflow import lifecycle
from roleflow.workflow.registry import FeatureRegistry

logger = logging.getLogger(__name__)


class RequirementsController(FeatureModeController):
    mode = Mode.REQUIREMENTS

    def action(self, options) -> str:
        if options.confirm:
            return "confirm"
        if options.amend:
            return "amend"
        if options.feature:
            return "create"
        if options.context:
            return "context"
        return "list"

    def prepare(self, state: WorkflowState, ctx: ModeContext, report: ModeReport):
        if not ctx.options.context:
            return
        changed = False
        for key, value in sorted(ctx.options.context.items()):
            current = state.context.get(key)
            if current == value:
                continue
            if current is not None:
                raise ConstraintViolation(f"Context '{key}' is already set to '{current}'")
            if any(rec.lifecycle != FeatureStatus.DRAFT for rec in state.features.values()):
                raise ConstraintViolation(
                    f"Cannot add context '{key}': context is fixed once a feature is confirmed"
                )
            state.context[key] = value
            changed = True
            logger.info(f"[CONTEXT] {key}={value}")
        report.details["context"] = dict(state.context)
        if changed:
            ctx.checkpoint(state)

    def resolve_scope(self, state: WorkflowState, ctx: ModeContext, report: ModeReport) -> list[str]:
        options = ctx.options
        registry = FeatureRegistry(state)

        if options.confirm:
            if options.feature and not options.all:
                record = require_known(state, options.feature)
                if record.lifecycle != FeatureStatus.DRAFT:
                    report.skip(options.feature, f"already {record.status}")
                    return []
                return [options.feature]
            return registry.pending(FeatureStatus.DRAFT)

        if options.amend:
            if not options.feature:
                raise UsageError("--amend needs a feature id")
            require_known(state, options.feature)
            return [options.feature]

        if options.feature:
            return [options.feature]

        report.details["drafts"] = registry.pending(FeatureStatus.DRAFT)
        return []

    def generate(self, feature_id: str, record: FeatureRecord | None,
                 ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord | None:
        specs = ctx.collaborators.specs
        status = record.lifecycle if record else None

        if ctx.options.confirm:
            if not specs.exists(feature_id):
                raise MissingArtifact(f"Specification for '{feature_id}' not found at {specs.path(feature_id)}")
            if ctx.config.annotate_specs:
                require(self.mode, ArtifactClass.SPECIFICATION_METADATA, Mutation.MODIFY, status,
                        feature_id=feature_id)
                specs.annotate(feature_id, f"confirmed {now_iso()}")
            return record

        if ctx.options.amend:
            require(self.mode, ArtifactClass.SPECIFICATION, Mutation.MODIFY, status,
                    override=True, feature_id=feature_id)
            logger.warning(f"[OVERRIDE] Amending specification of {feature_id} ({record.status})")
            try:
                outcome.files_written.append(str(specs.amend(feature_id)))
            except CollaboratorError as e:
                outcome.fail(e.message)
            return record

        require(self.mode, ArtifactClass.SPECIFICATION, Mutation.CREATE, status, feature_id=feature_id)
        if not specs.exists(feature_id):
            try:
                outcome.files_written.append(str(specs.create(feature_id)))
            except CollaboratorError as e:
                outcome.fail(e.message)
        if record is None:
            record = FeatureRecord(created=now_iso())
            logger.info(f"[STATE] {feature_id}: new draft")
        return record

    def transition(self, feature_id: str, record: FeatureRecord | None,
                   ctx: ModeContext, outcome: FeatureOutcome) -> FeatureRecord:
        if outcome.outcome != OUTCOME_OK:
            record.failure_reason = outcome.reason
            return record
        if ctx.options.confirm:
            lifecycle.transition(feature_id, record, FeatureStatus.CONFIRMED, reason="confirmed by human")
        record.failure_reason = None
        return record

    def finished(self, state: WorkflowState, targets: list[str], ctx: ModeContext) -> bool:
        feature_id = ctx.options.feature
        if feature_id and not ctx.options.all:
            record = state.features.get(feature_id)
            return record is None or record.lifecycle != FeatureStatus.DRAFT
        return not FeatureRegistry(state).pending(FeatureStatus.DRAFT)
