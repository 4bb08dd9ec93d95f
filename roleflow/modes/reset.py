"""
Reset pseudo-mode.

Soft (default): leave the active mode. Features, history and context stay.
Hard (--hard): also forget every feature and the whole history. The hard
reset is the one invocation that does not leave a history entry, since
its contract is an empty history. Specification documents are never
touched.
"""

import logging

from roleflow.modes.base import ModeController, ModeReport, ModeResult
from roleflow.runner.context import ModeContext
from roleflow.store.models import WorkflowState
from roleflow.store.state_store import hard_reset, soft_reset

logger = logging.getLogger(__name__)


class ResetController(ModeController):

    def action(self, options) -> str:
        return "hard_reset" if options.hard else "soft_reset"

    def run(self, state: WorkflowState, ctx: ModeContext) -> ModeResult:
        report = ModeReport(mode="reset", action=self.action(ctx.options), run_id=ctx.run_id)
        report.details["previous_mode"] = state.mode

        if ctx.options.hard:
            report.details["features_removed"] = len(state.features)
            report.details["history_removed"] = len(state.history)
            hard_reset(state)
            logger.warning(
                f"[RESET] Hard reset: removed {report.details['features_removed']} features "
                f"and {report.details['history_removed']} history entries"
            )
            return ModeResult(state, report, finished=True, audit=False)

        soft_reset(state)
        logger.info(f"[RESET] Left {report.details['previous_mode']} mode")
        return ModeResult(state, report, finished=True)
