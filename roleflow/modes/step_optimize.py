"""
Step optimization: consolidate step definitions without changing behavior.

--merge asks the generator to fold duplicate steps together, --generalize to
parameterize near-duplicates. Both are passed through as strategy names;
with neither the generator picks its own.
"""

from roleflow.modes.restructure import RestructureController
from roleflow.store.models import Mode


class StepOptimizeController(RestructureController):
    mode = Mode.STEP_OPTIMIZE

    def action(self, options) -> str:
        if options.analyze:
            return "analyze"
        strategy = [name for name, on in (("merge", options.merge), ("generalize", options.generalize)) if on]
        return "+".join(strategy) if strategy else "optimize"
