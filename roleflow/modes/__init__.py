"""Mode controllers, keyed by the mode name used on the command line.

status and reset are pseudo-modes: they never become the active mode and
are accepted whatever mode is active.
"""

from roleflow.modes.implement import ImplementController
from roleflow.modes.refactor import RefactorController
from roleflow.modes.requirements import RequirementsController
from roleflow.modes.reset import ResetController
from roleflow.modes.status import StatusController
from roleflow.modes.step_optimize import StepOptimizeController
from roleflow.modes.steps import StepsController

CONTROLLERS = {
    "requirements": RequirementsController,
    "steps": StepsController,
    "implement": ImplementController,
    "refactor": RefactorController,
    "step_optimize": StepOptimizeController,
}

PSEUDO_MODES = {
    "status": StatusController,
    "reset": ResetController,
}

ALIASES = {
    "step-optimize": "step_optimize",
}

__all__ = [
    "CONTROLLERS",
    "PSEUDO_MODES",
    "ALIASES",
    "ImplementController",
    "RefactorController",
    "RequirementsController",
    "ResetController",
    "StatusController",
    "StepOptimizeController",
    "StepsController",
]
