"""Refactor mode: restructure business logic without changing behavior."""

from roleflow.modes.restructure import RestructureController
from roleflow.store.models import Mode


class RefactorController(RestructureController):
    mode = Mode.REFACTOR
