"""
Phase execution for mode controllers.

Every controller runs the same three phases: scope resolution, delegated
generation and status transition. run_phase() times each one, records it
on the context and writes it to the run log.
"""

import time
from typing import Callable, TypeVar

from roleflow.lib.errors import RoleflowError
from roleflow.runner.context import ModeContext

T = TypeVar("T")

PHASE_SCOPE = "scope"
PHASE_GENERATE = "generate"
PHASE_TRANSITION = "transition"


def run_phase(ctx: ModeContext, phase: str, phase_fn: Callable[[], T], feature_id: str | None = None) -> T:
    """
    Run a single phase with timing.

    Returns whatever phase_fn returns. Errors are recorded, then re-raised
    unchanged so the dispatcher can map them.
    """
    target = f" [{feature_id}]" if feature_id else ""
    ctx.log(f"Starting phase: {phase}{target}")
    start = time.time()

    try:
        result = phase_fn()
    except RoleflowError as e:
        duration = time.time() - start
        ctx.record_phase(phase, "failed", duration, e.message, feature_id)
        ctx.log(f"Phase {phase}{target} failed: {e.message}")
        raise
    except Exception as e:
        duration = time.time() - start
        ctx.record_phase(phase, "error", duration, str(e), feature_id)
        ctx.log(f"Phase {phase}{target} error: {e}")
        raise

    duration = time.time() - start
    ctx.record_phase(phase, "passed", duration, feature_id=feature_id)
    ctx.log(f"Phase {phase}{target} passed ({duration:.2f}s)")
    return result
