"""
Bounded retry around validation runs.

run_with_retry() calls a validation operation up to max_attempts times.
After a failed attempt the failure is classified: recoverable classes get the
auto-fix collaborator and another attempt, an unrecoverable failure stops at
once. The result is data, so callers branch on it and tests can assert exact
attempt counts.

The handler never raises for a failing or crashing collaborator. It lets
through only the mode-level Timeout, which aborts the whole invocation rather
than one attempt, and ConfigError, since no retry fixes a missing command.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from roleflow.lib.errors import ConfigError, Timeout
from roleflow.lib.test_parser import FailureInfo, ValidationOutcome

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class FailureClass(Enum):
    MISSING_DEPENDENCY = "missing_dependency"
    TIMEOUT = "timeout"
    ASSERTION = "assertion"
    UNRECOVERABLE = "unrecoverable"


RECOVERABLE = frozenset({
    FailureClass.MISSING_DEPENDENCY,
    FailureClass.TIMEOUT,
    FailureClass.ASSERTION,
})


@dataclass
class RetryResult:
    """Outcome of a retried validation."""
    success: bool
    attempts_used: int
    last_failure_reason: Optional[str] = None
    outcome: Optional[ValidationOutcome] = None  # last outcome, if any attempt produced one
    failure_class: Optional[FailureClass] = None


class HeuristicClassifier:
    """Default classifier: reads failure messages for well-known signals."""

    MISSING_DEPENDENCY_PATTERNS = [
        r"ModuleNotFoundError",
        r"No module named",
        r"ImportError",
        r"Cannot find module",
        r"command not found",
        r"Missing module",
    ]
    TIMEOUT_PATTERNS = [
        r"timed out",
        r"TimeoutError",
        r"Timeout",
    ]
    UNRECOVERABLE_PATTERNS = [
        r"SyntaxError",
        r"IndentationError",
        r"Permission denied",
    ]

    def classify(self, outcome: ValidationOutcome) -> FailureClass:
        text = "\n".join(outcome.failure_details + [outcome.raw_output, outcome.summary])
        if self._matches(self.UNRECOVERABLE_PATTERNS, text):
            return FailureClass.UNRECOVERABLE
        if self._matches(self.MISSING_DEPENDENCY_PATTERNS, text):
            return FailureClass.MISSING_DEPENDENCY
        if self._matches(self.TIMEOUT_PATTERNS, text):
            return FailureClass.TIMEOUT
        if any(f.failure_type == "test" for f in outcome.failures) or outcome.failed:
            return FailureClass.ASSERTION
        return FailureClass.UNRECOVERABLE

    @staticmethod
    def _matches(patterns: list[str], text: str) -> bool:
        return any(re.search(p, text) for p in patterns)


def _reason(outcome: ValidationOutcome) -> str:
    if outcome.failure_details:
        return f"{outcome.summary}: {outcome.failure_details[0]}"
    return outcome.summary or f"{outcome.failed} failing"


def run_with_retry(
    operation: Callable[[], ValidationOutcome],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    classifier=None,
    fixer: Callable[[FailureClass, ValidationOutcome], None] | None = None,
    label: str = "validation",
) -> RetryResult:
    """
    Run operation until it reports zero failures or attempts run out.

    Args:
        operation: Validation call returning a ValidationOutcome
        max_attempts: Upper bound on calls to operation (1 disables retry)
        classifier: Object with classify(outcome) -> FailureClass;
            HeuristicClassifier when None
        fixer: Called with (failure_class, outcome) before retrying a
            recoverable failure
        label: Name used in log lines

    Returns:
        RetryResult; raises only Timeout and ConfigError.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    classifier = classifier or HeuristicClassifier()

    last_outcome = None
    last_reason = None
    failure_class = None

    for attempt in range(1, max_attempts + 1):
        logger.info(f"[RETRY] {label}: attempt {attempt}/{max_attempts}")
        try:
            outcome = operation()
        except (Timeout, ConfigError):
            raise
        except Exception as e:
            logger.warning(f"[RETRY] {label}: attempt {attempt} errored: {e}")
            outcome = ValidationOutcome(
                failed=1,
                failures=[FailureInfo(name=label, failure_type="build", message=str(e))],
                summary=f"{label} errored",
            )
        last_outcome = outcome

        if outcome.ok:
            logger.info(f"[RETRY] {label}: passed on attempt {attempt} ({outcome.summary})")
            return RetryResult(success=True, attempts_used=attempt, outcome=outcome)

        last_reason = _reason(outcome)

        try:
            failure_class = classifier.classify(outcome)
        except (Timeout, ConfigError):
            raise
        except Exception as e:
            logger.warning(f"[RETRY] {label}: classifier failed ({e}), treating as unrecoverable")
            failure_class = FailureClass.UNRECOVERABLE

        logger.info(f"[RETRY] {label}: attempt {attempt} failed ({failure_class.value}): {last_reason}")

        if failure_class not in RECOVERABLE:
            return RetryResult(
                success=False,
                attempts_used=attempt,
                last_failure_reason=last_reason,
                outcome=outcome,
                failure_class=failure_class,
            )

        if attempt < max_attempts and fixer is not None:
            try:
                fixer(failure_class, outcome)
            except (Timeout, ConfigError):
                raise
            except Exception as e:
                logger.warning(f"[RETRY] {label}: auto-fix for {failure_class.value} failed: {e}")

    return RetryResult(
        success=False,
        attempts_used=max_attempts,
        last_failure_reason=last_reason,
        outcome=last_outcome,
        failure_class=failure_class,
    )
