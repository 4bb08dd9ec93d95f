"""
Error taxonomy for roleflow.

Every error carries the process exit code the CLI maps it to. Errors raised
after the command line is parsed are also recorded in the workflow history.
"""

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_MODE_CONFLICT = 3
EXIT_CONSTRAINT = 4
EXIT_BASELINE = 5
EXIT_VALIDATION = 6
EXIT_MISSING_ARTIFACT = 7
EXIT_TIMEOUT = 8
EXIT_LOCKED = 9


class RoleflowError(Exception):
    """Base class for errors surfaced to the caller."""

    exit_code = EXIT_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(RoleflowError):
    """Workspace configuration is missing or invalid."""

    exit_code = EXIT_USAGE


class UnknownMode(RoleflowError):
    """Mode name is not one of the recognized modes."""

    exit_code = EXIT_USAGE

    def __init__(self, mode_name: str):
        self.mode_name = mode_name
        super().__init__(f"Unknown mode: {mode_name}")


class ModeConflict(RoleflowError):
    """Another mode is active and the switch was not forced."""

    exit_code = EXIT_MODE_CONFLICT

    def __init__(self, active: str, requested: str):
        self.active = active
        self.requested = requested
        super().__init__(
            f"Mode '{active}' is still active; finish it or rerun "
            f"'{requested}' with --force"
        )


class ConstraintViolation(RoleflowError):
    """Mutation outside the active role's authorized artifact classes."""

    exit_code = EXIT_CONSTRAINT


class MissingArtifact(RoleflowError):
    """A referenced specification or artifact does not exist."""

    exit_code = EXIT_MISSING_ARTIFACT


class BaselineNotGreen(RoleflowError):
    """Baseline validation reported failures before a behavior-preserving mode."""

    exit_code = EXIT_BASELINE

    def __init__(self, failed: int, reason: str | None = None):
        self.failed = failed
        detail = f": {reason}" if reason else ""
        super().__init__(f"Baseline is not green ({failed} failing){detail}")


class ValidationFailure(RoleflowError):
    """Validation still failing after the retry budget was spent."""

    exit_code = EXIT_VALIDATION


class Timeout(RoleflowError):
    """The mode invocation exceeded its overall deadline."""

    exit_code = EXIT_TIMEOUT


class CollaboratorError(RoleflowError):
    """An external collaborator could not be run or returned garbage."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"[{collaborator}] {message}")


class UsageError(RoleflowError):
    """Arguments are malformed (bad feature id, bad --context pair)."""

    exit_code = EXIT_USAGE
