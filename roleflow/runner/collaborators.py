"""
External collaborators.

The core never generates content or runs tests itself. It calls these
adapters, each of which shells out to a configured command (see
roleflow.lib.collaborators_config) and turns the result into data:

- SpecDocuments:      create / read / annotate specification documents
- CommandGenerator:   per-mode artifact generation -> GenerationResult
- CommandValidator:   validation run -> ValidationOutcome
- CommandClassifier:  failure -> FailureClass
- CommandFixer:       auto-fix for a recoverable failure class
- FileReportWriter:   report persistence

Tests and embedding tools replace any of them with objects that have the
same methods.
"""

import json
import logging
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from roleflow.lib.collaborators_config import (
    CollaboratorsConfig,
    get_collaborator_command,
    load_collaborators_config,
)
from roleflow.lib.config import ProjectConfig
from roleflow.lib.errors import CollaboratorError, MissingArtifact, Timeout
from roleflow.lib.test_parser import ValidationOutcome, format_outcome, parse_test_output
from roleflow.runner.retry import FailureClass, HeuristicClassifier
from roleflow.store.models import Mode

logger = logging.getLogger(__name__)

ANNOTATION_PREFIX = "# roleflow:"


@dataclass
class GenerationResult:
    """What a generator reports back."""
    files_written: list[str] = field(default_factory=list)
    pending_items: list[str] = field(default_factory=list)
    report: str = ""  # free-form analysis text (refactor/step_optimize --analyze)

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationResult":
        return cls(
            files_written=[str(f) for f in data.get("files_written", [])],
            pending_items=[str(p) for p in data.get("pending_items", [])],
            report=str(data.get("report", "")),
        )


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    duration: float


class CommandRunner:
    """Runs collaborator commands in the workspace root with bounded time.

    The effective timeout of a call is the collaborator timeout, capped by
    whatever is left of the current mode deadline.
    """

    def __init__(self, root: Path, timeout: float, deadline: float | None = None):
        self.root = Path(root)
        self.timeout = timeout
        self.deadline = deadline  # time.monotonic() value, set per mode invocation

    def effective_timeout(self) -> float:
        if self.deadline is None:
            return self.timeout
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise Timeout("Mode deadline reached before collaborator call")
        return min(self.timeout, remaining)

    def run(self, name: str, cmd: list[str], stdin: str | None = None) -> CommandResult:
        timeout = self.effective_timeout()
        logger.debug(f"[COLLAB] {name}: {' '.join(cmd)} (timeout {timeout:.0f}s)")
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                cwd=self.root,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            if self.deadline is not None and time.monotonic() >= self.deadline:
                raise Timeout(f"Mode deadline reached while running {name}") from None
            raise CollaboratorError(name, f"timed out after {timeout:.0f}s") from None
        except OSError as e:
            raise CollaboratorError(name, f"could not run {cmd[0]}: {e}") from None

        duration = time.monotonic() - start
        logger.debug(f"[COLLAB] {name}: exit={result.returncode} duration={duration:.2f}s")
        return CommandResult(result.returncode, result.stdout, result.stderr, duration)


def _parse_json_stdout(name: str, stdout: str) -> dict:
    text = stdout.strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Tools that log before printing their result: take the last line
        try:
            data = json.loads(text.splitlines()[-1])
        except json.JSONDecodeError as e:
            raise CollaboratorError(name, f"expected JSON on stdout: {e}") from None
    if not isinstance(data, dict):
        raise CollaboratorError(name, "expected a JSON object on stdout")
    return data


def _tail(text: str, lines: int = 5) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class SpecDocuments:
    """Specification documents, one file per feature.

    Documents are owned by the humans writing them. The core creates them
    (through spec_create when configured, otherwise as an empty stub),
    reads them, and may append status annotations.
    """

    def __init__(self, config: ProjectConfig, commands: CollaboratorsConfig, runner: CommandRunner):
        self.config = config
        self.commands = commands
        self.runner = runner

    def path(self, feature_id: str) -> Path:
        return self.config.spec_path(feature_id)

    def exists(self, feature_id: str) -> bool:
        return self.path(feature_id).exists()

    def create(self, feature_id: str, overwrite: bool = False) -> Path:
        """Create the document and return its path."""
        path = self.path(feature_id)
        if path.exists() and not overwrite:
            return path

        if self.commands.has("spec_create"):
            cmd = get_collaborator_command(self.commands, "spec_create", {
                "feature": feature_id,
                "path": str(path),
            })
            result = self.runner.run("spec_create", cmd)
            if result.returncode != 0:
                raise CollaboratorError("spec_create", _tail(result.stderr) or f"exit {result.returncode}")
            if not path.exists():
                raise CollaboratorError("spec_create", f"did not create {path}")
        else:
            if overwrite:
                raise CollaboratorError("spec_create", "amending a specification needs a spec_create command")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{ANNOTATION_PREFIX} specification for {feature_id}\n")

        logger.info(f"Specification for {feature_id} at {path}")
        return path

    def amend(self, feature_id: str) -> Path:
        """Rewrite the requirement content. Callers authorize the override."""
        if not self.exists(feature_id):
            raise MissingArtifact(f"Specification for '{feature_id}' not found at {self.path(feature_id)}")
        return self.create(feature_id, overwrite=True)

    def read(self, feature_id: str) -> str:
        path = self.path(feature_id)
        if not path.exists():
            raise MissingArtifact(f"Specification for '{feature_id}' not found at {path}")
        return path.read_text()

    def annotate(self, feature_id: str, note: str) -> None:
        """Append a metadata line. Requirement content is never rewritten."""
        path = self.path(feature_id)
        if not path.exists():
            raise MissingArtifact(f"Specification for '{feature_id}' not found at {path}")
        content = path.read_text()
        separator = "" if not content or content.endswith("\n") else "\n"
        with open(path, "a") as f:
            f.write(f"{separator}{ANNOTATION_PREFIX} {note}\n")


class CommandGenerator:
    """Artifact generation through the per-mode command."""

    def __init__(self, commands: CollaboratorsConfig, runner: CommandRunner):
        self.commands = commands
        self.runner = runner

    def generate(
        self,
        mode: Mode,
        feature_id: str | None,
        existing_artifacts: list[str],
        options: dict | None = None,
    ) -> GenerationResult:
        name = mode.value
        cmd = get_collaborator_command(self.commands, name, {
            "feature": feature_id or "",
            "scope": (options or {}).get("scope") or "",
            "mode": name,
        })
        request = json.dumps({
            "mode": name,
            "feature": feature_id,
            "existing_artifacts": existing_artifacts,
            "options": options or {},
        })
        result = self.runner.run(name, cmd, stdin=request)
        if result.returncode != 0:
            raise CollaboratorError(name, _tail(result.stderr) or f"exit {result.returncode}")
        return GenerationResult.from_dict(_parse_json_stdout(name, result.stdout))


class CommandValidator:
    """Validation runs through the validate command."""

    def __init__(self, commands: CollaboratorsConfig, runner: CommandRunner):
        self.commands = commands
        self.runner = runner

    def run(self, scope: str | None = None) -> ValidationOutcome:
        cmd = get_collaborator_command(self.commands, "validate", {"scope": scope or ""})
        try:
            result = self.runner.run("validate", cmd)
        except CollaboratorError as e:
            if "timed out" in e.message:
                return parse_test_output("", f"Validation timed out: {e.message}", exit_code=124)
            raise
        return parse_test_output(result.stdout, result.stderr, result.returncode)


class CommandClassifier:
    """Failure classification through the classify command, falling back to
    the heuristic classifier when the command gives no usable answer."""

    def __init__(self, commands: CollaboratorsConfig, runner: CommandRunner):
        self.commands = commands
        self.runner = runner
        self.fallback = HeuristicClassifier()

    def classify(self, outcome: ValidationOutcome) -> FailureClass:
        cmd = get_collaborator_command(self.commands, "classify")
        request = json.dumps({
            **outcome.counts(),
            "failure_details": outcome.failure_details,
            "raw_output": outcome.raw_output,
        })
        result = self.runner.run("classify", cmd, stdin=request)
        if result.returncode == 0:
            value = _parse_json_stdout("classify", result.stdout).get("class")
            try:
                return FailureClass(value)
            except ValueError:
                logger.warning(f"classify returned unknown class {value!r}")
        return self.fallback.classify(outcome)


class CommandFixer:
    """Auto-fix for recoverable failures through the autofix command."""

    def __init__(self, commands: CollaboratorsConfig, runner: CommandRunner):
        self.commands = commands
        self.runner = runner

    def fix(self, failure_class: FailureClass, outcome: ValidationOutcome, feature_id: str | None = None) -> None:
        cmd = get_collaborator_command(self.commands, "autofix", {
            "kind": failure_class.value,
            "feature": feature_id or "",
        })
        request = json.dumps({
            "class": failure_class.value,
            "feature": feature_id,
            "failure_details": outcome.failure_details,
            "report": format_outcome(outcome),
        })
        result = self.runner.run("autofix", cmd, stdin=request)
        if result.returncode != 0:
            raise CollaboratorError("autofix", _tail(result.stderr) or f"exit {result.returncode}")


class FileReportWriter:
    """Writes reports as JSON files."""

    def __init__(self, reports_dir: Path):
        self.reports_dir = Path(reports_dir)

    def write(self, kind: str, content: dict) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = self.reports_dir / f"{kind}-{stamp}.json"
        suffix = 1
        while path.exists():
            suffix += 1
            path = self.reports_dir / f"{kind}-{stamp}-{suffix}.json"
        path.write_text(json.dumps(content, indent=2, default=str) + "\n")
        return path


@dataclass
class Collaborators:
    """The set of collaborators a mode controller may call."""
    specs: object
    generator: object
    validator: object
    reports: object
    classifier: object = field(default_factory=HeuristicClassifier)
    fixer: object | None = None
    runner: CommandRunner | None = None  # deadline is set on it per invocation

    @classmethod
    def from_config(cls, config: ProjectConfig, commands: CollaboratorsConfig | None = None) -> "Collaborators":
        if commands is None:
            commands = load_collaborators_config(config.root)
        runner = CommandRunner(config.root, config.collaborator_timeout)
        return cls(
            specs=SpecDocuments(config, commands, runner),
            generator=CommandGenerator(commands, runner),
            validator=CommandValidator(commands, runner),
            reports=FileReportWriter(config.reports_path),
            classifier=CommandClassifier(commands, runner) if commands.has("classify") else HeuristicClassifier(),
            fixer=CommandFixer(commands, runner) if commands.has("autofix") else None,
            runner=runner,
        )
