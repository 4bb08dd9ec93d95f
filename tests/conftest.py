"""Shared fixtures: a workspace in tmp_path wired to fake collaborators."""

from pathlib import Path

import pytest

from roleflow.dispatcher import Workspace, dispatch
from roleflow.lib.collaborators_config import CollaboratorsConfig
from roleflow.lib.config import ProjectConfig
from roleflow.lib.errors import CollaboratorError
from roleflow.lib.test_parser import FailureInfo, ValidationOutcome
from roleflow.runner.collaborators import (
    Collaborators,
    CommandRunner,
    FileReportWriter,
    GenerationResult,
    SpecDocuments,
)
from roleflow.runner.context import ModeOptions


def green(passed: int = 3, pending: int = 0) -> ValidationOutcome:
    return ValidationOutcome(passed=passed, pending=pending,
                             summary=f"{passed} passed, 0 failed, {pending} pending")


def red(message: str = "AssertionError: expected 200, got 500", failed: int = 1) -> ValidationOutcome:
    return ValidationOutcome(
        passed=1,
        failed=failed,
        failures=[FailureInfo(name="scenario", message=message)],
        summary=f"1 passed, {failed} failed, 0 pending",
    )


class FakeGenerator:
    """Records calls; fails for chosen features."""

    def __init__(self, fail_for=(), report="", error=None):
        self.fail_for = set(fail_for)
        self.report = report
        self.error = error  # raised on every call when set
        self.calls = []

    def generate(self, mode, feature_id, existing_artifacts, options=None):
        self.calls.append({
            "mode": mode.value,
            "feature_id": feature_id,
            "existing_artifacts": list(existing_artifacts),
            "options": dict(options or {}),
        })
        if self.error is not None:
            raise self.error
        if feature_id in self.fail_for:
            raise CollaboratorError(mode.value, f"generation failed for {feature_id}")
        return GenerationResult(
            files_written=[f"src/{feature_id or 'all'}_{mode.value}.py"],
            pending_items=[],
            report=self.report,
        )


class FakeValidator:
    """Returns scripted outcomes per scope; the last one repeats."""

    def __init__(self, default=None, scripts=None):
        self.default = default or green()
        self.scripts = {scope: list(outcomes) for scope, outcomes in (scripts or {}).items()}
        self.calls = []

    def run(self, scope=None):
        self.calls.append(scope)
        script = self.scripts.get(scope)
        if not script:
            return self.default
        outcome = script[0] if len(script) == 1 else script.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeFixer:
    def __init__(self):
        self.calls = []

    def fix(self, failure_class, outcome, feature_id=None):
        self.calls.append((failure_class, feature_id))


@pytest.fixture
def project_root(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def config(project_root) -> ProjectConfig:
    return ProjectConfig(root=project_root)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def validator():
    return FakeValidator()


@pytest.fixture
def collaborators(config, generator, validator) -> Collaborators:
    runner = CommandRunner(config.root, config.collaborator_timeout)
    return Collaborators(
        specs=SpecDocuments(config, CollaboratorsConfig(), runner),
        generator=generator,
        validator=validator,
        reports=FileReportWriter(config.reports_path),
    )


@pytest.fixture
def workspace(project_root, config, collaborators) -> Workspace:
    return Workspace(project_root, config=config, collaborators=collaborators)


@pytest.fixture
def run(workspace):
    """Dispatch helper: run("steps", feature="x", force=True)."""
    def _run(mode, **options):
        return dispatch(mode, ModeOptions(**options), workspace)
    return _run


@pytest.fixture
def confirmed_feature(run):
    """A feature with a confirmed specification."""
    run("requirements", feature="user-auth")
    run("requirements", feature="user-auth", confirm=True)
    return "user-auth"


@pytest.fixture
def ready_features(run):
    """Three features with steps defined, ready for implement."""
    ids = ["alpha", "beta", "gamma"]
    for fid in ids:
        run("requirements", feature=fid)
    run("requirements", confirm=True, all=True)
    run("steps", all=True)
    return ids
