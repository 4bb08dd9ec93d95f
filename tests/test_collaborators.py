"""Tests for roleflow.runner.collaborators against real subprocesses."""

import json
import sys
import time
from pathlib import Path

import pytest

from roleflow.lib.collaborators_config import CollaboratorsConfig
from roleflow.lib.config import ProjectConfig
from roleflow.lib.errors import CollaboratorError, ConfigError, MissingArtifact, Timeout
from roleflow.lib.test_parser import ValidationOutcome
from roleflow.runner.collaborators import (
    Collaborators,
    CommandClassifier,
    CommandFixer,
    CommandGenerator,
    CommandRunner,
    CommandValidator,
    FileReportWriter,
    GenerationResult,
    SpecDocuments,
)
from roleflow.runner.retry import FailureClass, HeuristicClassifier
from roleflow.store.models import Mode

from conftest import red


def script(tmp_path: Path, name: str, body: str) -> str:
    """Write a python script and return the command prefix that runs it."""
    path = tmp_path / f"{name}.py"
    path.write_text(body)
    return f"{sys.executable} {path}"


@pytest.fixture
def runner(tmp_path):
    return CommandRunner(tmp_path, timeout=30)


class TestCommandRunner:

    def test_runs_in_root(self, tmp_path, runner):
        cmd = script(tmp_path, "cwd", "import os; print(os.getcwd())").split()
        result = runner.run("probe", cmd)
        assert result.returncode == 0
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    def test_missing_binary_is_collaborator_error(self, runner):
        with pytest.raises(CollaboratorError, match="could not run"):
            runner.run("probe", ["/nonexistent/tool-xyz"])

    def test_call_timeout_is_collaborator_error(self, tmp_path):
        runner = CommandRunner(tmp_path, timeout=0.5)
        cmd = script(tmp_path, "slow", "import time; time.sleep(5)").split()
        with pytest.raises(CollaboratorError, match="timed out"):
            runner.run("slow", cmd)

    def test_passed_deadline_is_mode_timeout(self, tmp_path):
        runner = CommandRunner(tmp_path, timeout=30, deadline=time.monotonic() - 1)
        with pytest.raises(Timeout):
            runner.run("probe", [sys.executable, "-c", "pass"])

    def test_deadline_caps_timeout(self, tmp_path):
        runner = CommandRunner(tmp_path, timeout=30, deadline=time.monotonic() + 5)
        assert runner.effective_timeout() <= 5


class TestSpecDocuments:

    def make(self, tmp_path, commands=None):
        config = ProjectConfig(root=tmp_path)
        return SpecDocuments(config, CollaboratorsConfig(commands=commands or {}),
                             CommandRunner(tmp_path, timeout=30))

    def test_create_stub(self, tmp_path):
        specs = self.make(tmp_path)
        path = specs.create("login")
        assert path == tmp_path / "features" / "login.feature"
        assert "specification for login" in path.read_text()
        assert specs.exists("login")

    def test_create_keeps_existing_document(self, tmp_path):
        specs = self.make(tmp_path)
        specs.path("login").parent.mkdir(parents=True)
        specs.path("login").write_text("Feature: Login\n")
        specs.create("login")
        assert specs.read("login") == "Feature: Login\n"

    def test_create_through_command(self, tmp_path):
        prefix = script(tmp_path, "new_spec", (
            "import sys, pathlib\n"
            "p = pathlib.Path(sys.argv[2]); p.parent.mkdir(parents=True, exist_ok=True)\n"
            "p.write_text('Feature: ' + sys.argv[1] + '\\n')\n"
        ))
        specs = self.make(tmp_path, {"spec_create": f"{prefix} {{feature}} {{path}}"})
        specs.create("checkout")
        assert specs.read("checkout") == "Feature: checkout\n"

    def test_command_that_writes_nothing(self, tmp_path):
        prefix = script(tmp_path, "noop", "pass\n")
        specs = self.make(tmp_path, {"spec_create": f"{prefix} {{feature}}"})
        with pytest.raises(CollaboratorError, match="did not create"):
            specs.create("checkout")

    def test_amend_needs_command(self, tmp_path):
        specs = self.make(tmp_path)
        specs.create("login")
        with pytest.raises(CollaboratorError, match="spec_create"):
            specs.amend("login")

    def test_amend_missing_document(self, tmp_path):
        with pytest.raises(MissingArtifact):
            self.make(tmp_path).amend("login")

    def test_read_missing_document(self, tmp_path):
        with pytest.raises(MissingArtifact, match="login"):
            self.make(tmp_path).read("login")

    def test_annotate_appends_only(self, tmp_path):
        specs = self.make(tmp_path)
        specs.path("login").parent.mkdir(parents=True)
        specs.path("login").write_text("Feature: Login\n  Scenario: ok")
        specs.annotate("login", "confirmed")
        assert specs.read("login") == "Feature: Login\n  Scenario: ok\n# roleflow: confirmed\n"


class TestCommandGenerator:

    def test_sends_request_and_parses_result(self, tmp_path, runner):
        prefix = script(tmp_path, "gen", (
            "import json, sys\n"
            "req = json.load(sys.stdin)\n"
            "print('generating...')\n"
            "print(json.dumps({'files_written': ['steps/' + req['feature'] + '.py'],"
            " 'pending_items': req['existing_artifacts']}))\n"
        ))
        generator = CommandGenerator(CollaboratorsConfig(commands={"steps": f"{prefix} {{feature}}"}), runner)
        result = generator.generate(Mode.STEPS, "login", ["features/login.feature"])
        assert isinstance(result, GenerationResult)
        assert result.files_written == ["steps/login.py"]
        assert result.pending_items == ["features/login.feature"]

    def test_nonzero_exit(self, tmp_path, runner):
        prefix = script(tmp_path, "bad", "import sys; sys.stderr.write('no model\\n'); sys.exit(3)\n")
        generator = CommandGenerator(CollaboratorsConfig(commands={"implement": f"{prefix} {{feature}}"}), runner)
        with pytest.raises(CollaboratorError, match="no model"):
            generator.generate(Mode.IMPLEMENT, "login", [])

    def test_garbage_stdout(self, tmp_path, runner):
        prefix = script(tmp_path, "garbage", "print('not json')\n")
        generator = CommandGenerator(CollaboratorsConfig(commands={"refactor": prefix}), runner)
        with pytest.raises(CollaboratorError, match="expected JSON"):
            generator.generate(Mode.REFACTOR, None, [], {"scope": "src"})

    def test_unconfigured(self, runner):
        with pytest.raises(ConfigError):
            CommandGenerator(CollaboratorsConfig(), runner).generate(Mode.STEPS, "login", [])


class TestCommandValidator:

    def test_parses_json_output(self, tmp_path, runner):
        prefix = script(tmp_path, "val", "print('{\"passed\": 2, \"failed\": 0, \"pending\": 1}')\n")
        outcome = CommandValidator(CollaboratorsConfig(commands={"validate": f"{prefix} {{scope}}"}), runner).run()
        assert (outcome.passed, outcome.failed, outcome.pending) == (2, 0, 1)

    def test_scope_is_passed(self, tmp_path, runner):
        prefix = script(tmp_path, "val", (
            "import json, sys\n"
            "print(json.dumps({'passed': 1, 'failed': 0, 'failure_details': sys.argv[1:]}))\n"
        ))
        validator = CommandValidator(CollaboratorsConfig(commands={"validate": f"{prefix} {{scope}}"}), runner)
        outcome = validator.run("login")
        assert outcome.failures[0].message == "login"

    def test_timeout_is_failed_outcome(self, tmp_path):
        prefix = script(tmp_path, "hang", "import time; time.sleep(5)\n")
        validator = CommandValidator(CollaboratorsConfig(commands={"validate": prefix}),
                                     CommandRunner(tmp_path, timeout=0.5))
        outcome = validator.run()
        assert outcome.failed == 1
        assert HeuristicClassifier().classify(outcome) == FailureClass.TIMEOUT


class TestClassifierAndFixer:

    def test_classifier_uses_command_answer(self, tmp_path, runner):
        prefix = script(tmp_path, "cls", "print('{\"class\": \"missing_dependency\"}')\n")
        classifier = CommandClassifier(CollaboratorsConfig(commands={"classify": prefix}), runner)
        assert classifier.classify(red()) == FailureClass.MISSING_DEPENDENCY

    def test_classifier_falls_back_on_unknown_answer(self, tmp_path, runner, caplog):
        prefix = script(tmp_path, "cls", "print('{\"class\": \"cosmic_rays\"}')\n")
        classifier = CommandClassifier(CollaboratorsConfig(commands={"classify": prefix}), runner)
        assert classifier.classify(red()) == FailureClass.ASSERTION
        assert "cosmic_rays" in caplog.text

    def test_fixer_passes_kind(self, tmp_path, runner):
        marker = tmp_path / "fixed.txt"
        prefix = script(tmp_path, "fix", f"import sys, pathlib; pathlib.Path({str(marker)!r}).write_text(sys.argv[1])\n")
        fixer = CommandFixer(CollaboratorsConfig(commands={"autofix": f"{prefix} {{kind}}"}), runner)
        fixer.fix(FailureClass.ASSERTION, red(), "login")
        assert marker.read_text() == "assertion"

    def test_fixer_sends_failure_report(self, tmp_path, runner):
        received = tmp_path / "request.json"
        prefix = script(tmp_path, "fix", f"import sys, pathlib; pathlib.Path({str(received)!r}).write_text(sys.stdin.read())\n")
        fixer = CommandFixer(CollaboratorsConfig(commands={"autofix": prefix}), runner)
        fixer.fix(FailureClass.ASSERTION, red("AssertionError: cart total"), "login")
        request = json.loads(received.read_text())
        assert request["feature"] == "login"
        assert "cart total" in request["report"]
        assert request["report"].startswith("**1 passed, 1 failed")

    def test_fixer_failure_raises(self, tmp_path, runner):
        prefix = script(tmp_path, "fix", "import sys; sys.exit(1)\n")
        fixer = CommandFixer(CollaboratorsConfig(commands={"autofix": prefix}), runner)
        with pytest.raises(CollaboratorError):
            fixer.fix(FailureClass.TIMEOUT, ValidationOutcome(failed=1))


class TestFileReportWriter:

    def test_writes_unique_files(self, tmp_path):
        writer = FileReportWriter(tmp_path / "reports")
        first = writer.write("implement", {"outcome": "ok"})
        second = writer.write("implement", {"outcome": "partial"})
        assert first != second
        assert json.loads(first.read_text()) == {"outcome": "ok"}
        assert json.loads(second.read_text()) == {"outcome": "partial"}


class TestCollaboratorsFromConfig:

    def test_optional_collaborators(self, tmp_path):
        config = ProjectConfig(root=tmp_path)
        plain = Collaborators.from_config(config, CollaboratorsConfig())
        assert isinstance(plain.classifier, HeuristicClassifier)
        assert plain.fixer is None
        assert plain.runner is plain.generator.runner

        full = Collaborators.from_config(config, CollaboratorsConfig(commands={
            "classify": "./cls", "autofix": "./fix",
        }))
        assert isinstance(full.classifier, CommandClassifier)
        assert isinstance(full.fixer, CommandFixer)

    def test_loads_yaml_when_not_given(self, tmp_path):
        (tmp_path / ".roleflow").mkdir()
        (tmp_path / ".roleflow" / "collaborators.yaml").write_text("commands:\n  autofix: ./fix {kind}\n")
        collaborators = Collaborators.from_config(ProjectConfig(root=tmp_path))
        assert isinstance(collaborators.fixer, CommandFixer)
