"""
Collaborator command configuration.

Loads .roleflow/collaborators.yaml to determine which CLI command backs each
external collaborator. Nothing is configured by default: a mode that needs an
unconfigured collaborator fails with a ConfigError naming the missing key.

COMMAND TEMPLATES
=================

Templates support {variable} substitution. The caller provides a context dict:

- {feature}: Feature identifier (generators, spec_create, autofix)
- {path}:    Specification document path (spec_create)
- {scope}:   Validation or refactor scope ("" when unscoped)
- {mode}:    Active mode name
- {kind}:    Failure class (autofix)

Example collaborators.yaml:

    commands:
      spec_create: ./tools/new-feature {feature}
      steps: ./tools/gen-steps {feature}
      implement: ./tools/gen-impl {feature}
      refactor: ./tools/refactor --scope {scope}
      step_optimize: ./tools/optimize-steps --scope {scope}
      validate: pytest -q {scope}
      classify: ./tools/classify
      autofix: ./tools/autofix {kind}

Generators, classify and autofix print a JSON object on stdout. validate may
print JSON ({"passed": N, "failed": N, "pending": N}) or plain test-runner
output, which is parsed by roleflow.lib.test_parser.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from roleflow.lib.constants import COLLABORATORS_FILE, STATE_DIR
from roleflow.lib.errors import ConfigError

logger = logging.getLogger(__name__)


KNOWN_COLLABORATORS = (
    "spec_create",
    "steps",
    "implement",
    "refactor",
    "step_optimize",
    "validate",
    "classify",
    "autofix",
)

# Collaborators whose templates must reference these variables
REQUIRED_VARIABLES = {
    "spec_create": ["feature"],
    "steps": ["feature"],
    "implement": ["feature"],
}


@dataclass
class CollaboratorsConfig:
    """Collaborator commands from collaborators.yaml."""
    commands: dict[str, str] = field(default_factory=dict)

    def has(self, name: str) -> bool:
        return bool(self.commands.get(name))


def load_collaborators_config(root: Path | None) -> CollaboratorsConfig:
    """Load collaborators.yaml and return CollaboratorsConfig.

    If root is None or the file doesn't exist, returns an empty config.

    Raises:
        ConfigError: if the file is not valid YAML or has the wrong shape
    """
    if root is None:
        return CollaboratorsConfig()

    config_path = Path(root) / STATE_DIR / COLLABORATORS_FILE
    if not config_path.exists():
        return CollaboratorsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from None

    if not data:
        return CollaboratorsConfig()
    commands = data.get("commands") if isinstance(data, dict) else None
    if not isinstance(commands, dict):
        raise ConfigError(f"{config_path}: expected a 'commands' mapping")

    for name in commands:
        if name not in KNOWN_COLLABORATORS:
            logger.warning(f"Unknown collaborator '{name}' in {config_path}, ignoring")

    return CollaboratorsConfig(commands={
        name: str(cmd) for name, cmd in commands.items()
        if name in KNOWN_COLLABORATORS and cmd
    })


def get_collaborator_command(
    config: CollaboratorsConfig,
    name: str,
    context: dict[str, str] | None = None,
) -> list[str]:
    """Build the argv list for a collaborator with variable substitution.

    Substitution happens after shlex splitting, so values with spaces or
    quotes stay one argument. Arguments that end up empty are dropped, which
    lets `pytest -q {scope}` run unscoped.

    Raises:
        ConfigError: if the collaborator is not configured or the template
            lacks a required variable.

    Example:
        >>> config = CollaboratorsConfig(commands={"steps": "gen --feature {feature}"})
        >>> get_collaborator_command(config, "steps", {"feature": "user-auth"})
        ['gen', '--feature', 'user-auth']
    """
    template = config.commands.get(name)
    if not template:
        raise ConfigError(
            f"No '{name}' collaborator configured. "
            f"Add it under 'commands:' in {STATE_DIR}/{COLLABORATORS_FILE}"
        )

    for var in REQUIRED_VARIABLES.get(name, []):
        if f"{{{var}}}" not in template:
            raise ConfigError(f"Collaborator '{name}' template must reference {{{var}}}: {template}")

    context = context or {}
    cmd = []
    for part in shlex.split(template):
        for key, value in context.items():
            part = part.replace(f"{{{key}}}", value)
        remaining = re.findall(r'\{(\w+)\}', part)
        if remaining:
            logger.error(f"Collaborator '{name}' has unsubstituted variables: {remaining}")
        if part:
            cmd.append(part)
    return cmd
