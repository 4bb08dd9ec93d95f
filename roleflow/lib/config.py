"""
Configuration loaders for roleflow.

Loads workspace settings from .roleflow/project.env. Every setting has a
default, so a workspace without the file still works.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from roleflow.lib import envparse
from roleflow.lib.constants import PROJECT_ENV, STATE_DIR, STATE_FILE
from roleflow.lib.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MODE_TIMEOUT = 3600
DEFAULT_COLLABORATOR_TIMEOUT = 600
DEFAULT_LOCK_TIMEOUT = 30
DEFAULT_SPEC_PATH_TEMPLATE = "features/{feature}.feature"
DEFAULT_REPORTS_DIR = f"{STATE_DIR}/reports"

KNOWN_KEYS = frozenset({
    "MAX_ATTEMPTS",
    "MODE_TIMEOUT",
    "COLLABORATOR_TIMEOUT",
    "LOCK_TIMEOUT",
    "SPEC_PATH_TEMPLATE",
    "ANNOTATE_SPECS",
    "REPORTS_DIR",
})


@dataclass
class ProjectConfig:
    """Workspace-level configuration from project.env"""
    root: Path
    max_attempts: int = DEFAULT_MAX_ATTEMPTS  # validation attempts per implement feature
    mode_timeout: int = DEFAULT_MODE_TIMEOUT  # seconds per mode invocation
    collaborator_timeout: int = DEFAULT_COLLABORATOR_TIMEOUT  # seconds per collaborator call
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT  # seconds to wait for the state lock
    spec_path_template: str = DEFAULT_SPEC_PATH_TEMPLATE  # relative to root, {feature} placeholder
    annotate_specs: bool = False  # append status annotations to specification documents
    reports_dir: str = DEFAULT_REPORTS_DIR

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILE

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"

    @property
    def reports_path(self) -> Path:
        return self.root / self.reports_dir

    def spec_path(self, feature_id: str) -> Path:
        return self.root / self.spec_path_template.replace("{feature}", feature_id)


def load_project_config(root: Path) -> ProjectConfig:
    """Load project.env under root and return ProjectConfig.

    Raises:
        ConfigError: if the file exists but is malformed
    """
    root = Path(root)
    env_path = root / STATE_DIR / PROJECT_ENV
    if not env_path.exists():
        logger.debug(f"No {env_path}, using defaults")
        return ProjectConfig(root=root)

    try:
        env = envparse.load_env(env_path)
        unknown = sorted(set(env) - KNOWN_KEYS)
        if unknown:
            logger.warning(f"Ignoring unknown settings in {env_path}: {', '.join(unknown)}")

        template = env.get("SPEC_PATH_TEMPLATE", DEFAULT_SPEC_PATH_TEMPLATE)
        if "{feature}" not in template:
            raise ValueError("SPEC_PATH_TEMPLATE must contain {feature}")

        return ProjectConfig(
            root=root,
            max_attempts=envparse.env_int(env, "MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            mode_timeout=envparse.env_int(env, "MODE_TIMEOUT", DEFAULT_MODE_TIMEOUT),
            collaborator_timeout=envparse.env_int(env, "COLLABORATOR_TIMEOUT", DEFAULT_COLLABORATOR_TIMEOUT),
            lock_timeout=envparse.env_int(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
            spec_path_template=template,
            annotate_specs=envparse.env_bool(env, "ANNOTATE_SPECS", False),
            reports_dir=env.get("REPORTS_DIR", DEFAULT_REPORTS_DIR),
        )
    except ValueError as e:
        raise ConfigError(f"{env_path}: {e}") from None
