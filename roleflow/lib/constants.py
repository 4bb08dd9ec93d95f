"""Shared constants for roleflow."""

import re

# Feature ID validation
FEATURE_ID_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_-]*$')
MAX_FEATURE_ID_LEN = 64

# Workspace layout, relative to the project root
STATE_DIR = ".roleflow"
STATE_FILE = "state.json"
PROJECT_ENV = "project.env"
COLLABORATORS_FILE = "collaborators.yaml"

STATE_VERSION = 1

# History outcomes
OUTCOME_OK = "ok"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"
