"""Role/artifact authorization.

Each mode may only touch its own artifact classes, and only in the ways
listed in ROLE_ARTIFACTS. On top of the matrix two rules apply:

- The specification body can be created while a feature is new or still a
  draft. Once the feature is past draft the body is locked; only an explicit
  human-confirmed override may modify it. Metadata annotations appended to
  the document are exempt.
- Downstream artifacts wait for their prerequisites: step definitions need a
  confirmed specification, business logic needs defined steps.

authorize() is a pure function over these tables. Controllers call require()
before handing any write to a collaborator, so a denied mutation never
starts.
"""

import logging
from enum import Enum

from roleflow.lib.errors import ConstraintViolation
from roleflow.store.models import FeatureStatus, Mode, lifecycle_rank

logger = logging.getLogger(__name__)


class ArtifactClass(Enum):
    SPECIFICATION = "specification"
    SPECIFICATION_METADATA = "specification_metadata"
    STEP_DEFINITION = "step_definition"
    PAGE_OBJECT = "page_object"
    HELPER = "helper"
    BUSINESS_LOGIC = "business_logic"


class Mutation(Enum):
    CREATE = "create"
    MODIFY = "modify"
    RESTRUCTURE = "restructure"  # change organization, never behavior


class Decision(Enum):
    ALLOW = "allow"
    DENY = "deny"


ROLE_ARTIFACTS: dict[Mode, dict[ArtifactClass, frozenset[Mutation]]] = {
    Mode.REQUIREMENTS: {
        ArtifactClass.SPECIFICATION: frozenset({Mutation.CREATE}),
        ArtifactClass.SPECIFICATION_METADATA: frozenset({Mutation.MODIFY}),
    },
    Mode.STEPS: {
        ArtifactClass.STEP_DEFINITION: frozenset({Mutation.CREATE, Mutation.MODIFY}),
        ArtifactClass.PAGE_OBJECT: frozenset({Mutation.CREATE, Mutation.MODIFY}),
        ArtifactClass.HELPER: frozenset({Mutation.CREATE, Mutation.MODIFY}),
        ArtifactClass.SPECIFICATION_METADATA: frozenset({Mutation.MODIFY}),
    },
    Mode.IMPLEMENT: {
        ArtifactClass.BUSINESS_LOGIC: frozenset({Mutation.CREATE, Mutation.MODIFY}),
        ArtifactClass.SPECIFICATION_METADATA: frozenset({Mutation.MODIFY}),
    },
    Mode.REFACTOR: {
        ArtifactClass.BUSINESS_LOGIC: frozenset({Mutation.RESTRUCTURE}),
    },
    Mode.STEP_OPTIMIZE: {
        ArtifactClass.STEP_DEFINITION: frozenset({Mutation.RESTRUCTURE}),
    },
    Mode.IDLE: {},
}

# Artifact classes a mode generates per feature, in generation order
MODE_OUTPUTS: dict[Mode, list[ArtifactClass]] = {
    Mode.REQUIREMENTS: [ArtifactClass.SPECIFICATION],
    Mode.STEPS: [ArtifactClass.STEP_DEFINITION, ArtifactClass.PAGE_OBJECT, ArtifactClass.HELPER],
    Mode.IMPLEMENT: [ArtifactClass.BUSINESS_LOGIC],
    Mode.REFACTOR: [ArtifactClass.BUSINESS_LOGIC],
    Mode.STEP_OPTIMIZE: [ArtifactClass.STEP_DEFINITION],
}

# Lowest lifecycle status a feature must have reached before a mode may
# write its artifacts for it
PREREQUISITE_STATUS: dict[Mode, FeatureStatus] = {
    Mode.STEPS: FeatureStatus.CONFIRMED,
    Mode.IMPLEMENT: FeatureStatus.STEPS_DEFINED,
}


def explain(
    mode: Mode,
    artifact: ArtifactClass,
    mutation: Mutation,
    feature_status: FeatureStatus | None = None,
    override: bool = False,
) -> tuple[Decision, str]:
    """Decide and say why. Pure: depends only on the arguments."""
    if artifact == ArtifactClass.SPECIFICATION and mutation == Mutation.MODIFY:
        if mode == Mode.REQUIREMENTS and override:
            return Decision.ALLOW, "specification amended under explicit override"
        return Decision.DENY, "specification body may only change with an explicit override"

    allowed = ROLE_ARTIFACTS.get(mode, {}).get(artifact, frozenset())
    if mutation not in allowed:
        return Decision.DENY, f"{mode.value} mode may not {mutation.value} {artifact.value} artifacts"

    if artifact == ArtifactClass.SPECIFICATION and feature_status not in (None, FeatureStatus.DRAFT):
        return Decision.DENY, f"specification is locked once the feature is {feature_status.value}"

    prerequisite = PREREQUISITE_STATUS.get(mode)
    if prerequisite is not None:
        if feature_status is None:
            return Decision.DENY, "feature has no specification yet"
        if lifecycle_rank(feature_status) < lifecycle_rank(prerequisite):
            return Decision.DENY, (
                f"{mode.value} needs the feature to be at least {prerequisite.value}, "
                f"it is {feature_status.value}"
            )

    return Decision.ALLOW, "authorized"


def authorize(
    mode: Mode,
    artifact: ArtifactClass,
    mutation: Mutation,
    feature_status: FeatureStatus | None = None,
    override: bool = False,
) -> Decision:
    """Allow or deny one artifact mutation for the given mode."""
    decision, _ = explain(mode, artifact, mutation, feature_status, override)
    return decision


def require(
    mode: Mode,
    artifact: ArtifactClass,
    mutation: Mutation,
    feature_status: FeatureStatus | None = None,
    override: bool = False,
    feature_id: str | None = None,
) -> None:
    """Raise ConstraintViolation unless the mutation is authorized."""
    decision, why = explain(mode, artifact, mutation, feature_status, override)
    target = f" for {feature_id}" if feature_id else ""
    if decision == Decision.DENY:
        logger.warning(f"[CONSTRAINT] denied {mode.value}: {mutation.value} {artifact.value}{target} ({why})")
        raise ConstraintViolation(f"{mutation.value} {artifact.value}{target} denied: {why}")
    logger.debug(f"[CONSTRAINT] allowed {mode.value}: {mutation.value} {artifact.value}{target}")


def require_outputs(
    mode: Mode,
    mutation: Mutation,
    feature_status: FeatureStatus | None = None,
    feature_id: str | None = None,
) -> None:
    """Authorize every artifact class the mode generates, before generating any."""
    for artifact in MODE_OUTPUTS[mode]:
        require(mode, artifact, mutation, feature_status, feature_id=feature_id)
