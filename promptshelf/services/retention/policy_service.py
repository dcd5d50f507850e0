# promptshelf/services/retention/policy_service.py
"""
Retention policy definitions.

Handles:
- Per-entity-type policy model and its bounds
- Default policies and merging of configured overrides
- Resolving the policy that governs a type without one of its own
"""

import logging
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from promptshelf.services.retention.graph import DEFAULT_GRAPH, EntityGraph, EntityType

logger = logging.getLogger(__name__)


class RetentionPolicy(BaseModel):
    """How long records of one entity type live, and how they are removed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_age_days: int = Field(..., ge=1, description="Active records older than this are tombstoned")
    grace_period_days: int = Field(..., ge=0, description="Tombstoned records older than this are purged")
    enable_archiving: bool = Field(True, description="Archive rows before they are deleted")
    batch_size: int = Field(100, ge=1, le=10000, description="Max roots per pass and rows per archive batch")

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.grace_period_days)


# Default policy configurations
DEFAULT_POLICIES: dict[EntityType, RetentionPolicy] = {
    EntityType.EXPERIENCES: RetentionPolicy(
        max_age_days=730,
        grace_period_days=30,
        enable_archiving=True,
        batch_size=100,
    ),
    EntityType.USERS: RetentionPolicy(
        max_age_days=1095,
        grace_period_days=90,
        enable_archiving=True,
        batch_size=50,
    ),
    EntityType.COMMENTS: RetentionPolicy(
        max_age_days=730,
        grace_period_days=30,
        enable_archiving=False,
        batch_size=200,
    ),
    EntityType.PROMPTS: RetentionPolicy(
        max_age_days=730,
        grace_period_days=30,
        enable_archiving=False,
        batch_size=200,
    ),
}


def get_policies() -> dict[EntityType, RetentionPolicy]:
    """Default policies (a copy; callers may not mutate the defaults)."""
    return dict(DEFAULT_POLICIES)


def resolve_policies(
    overrides: dict[str, dict[str, Any]] | None = None,
    base: dict[EntityType, RetentionPolicy] | None = None,
) -> dict[EntityType, RetentionPolicy]:
    """
    Merge partial per-type overrides onto the base policies.

    Args:
        overrides: {"experiences": {"grace_period_days": 14}, ...}
        base: Policies to start from (defaults when omitted)

    Returns:
        New policy map; every merged policy is re-validated.

    Raises:
        ValueError: Unknown entity type, unknown field, or out-of-range value
    """
    policies = dict(base if base is not None else DEFAULT_POLICIES)
    for type_name, fields in (overrides or {}).items():
        try:
            entity_type = EntityType(type_name)
        except ValueError:
            raise ValueError(f"Unknown entity type in policy overrides: '{type_name}'") from None
        if not isinstance(fields, dict):
            raise ValueError(f"Policy override for '{type_name}' must be an object")

        current = policies.get(entity_type)
        merged = {**(current.model_dump() if current else {}), **fields}
        policies[entity_type] = RetentionPolicy(**merged)
        logger.info(f"Applied retention policy override for {type_name}: {fields}")
    return policies


def policy_for(
    entity_type: EntityType,
    policies: dict[EntityType, RetentionPolicy],
    graph: EntityGraph = DEFAULT_GRAPH,
) -> RetentionPolicy | None:
    """
    Policy governing `entity_type`.

    Types without their own policy (reactions, prompt ratings) inherit the
    nearest owning type's policy. Returns None when no ancestor has one.
    """
    if entity_type in policies:
        return policies[entity_type]
    for edge in graph.ancestors(entity_type):
        if edge.parent in policies:
            return policies[edge.parent]
    return None


def describe_policies(policies: dict[EntityType, RetentionPolicy]) -> dict[str, dict[str, Any]]:
    """Policies as plain dicts keyed by type name, for status output."""
    return {entity_type.value: policy.model_dump() for entity_type, policy in policies.items()}
