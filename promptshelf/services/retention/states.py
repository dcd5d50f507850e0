# promptshelf/services/retention/states.py
"""
Record lifecycle state machine.

    ACTIVE ──tombstone──> TOMBSTONED ──purge──> PURGED
       ^                      │
       └──────restore─────────┘

PURGED is terminal. A record's state is derived from its row: no row means
PURGED, a null tombstoned_at means ACTIVE.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from promptshelf.services.retention.errors import GracePeriodNotElapsed, InvalidTransition


class LifecycleState(str, Enum):
    ACTIVE = "active"
    TOMBSTONED = "tombstoned"
    PURGED = "purged"


ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.ACTIVE: frozenset({LifecycleState.TOMBSTONED}),
    LifecycleState.TOMBSTONED: frozenset({LifecycleState.ACTIVE, LifecycleState.PURGED}),
    LifecycleState.PURGED: frozenset(),
}


def state_of(record: Any | None) -> LifecycleState:
    """Derive the lifecycle state of a loaded row (None = not in store)."""
    if record is None:
        return LifecycleState.PURGED
    if record.tombstoned_at is None:
        return LifecycleState.ACTIVE
    return LifecycleState.TOMBSTONED


def check_transition(
    current: LifecycleState,
    target: LifecycleState,
    entity_type: Any = None,
    record_id: int | None = None,
) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move from {current.value} to {target.value}",
            entity_type=entity_type,
            record_id=record_id,
        )


def grace_elapsed(tombstoned_at: datetime | None, grace_period: timedelta, now: datetime) -> bool:
    """True when a tombstone is at least `grace_period` old."""
    if tombstoned_at is None:
        return False
    return now - tombstoned_at >= grace_period


def check_purgeable(
    record: Any,
    grace_period: timedelta,
    now: datetime,
    entity_type: Any = None,
    record_id: int | None = None,
) -> None:
    """Guard for TOMBSTONED -> PURGED: the row must be tombstoned and past its grace period."""
    check_transition(state_of(record), LifecycleState.PURGED, entity_type, record_id)
    if not grace_elapsed(record.tombstoned_at, grace_period, now):
        remaining = grace_period - (now - record.tombstoned_at)
        raise GracePeriodNotElapsed(
            f"Grace period not elapsed ({remaining} remaining)",
            entity_type=entity_type,
            record_id=record_id,
        )
