# promptshelf/services/retention/stats.py
"""
Read-only retention reporting for admin tooling.

Handles:
- Per-type totals (active, tombstoned, eligible for purge)
- Preview of what the next sweep would tombstone and purge
- Listing tombstoned records
- A short-lived cache for the stats, cleared after every mutation
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from cachetools import TTLCache

from promptshelf.models import utcnow
from promptshelf.services.retention.archive_service import serialize_record
from promptshelf.services.retention.graph import DEFAULT_GRAPH, EntityGraph, EntityType
from promptshelf.services.retention.policy_service import RetentionPolicy
from promptshelf.services.retention.states import LifecycleState
from promptshelf.services.retention.store import RecordFilter, RecordStore

logger = logging.getLogger(__name__)


def get_retention_stats(
    store: RecordStore,
    policies: dict[EntityType, RetentionPolicy],
    now: datetime | None = None,
    graph: EntityGraph = DEFAULT_GRAPH,
) -> dict[EntityType, dict[str, int]]:
    """
    Counts per entity type that has a policy.

    Returns:
        {EntityType: {"total", "active", "tombstoned", "eligible_for_purge"}}
    """
    now = now or utcnow()
    stats: dict[EntityType, dict[str, int]] = {}
    with store.transaction() as uow:
        for entity_type in graph.types:
            policy = policies.get(entity_type)
            if policy is None:
                continue
            total = uow.count(entity_type)
            tombstoned = uow.count(entity_type, RecordFilter(state=LifecycleState.TOMBSTONED))
            eligible = uow.count(
                entity_type,
                RecordFilter(
                    state=LifecycleState.TOMBSTONED,
                    tombstoned_before=now - policy.grace_period,
                ),
            )
            stats[entity_type] = {
                "total": total,
                "active": total - tombstoned,
                "tombstoned": tombstoned,
                "eligible_for_purge": eligible,
            }
    return stats


def get_purge_preview(
    store: RecordStore,
    policies: dict[EntityType, RetentionPolicy],
    now: datetime | None = None,
    graph: EntityGraph = DEFAULT_GRAPH,
) -> dict[EntityType, dict[str, int]]:
    """
    What the next sweep would do per type, without doing it.

    pending_tombstone counts Active records past max_age; pending_purge
    counts Tombstoned records past the grace period. Neither is capped by
    batch_size.
    """
    now = now or utcnow()
    preview: dict[EntityType, dict[str, int]] = {}
    with store.transaction() as uow:
        for entity_type in graph.types:
            policy = policies.get(entity_type)
            if policy is None:
                continue
            preview[entity_type] = {
                "pending_tombstone": uow.count(
                    entity_type,
                    RecordFilter(state=LifecycleState.ACTIVE, created_before=now - policy.max_age),
                ),
                "pending_purge": uow.count(
                    entity_type,
                    RecordFilter(state=LifecycleState.TOMBSTONED, tombstoned_before=now - policy.grace_period),
                ),
                "batch_size": policy.batch_size,
            }
    return preview


def list_tombstoned(
    store: RecordStore,
    entity_type: EntityType,
    older_than: timedelta | None = None,
    limit: int = 100,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Tombstoned records of one type, oldest tombstone first."""
    now = now or utcnow()
    flt = RecordFilter(
        state=LifecycleState.TOMBSTONED,
        tombstoned_before=(now - older_than) if older_than is not None else None,
        limit=limit,
        order_by="tombstoned_at",
    )
    with store.transaction() as uow:
        return [serialize_record(record) for record in uow.find_many(entity_type, flt)]


class RetentionStatsCache:
    """
    TTL cache in front of get_retention_stats.

    Calls with an explicit `now` bypass the cache.
    """

    def __init__(self, ttl: int = 60, maxsize: int = 16):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(
        self,
        store: RecordStore,
        policies: dict[EntityType, RetentionPolicy],
        now: datetime | None = None,
        graph: EntityGraph = DEFAULT_GRAPH,
    ) -> dict[EntityType, dict[str, int]]:
        if now is not None:
            return get_retention_stats(store, policies, now, graph)

        cache_key = (id(store), tuple(sorted((t.value, p) for t, p in policies.items())))
        if cache_key in self._cache:
            logger.debug("Retention stats cache hit")
            return self._cache[cache_key]

        stats = get_retention_stats(store, policies, graph=graph)
        self._cache[cache_key] = stats
        return stats

    def invalidate(self) -> None:
        self._cache.clear()
        logger.debug("Retention stats cache invalidated")
