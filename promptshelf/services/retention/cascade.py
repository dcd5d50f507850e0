# promptshelf/services/retention/cascade.py
"""
Cascade engine for lifecycle transitions across the ownership graph.

Handles:
- Tombstone a root and every Active descendant with one timestamp
- Restore a root and the descendants tombstoned by the same cascade
- Purge a tombstoned root and its subtree, leaves first, archiving first
- Moderation takedown (tombstone + immediate reaction removal)

Every operation runs in exactly one store transaction. Any error rolls the
whole operation back; no partial cascade is ever committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from promptshelf.models import LifecycleEventType, utcnow
from promptshelf.services.retention.archive_service import ArchiveSink, serialize_record
from promptshelf.services.retention.errors import (
    AncestorDeleted,
    ArchiveFailure,
    ConstraintViolation,
    RecordNotFound,
)
from promptshelf.services.retention.graph import DEFAULT_GRAPH, EntityGraph, EntityType
from promptshelf.services.retention.policy_service import RetentionPolicy, get_policies, policy_for
from promptshelf.services.retention.states import (
    LifecycleState,
    check_purgeable,
    check_transition,
    state_of,
)
from promptshelf.services.retention.store import RecordFilter, RecordStore, UnitOfWork

logger = logging.getLogger(__name__)

# Rows per delete statement when no policy governs the type
DEFAULT_BATCH_SIZE = 100

# Never archived; removed at takedown without grace period
ARCHIVE_EXEMPT_TYPES = frozenset({EntityType.REACTIONS})


@dataclass
class CascadeResult:
    """Result of one cascade operation on one root record."""

    entity_type: EntityType
    record_id: int
    operation: str
    affected: dict[EntityType, int] = field(default_factory=dict)
    archived: dict[EntityType, int] = field(default_factory=dict)
    removed: dict[EntityType, int] = field(default_factory=dict)

    def add_affected(self, entity_type: EntityType, count: int) -> None:
        if count:
            self.affected[entity_type] = self.affected.get(entity_type, 0) + count

    def add_archived(self, entity_type: EntityType, count: int) -> None:
        if count:
            self.archived[entity_type] = self.archived.get(entity_type, 0) + count

    @property
    def total_affected(self) -> int:
        return sum(self.affected.values())

    @property
    def total_archived(self) -> int:
        return sum(self.archived.values())

    def affected_by_type(self) -> dict[str, int]:
        return {entity_type.value: count for entity_type, count in self.affected.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "record_id": self.record_id,
            "operation": self.operation,
            "affected": self.affected_by_type(),
            "archived": {t.value: n for t, n in self.archived.items()},
            "removed": {t.value: n for t, n in self.removed.items()},
            "total_affected": self.total_affected,
            "total_archived": self.total_archived,
        }


class CascadeEngine:
    """Applies lifecycle transitions to a root record and its descendants."""

    def __init__(
        self,
        store: RecordStore,
        graph: EntityGraph = DEFAULT_GRAPH,
        archive_sink: ArchiveSink | None = None,
        policies: dict[EntityType, RetentionPolicy] | None = None,
    ):
        self.store = store
        self.graph = graph
        self.archive_sink = archive_sink
        self.policies = policies if policies is not None else get_policies()

    def policy(self, entity_type: EntityType) -> RetentionPolicy | None:
        return policy_for(entity_type, self.policies, self.graph)

    # -------------------------------------------------------------------------
    # Tombstone
    # -------------------------------------------------------------------------

    def tombstone(
        self,
        root_type: EntityType,
        root_id: int,
        at: datetime | None = None,
        reason: str | None = None,
        initiated_by: str = "admin",
    ) -> CascadeResult:
        """
        Tombstone a root and cascade to every Active descendant.

        Already tombstoned or purged roots are a no-op (zero affected).
        Descendants that were tombstoned earlier keep their own stamp.
        """
        at = at or utcnow()
        result = CascadeResult(root_type, root_id, "tombstone")

        with self.store.transaction() as uow:
            root = uow.get(root_type, root_id)
            state = state_of(root)
            if state != LifecycleState.ACTIVE:
                logger.debug(f"Tombstone skipped: {root_type.value} {root_id} is {state.value}")
                return result

            self._tombstone_subtree(uow, root_type, root_id, at, reason, result)
            uow.add_event(
                root_type,
                root_id,
                LifecycleEventType.TOMBSTONED,
                initiated_by,
                {"reason": reason, "affected": result.affected_by_type()},
            )

        logger.info(
            f"Tombstoned {root_type.value} {root_id} ({result.total_affected} records)",
            extra={"record_id": root_id, "affected": result.affected_by_type()},
        )
        return result

    def _tombstone_subtree(
        self,
        uow: UnitOfWork,
        root_type: EntityType,
        root_id: int,
        at: datetime,
        reason: str | None,
        result: CascadeResult,
    ) -> None:
        check_transition(LifecycleState.ACTIVE, LifecycleState.TOMBSTONED, root_type, root_id)
        result.add_affected(
            root_type,
            uow.update_many(
                root_type,
                RecordFilter(ids=[root_id], state=LifecycleState.ACTIVE),
                {"tombstoned_at": at, "deletion_reason": reason},
            ),
        )
        self.stamp_descendants(uow, root_type, [root_id], at, result)

    def stamp_descendants(
        self,
        uow: UnitOfWork,
        entity_type: EntityType,
        parent_ids: list[int],
        at: datetime,
        result: CascadeResult,
    ) -> None:
        """Tombstone Active descendants of `parent_ids`, breadth first, with stamp `at`."""
        frontier = {entity_type: list(parent_ids)}
        for child_type, edge in self.graph.descendants(entity_type):
            child_ids = uow.find_ids(child_type, RecordFilter(parent_ids=frontier.get(edge.parent, [])))
            frontier[child_type] = child_ids
            if child_ids:
                result.add_affected(
                    child_type,
                    uow.update_many(
                        child_type,
                        RecordFilter(ids=child_ids, state=LifecycleState.ACTIVE),
                        {"tombstoned_at": at},
                    ),
                )

    # -------------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------------

    def restore(
        self,
        root_type: EntityType,
        root_id: int,
        initiated_by: str = "admin",
    ) -> CascadeResult:
        """
        Restore a tombstoned root and the descendants its cascade tombstoned.

        Only descendants whose tombstoned_at equals the root's stamp come
        back; records tombstoned independently stay tombstoned.

        Raises:
            RecordNotFound: The root has been purged
            AncestorDeleted: Some ancestor is not Active
        """
        result = CascadeResult(root_type, root_id, "restore")

        with self.store.transaction() as uow:
            root = uow.get(root_type, root_id)
            state = state_of(root)
            if state == LifecycleState.PURGED:
                raise RecordNotFound(f"{root_type.value} {root_id} not found", root_type, root_id)
            if state == LifecycleState.ACTIVE:
                logger.debug(f"Restore skipped: {root_type.value} {root_id} is already active")
                return result

            check_transition(state, LifecycleState.ACTIVE, root_type, root_id)
            self._check_ancestors_active(uow, root_type, root_id, root)

            stamp = root.tombstoned_at
            result.add_affected(
                root_type,
                uow.update_many(
                    root_type,
                    RecordFilter(ids=[root_id]),
                    {"tombstoned_at": None, "deletion_reason": None},
                ),
            )

            restored = {root_type: [root_id]}
            for child_type, edge in self.graph.descendants(root_type):
                child_ids = uow.find_ids(
                    child_type,
                    RecordFilter(parent_ids=restored.get(edge.parent, []), tombstoned_at=stamp),
                )
                restored[child_type] = child_ids
                if child_ids:
                    result.add_affected(
                        child_type,
                        uow.update_many(child_type, RecordFilter(ids=child_ids), {"tombstoned_at": None}),
                    )

            uow.add_event(
                root_type,
                root_id,
                LifecycleEventType.RESTORED,
                initiated_by,
                {"tombstoned_at": stamp.isoformat(), "affected": result.affected_by_type()},
            )

        logger.info(
            f"Restored {root_type.value} {root_id} ({result.total_affected} records)",
            extra={"record_id": root_id, "affected": result.affected_by_type()},
        )
        return result

    def _check_ancestors_active(self, uow: UnitOfWork, entity_type: EntityType, record_id: int, record: Any) -> None:
        current_type, current = entity_type, record
        for edge in self.graph.ancestors(entity_type):
            parent_id = uow.parent_id_of(current_type, current)
            parent = uow.get(edge.parent, parent_id)
            parent_state = state_of(parent)
            if parent_state != LifecycleState.ACTIVE:
                raise AncestorDeleted(
                    f"ancestor {edge.parent.value} {parent_id} is {parent_state.value}",
                    entity_type=entity_type,
                    record_id=record_id,
                )
            current_type, current = edge.parent, parent

    # -------------------------------------------------------------------------
    # Purge
    # -------------------------------------------------------------------------

    def purge(
        self,
        root_type: EntityType,
        root_id: int,
        now: datetime | None = None,
        initiated_by: str = "scheduler",
        policy: RetentionPolicy | None = None,
    ) -> CascadeResult:
        """
        Permanently delete a tombstoned root and its subtree.

        Rows are deleted leaves first. When the root's policy enables
        archiving, each batch is written to the archive sink before its
        delete statement runs. Reactions are deleted without an archive
        copy. An already purged root is a no-op. `policy`
        overrides the engine's policy for the root type.

        Raises:
            InvalidTransition: The root is Active
            GracePeriodNotElapsed: The root's grace period has not passed
            ConstraintViolation: Active descendants remain under the root
            ArchiveFailure: The archive sink failed; nothing was deleted
        """
        now = now or utcnow()
        result = CascadeResult(root_type, root_id, "purge")
        policy = policy or self.policy(root_type)
        grace = policy.grace_period if policy else timedelta(0)

        with self.store.transaction() as uow:
            root = uow.get(root_type, root_id)
            if state_of(root) == LifecycleState.PURGED:
                logger.debug(f"Purge skipped: {root_type.value} {root_id} already purged")
                return result

            check_purgeable(root, grace, now, root_type, root_id)

            subtree = self.collect_subtree(uow, root_type, [root_id])
            active = {
                entity_type.value: n
                for entity_type, ids in subtree.items()
                if (n := uow.count(entity_type, RecordFilter(ids=ids, state=LifecycleState.ACTIVE)))
            }
            if active:
                raise ConstraintViolation(
                    f"active descendants under tombstoned root: {active}",
                    entity_type=root_type,
                    record_id=root_id,
                )

            self.delete_subtree(uow, root_type, subtree, result, policy, root_id)
            uow.add_event(
                root_type,
                root_id,
                LifecycleEventType.PURGED,
                initiated_by,
                {"affected": result.affected_by_type(), "archived": result.total_archived},
            )

        logger.info(
            f"Purged {root_type.value} {root_id} ({result.total_affected} deleted, "
            f"{result.total_archived} archived)",
            extra={"record_id": root_id, "affected": result.affected_by_type(), "archived": result.total_archived},
        )
        return result

    def collect_subtree(
        self,
        uow: UnitOfWork,
        entity_type: EntityType,
        ids: list[int],
    ) -> dict[EntityType, list[int]]:
        """Ids of every row under `ids` (inclusive), keyed by type."""
        subtree = {entity_type: list(ids)}
        for child_type, edge in self.graph.descendants(entity_type):
            subtree[child_type] = uow.find_ids(child_type, RecordFilter(parent_ids=subtree.get(edge.parent, [])))
        return subtree

    def delete_subtree(
        self,
        uow: UnitOfWork,
        entity_type: EntityType,
        subtree: dict[EntityType, list[int]],
        result: CascadeResult,
        policy: RetentionPolicy | None,
        root_id: int | None = None,
    ) -> None:
        """Delete a collected subtree leaves first, archiving per `policy`."""
        archive = bool(policy and policy.enable_archiving and self.archive_sink is not None)
        batch_size = policy.batch_size if policy else DEFAULT_BATCH_SIZE
        for edge in self.graph.purge_order(entity_type):
            self._delete_rows(uow, edge.child, subtree.get(edge.child, []), result, archive, batch_size, root_id)
        self._delete_rows(uow, entity_type, subtree[entity_type], result, archive, batch_size, root_id)

    def _delete_rows(
        self,
        uow: UnitOfWork,
        entity_type: EntityType,
        ids: list[int],
        result: CascadeResult,
        archive: bool,
        batch_size: int,
        root_id: int | None,
    ) -> None:
        for start in range(0, len(ids), batch_size):
            chunk = ids[start : start + batch_size]
            if archive and entity_type not in ARCHIVE_EXEMPT_TYPES:
                records = uow.find_many(entity_type, RecordFilter(ids=chunk))
                self._archive(entity_type, records, result, root_id)
            result.add_affected(entity_type, uow.delete_many(entity_type, RecordFilter(ids=chunk)))

    def _archive(self, entity_type: EntityType, records: list, result: CascadeResult, root_id: int | None) -> None:
        if not records:
            return
        try:
            self.archive_sink.write(entity_type, [serialize_record(r) for r in records])
        except Exception as e:
            logger.error(f"Archive write failed for {len(records)} {entity_type.value} records: {e}")
            raise ArchiveFailure(
                f"archive write failed for {entity_type.value}: {e}",
                entity_type=result.entity_type,
                record_id=root_id,
            ) from e
        result.add_archived(entity_type, len(records))

    # -------------------------------------------------------------------------
    # Moderation takedown
    # -------------------------------------------------------------------------

    def takedown(
        self,
        root_type: EntityType,
        root_id: int,
        reason: str,
        at: datetime | None = None,
        initiated_by: str = "moderation",
    ) -> CascadeResult:
        """
        Tombstone a root for moderation and drop its reactions immediately.

        Reactions under the root are deleted in the same transaction with no
        grace period and no archive copy. Everything else follows the normal
        tombstone path. A root that is already tombstoned still loses its
        reactions.

        Raises:
            RecordNotFound: The root has been purged
        """
        at = at or utcnow()
        result = CascadeResult(root_type, root_id, "takedown")

        with self.store.transaction() as uow:
            root = uow.get(root_type, root_id)
            state = state_of(root)
            if state == LifecycleState.PURGED:
                raise RecordNotFound(f"{root_type.value} {root_id} not found", root_type, root_id)
            if state == LifecycleState.ACTIVE:
                self._tombstone_subtree(uow, root_type, root_id, at, reason, result)

            subtree = self.collect_subtree(uow, root_type, [root_id])
            for entity_type in ARCHIVE_EXEMPT_TYPES:
                ids = subtree.get(entity_type, [])
                if ids:
                    result.removed[entity_type] = uow.delete_many(entity_type, RecordFilter(ids=ids))
            removed = {t.value: n for t, n in result.removed.items()}

            uow.add_event(
                root_type,
                root_id,
                LifecycleEventType.TAKEN_DOWN,
                initiated_by,
                {"reason": reason, "affected": result.affected_by_type(), "removed": removed},
            )

        logger.warning(
            f"Takedown of {root_type.value} {root_id}: {result.total_affected} tombstoned, "
            f"removed {removed or 'nothing'} ({reason})",
            extra={"record_id": root_id, "affected": result.affected_by_type()},
        )
        return result
