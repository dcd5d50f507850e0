# promptshelf/services/retention/reconciler.py
"""
Orphan reconciler: repairs records the cascade engine never reached.

Handles:
- Children whose owning row is gone (purged out of band): purged, with
  their own descendants, archived when the child type's policy says so
- Active children under an owner tombstoned past its grace period:
  tombstoned with the owner's stamp so the next sweep can purge them

Edges are visited breadth first so an orphaned experience is removed before
its prompts are examined. Each owner's group is repaired in its own
transaction; a failing group is reported and the pass continues.
"""

import logging
import time
from datetime import datetime

from promptshelf.models import LifecycleEventType, utcnow
from promptshelf.services.retention.cascade import CascadeEngine, CascadeResult
from promptshelf.services.retention.errors import RetentionError
from promptshelf.services.retention.graph import Edge, EntityType
from promptshelf.services.retention.policy_service import RetentionPolicy, policy_for
from promptshelf.services.retention.states import LifecycleState
from promptshelf.services.retention.store import RecordFilter
from promptshelf.services.retention.sweeper import CleanupResult

logger = logging.getLogger(__name__)

INITIATED_BY = "orphan_reconciler"


class OrphanReconciler:
    """Finds and repairs records whose ancestors were purged or long tombstoned."""

    def __init__(self, engine: CascadeEngine):
        self.engine = engine
        self.store = engine.store
        self.graph = engine.graph

    def reconcile(
        self,
        now: datetime | None = None,
        dry_run: bool = False,
        policies: dict[EntityType, RetentionPolicy] | None = None,
    ) -> CleanupResult:
        """Run one reconciliation pass over every ownership edge."""
        now = now or utcnow()
        policies = policies if policies is not None else self.engine.policies
        start_time = time.time()
        result = CleanupResult(operation="orphan_reconciliation", dry_run=dry_run)

        for edge in self.graph.all_edges():
            self._purge_missing_parent(edge, result, dry_run, policies)
            self._tombstone_under_expired(edge, now, result, dry_run, policies)

        result.duration_ms = int((time.time() - start_time) * 1000)
        if result.records_processed:
            logger.warning(
                f"Reconciled {result.records_processed} orphans ({result.records_deleted} rows repaired)",
                extra={"records_processed": result.records_processed, "dry_run": dry_run},
            )
        else:
            logger.info("No orphans found")
        return result

    def _purge_missing_parent(
        self,
        edge: Edge,
        result: CleanupResult,
        dry_run: bool,
        policies: dict[EntityType, RetentionPolicy],
    ) -> None:
        try:
            with self.store.transaction() as uow:
                missing = uow.missing_parent_ids(edge.child, edge.parent)
        except RetentionError as e:
            result.errors.append(f"{edge.child.value}: orphan scan failed: {e}")
            return

        policy = policy_for(edge.child, policies, self.graph)
        for parent_id in missing:
            cascade = CascadeResult(edge.child, parent_id, "orphan_purge")
            try:
                with self.store.transaction() as uow:
                    orphan_ids = uow.find_ids(edge.child, RecordFilter(parent_ids=[parent_id]))
                    if not dry_run:
                        subtree = self.engine.collect_subtree(uow, edge.child, orphan_ids)
                        self.engine.delete_subtree(uow, edge.child, subtree, cascade, policy)
                        for orphan_id in orphan_ids:
                            uow.add_event(
                                edge.child,
                                orphan_id,
                                LifecycleEventType.ORPHAN_REPAIRED,
                                INITIATED_BY,
                                {"action": "purged", "missing_parent": f"{edge.parent.value} {parent_id}"},
                            )
            except RetentionError as e:
                logger.warning(f"Orphan purge failed for {edge.child.value} under {edge.parent.value} {parent_id}: {e}")
                result.errors.append(f"{edge.child.value} under {edge.parent.value} {parent_id}: {e}")
                continue

            logger.info(
                f"{len(orphan_ids)} {edge.child.value} orphaned by missing {edge.parent.value} {parent_id}"
            )
            result.records_processed += len(orphan_ids)
            if dry_run:
                result.add_related({edge.child: len(orphan_ids)})
            else:
                result.records_deleted += cascade.total_affected
                result.records_archived += cascade.total_archived
                result.add_related(cascade.affected)

    def _tombstone_under_expired(
        self,
        edge: Edge,
        now: datetime,
        result: CleanupResult,
        dry_run: bool,
        policies: dict[EntityType, RetentionPolicy],
    ) -> None:
        parent_policy = policy_for(edge.parent, policies, self.graph)
        if parent_policy is None:
            return

        try:
            with self.store.transaction() as uow:
                parents = uow.find_many(
                    edge.parent,
                    RecordFilter(
                        state=LifecycleState.TOMBSTONED,
                        tombstoned_before=now - parent_policy.grace_period,
                    ),
                )
                stamps = {parent.id: parent.tombstoned_at for parent in parents}
                groups: dict[int, list[int]] = {}
                for child in uow.find_many(
                    edge.child,
                    RecordFilter(parent_ids=list(stamps), state=LifecycleState.ACTIVE),
                ):
                    groups.setdefault(uow.parent_id_of(edge.child, child), []).append(child.id)
        except RetentionError as e:
            result.errors.append(f"{edge.child.value}: expired-owner scan failed: {e}")
            return

        for parent_id, child_ids in groups.items():
            cascade = CascadeResult(edge.child, parent_id, "orphan_tombstone")
            stamp = stamps[parent_id]
            try:
                if not dry_run:
                    with self.store.transaction() as uow:
                        cascade.add_affected(
                            edge.child,
                            uow.update_many(
                                edge.child,
                                RecordFilter(ids=child_ids, state=LifecycleState.ACTIVE),
                                {"tombstoned_at": stamp},
                            ),
                        )
                        self.engine.stamp_descendants(uow, edge.child, child_ids, stamp, cascade)
                        for child_id in child_ids:
                            uow.add_event(
                                edge.child,
                                child_id,
                                LifecycleEventType.ORPHAN_REPAIRED,
                                INITIATED_BY,
                                {"action": "tombstoned", "parent": f"{edge.parent.value} {parent_id}"},
                            )
            except RetentionError as e:
                logger.warning(f"Orphan tombstone failed for {edge.child.value} under {edge.parent.value} {parent_id}: {e}")
                result.errors.append(f"{edge.child.value} under {edge.parent.value} {parent_id}: {e}")
                continue

            result.records_processed += len(child_ids)
            if dry_run:
                result.add_related({edge.child: len(child_ids)})
            else:
                result.records_deleted += cascade.total_affected
                result.add_related(cascade.affected)
