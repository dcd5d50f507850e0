# promptshelf/services/retention/sweeper.py
"""
Retention sweeper: scheduled batch passes over root entity types.

Handles:
- Age-out pass: tombstone Active records older than max_age
- Grace-period pass: purge Tombstoned records older than grace_period
- Full sweep in a fixed order, followed by orphan reconciliation
- Dry run (eligible counts only, no writes)

Records are independent: one record failing is logged into the pass's
errors and the pass moves on. Nothing is retried here; the next scheduled
sweep selects the same record again.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from promptshelf.logging_config import ProgressTracker, RetentionRecorder, log_operation
from promptshelf.models import utcnow
from promptshelf.services.retention.cascade import CascadeEngine
from promptshelf.services.retention.errors import RetentionError
from promptshelf.services.retention.graph import EntityType
from promptshelf.services.retention.policy_service import RetentionPolicy
from promptshelf.services.retention.states import LifecycleState
from promptshelf.services.retention.store import RecordFilter

if TYPE_CHECKING:
    from promptshelf.services.retention.reconciler import OrphanReconciler

logger = logging.getLogger(__name__)

# Users go last so their experiences are already handled when the user row is evaluated
SWEEP_ORDER = (EntityType.EXPERIENCES, EntityType.USERS)


@dataclass
class CleanupResult:
    """Result of one sweep pass."""

    operation: str
    records_processed: int = 0
    records_deleted: int = 0
    records_archived: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    related_records: dict[str, int] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    def add_related(self, counts: dict[Any, int]) -> None:
        """Accumulate per-type row counts (keys may be EntityType or str)."""
        for entity_type, count in counts.items():
            key = getattr(entity_type, "value", entity_type)
            self.related_records[key] = self.related_records.get(key, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "records_processed": self.records_processed,
            "records_deleted": self.records_deleted,
            "records_archived": self.records_archived,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
            "related_records": dict(self.related_records),
            "dry_run": self.dry_run,
        }


class RetentionSweeper:
    """Runs age-out and grace-period passes through the cascade engine."""

    def __init__(
        self,
        engine: CascadeEngine,
        reconciler: "OrphanReconciler | None" = None,
        recorder: RetentionRecorder | None = None,
        order: tuple[EntityType, ...] = SWEEP_ORDER,
    ):
        self.engine = engine
        self.store = engine.store
        self.reconciler = reconciler
        self.recorder = recorder
        self.order = order

    def _select(self, entity_type: EntityType, flt: RecordFilter) -> list[int]:
        with self.store.transaction() as uow:
            return uow.find_ids(entity_type, flt)

    def age_out_pass(
        self,
        entity_type: EntityType,
        policy: RetentionPolicy,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> CleanupResult:
        """Tombstone up to batch_size Active records created before now - max_age."""
        now = now or utcnow()
        start_time = time.time()
        result = CleanupResult(operation=f"age_out:{entity_type.value}", dry_run=dry_run)

        with log_operation("age_out", entity_type=entity_type.value):
            try:
                ids = self._select(
                    entity_type,
                    RecordFilter(
                        state=LifecycleState.ACTIVE,
                        created_before=now - policy.max_age,
                        limit=policy.batch_size,
                        order_by="created_at",
                    ),
                )
            except RetentionError as e:
                result.errors.append(f"{entity_type.value}: selection failed: {e}")
                ids = []

            result.records_processed = len(ids)
            if dry_run:
                logger.info(f"[DRY RUN] {len(ids)} {entity_type.value} would be tombstoned")
                ids = []

            tracker = ProgressTracker(total=len(ids), stage=result.operation)
            for record_id in ids:
                try:
                    cascade = self.engine.tombstone(
                        entity_type,
                        record_id,
                        at=now,
                        reason="retention_policy",
                        initiated_by="retention_sweep",
                    )
                    if cascade.total_affected:
                        result.records_deleted += 1
                        result.add_related(cascade.affected)
                    tracker.increment()
                except RetentionError as e:
                    logger.warning(f"Age-out failed for {entity_type.value} {record_id}: {e}")
                    result.errors.append(f"{entity_type.value} {record_id}: {e}")
                    tracker.increment(success=False)
            tracker.finish()

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result

    def grace_period_pass(
        self,
        entity_type: EntityType,
        policy: RetentionPolicy,
        now: datetime | None = None,
        dry_run: bool = False,
        independent_only: bool = False,
    ) -> CleanupResult:
        """
        Purge up to batch_size Tombstoned records tombstoned before now - grace_period.

        With `independent_only`, records whose owner is not Active are left
        for their owner's purge so they are archived under its policy.
        """
        now = now or utcnow()
        start_time = time.time()
        result = CleanupResult(operation=f"grace_period:{entity_type.value}", dry_run=dry_run)

        with log_operation("grace_period", entity_type=entity_type.value):
            try:
                ids = self._select(
                    entity_type,
                    RecordFilter(
                        state=LifecycleState.TOMBSTONED,
                        tombstoned_before=now - policy.grace_period,
                        limit=policy.batch_size,
                        order_by="tombstoned_at",
                        owner_active=independent_only,
                    ),
                )
            except RetentionError as e:
                result.errors.append(f"{entity_type.value}: selection failed: {e}")
                ids = []

            result.records_processed = len(ids)
            if dry_run:
                logger.info(f"[DRY RUN] {len(ids)} {entity_type.value} would be purged")
                ids = []

            tracker = ProgressTracker(total=len(ids), stage=result.operation)
            for record_id in ids:
                try:
                    cascade = self.engine.purge(
                        entity_type,
                        record_id,
                        now=now,
                        initiated_by="retention_sweep",
                        policy=policy,
                    )
                    if cascade.total_affected:
                        result.records_deleted += 1
                        result.records_archived += cascade.total_archived
                        result.add_related(cascade.affected)
                    tracker.increment()
                except RetentionError as e:
                    logger.warning(f"Purge failed for {entity_type.value} {record_id}: {e}")
                    result.errors.append(f"{entity_type.value} {record_id}: {e}")
                    tracker.increment(success=False)
            tracker.finish()

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result

    def run_sweep(
        self,
        policies: dict[EntityType, RetentionPolicy] | None = None,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> list[CleanupResult]:
        """
        Run one full sweep.

        Order: age-out then grace-period for each type in SWEEP_ORDER, then a
        grace-period pass for every other type that has its own policy
        (records tombstoned on their own, e.g. a deleted comment), then
        orphan reconciliation.
        """
        policies = policies if policies is not None else self.engine.policies
        now = now or utcnow()
        results: list[CleanupResult] = []

        with log_operation("sweep"):
            for entity_type in self.order:
                policy = policies.get(entity_type)
                if policy is None:
                    logger.debug(f"No retention policy for {entity_type.value}; skipping")
                    continue
                results.append(self.age_out_pass(entity_type, policy, now, dry_run))
                results.append(self.grace_period_pass(entity_type, policy, now, dry_run))

            for entity_type in self.engine.graph.types:
                if entity_type in self.order or entity_type not in policies:
                    continue
                results.append(
                    self.grace_period_pass(entity_type, policies[entity_type], now, dry_run, independent_only=True)
                )

            if self.reconciler is not None:
                results.append(self.reconciler.reconcile(now=now, dry_run=dry_run, policies=policies))

        if self.recorder is not None and self.recorder.is_open:
            for result in results:
                self.recorder.record_cleanup(result)

        total_errors = sum(len(r.errors) for r in results)
        logger.info(
            f"Sweep complete: {sum(r.records_deleted for r in results)} roots processed, "
            f"{sum(r.records_archived for r in results)} archived, {total_errors} errors",
            extra={"dry_run": dry_run, "errors": total_errors},
        )
        return results
