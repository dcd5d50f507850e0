# promptshelf/services/retention/service.py
"""
Retention service facade for admin tooling.

Wires the record store, cascade engine, sweeper, reconciler, stats cache
and recorder together and exposes the operations the admin layer calls.
Every mutating call clears the stats cache.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from promptshelf.config import Settings, get_settings
from promptshelf.logging_config import RetentionRecorder
from promptshelf.services.retention.archive_service import ArchiveSink, get_archive_sink
from promptshelf.services.retention.cascade import CascadeEngine, CascadeResult
from promptshelf.services.retention.export_service import export_user_data
from promptshelf.services.retention.graph import DEFAULT_GRAPH, EntityGraph, EntityType
from promptshelf.services.retention.policy_service import RetentionPolicy, get_policies, resolve_policies
from promptshelf.services.retention.reconciler import OrphanReconciler
from promptshelf.services.retention.stats import RetentionStatsCache, get_purge_preview, list_tombstoned
from promptshelf.services.retention.store import RecordStore, build_accessors
from promptshelf.services.retention.sweeper import CleanupResult, RetentionSweeper

logger = logging.getLogger(__name__)


def _new_sweep_id() -> str:
    return f"retention-{uuid.uuid4().hex[:12]}"


def coerce_entity_type(value: EntityType | str) -> EntityType:
    """Accept an EntityType or its table name."""
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        valid = ", ".join(t.value for t in EntityType)
        raise ValueError(f"Unknown entity type '{value}'. Use one of: {valid}") from None


class RetentionService:
    """Entry point for sweeps, direct lifecycle operations and reporting."""

    def __init__(
        self,
        store: RecordStore,
        archive_sink: ArchiveSink | None = None,
        policies: dict[EntityType, RetentionPolicy] | None = None,
        graph: EntityGraph = DEFAULT_GRAPH,
        recorder: RetentionRecorder | None = None,
        stats_ttl: int = 60,
    ):
        self.store = store
        self.graph = graph
        self.policies = policies if policies is not None else get_policies()
        self.engine = CascadeEngine(store, graph, archive_sink, self.policies)
        self.reconciler = OrphanReconciler(self.engine)
        self.recorder = recorder or RetentionRecorder()
        self.sweeper = RetentionSweeper(self.engine, self.reconciler, self.recorder)
        self._stats = RetentionStatsCache(ttl=stats_ttl)
        self.last_sweep_summary: dict[str, Any] | None = None

        if not self.recorder.is_open:
            self.recorder.open(_new_sweep_id())

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] | None = None,
        recorder: RetentionRecorder | None = None,
    ) -> "RetentionService":
        """Build the service from environment configuration."""
        settings = settings or get_settings()
        if session_factory is None:
            from promptshelf.database import SessionLocal

            session_factory = SessionLocal

        store = RecordStore(
            session_factory,
            build_accessors(DEFAULT_GRAPH),
            transaction_timeout_ms=settings.STORE_TRANSACTION_TIMEOUT_MS,
        )
        return cls(
            store,
            archive_sink=get_archive_sink(settings),
            policies=resolve_policies(settings.policy_overrides),
            recorder=recorder,
        )

    # -------------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------------

    def run_sweep(
        self,
        policies: dict[EntityType, RetentionPolicy] | None = None,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> list[CleanupResult]:
        """
        Run one sweep. An open recorder is flushed into `last_sweep_summary`
        afterwards and reopened under a new sweep id.
        """
        results = self.sweeper.run_sweep(policies or self.policies, now=now, dry_run=dry_run)
        if self.recorder.is_open:
            self.last_sweep_summary = self.recorder.flush()
            self.recorder.open(_new_sweep_id())
        if not dry_run:
            self._stats.invalidate()
        return results

    def reconcile(self, dry_run: bool = False, now: datetime | None = None) -> CleanupResult:
        result = self.reconciler.reconcile(now=now, dry_run=dry_run)
        if self.recorder.is_open:
            self.recorder.record_cleanup(result)
        if not dry_run:
            self._stats.invalidate()
        return result

    # -------------------------------------------------------------------------
    # Direct operations
    # -------------------------------------------------------------------------

    def _after_cascade(self, result: CascadeResult) -> CascadeResult:
        # The change is committed by now; a closed recorder only skips metrics
        if self.recorder.is_open:
            self.recorder.record_cascade(result)
        self._stats.invalidate()
        return result

    def tombstone(self, entity_type: EntityType | str, record_id: int, reason: str | None = None) -> CascadeResult:
        return self._after_cascade(
            self.engine.tombstone(coerce_entity_type(entity_type), record_id, reason=reason)
        )

    def restore(self, entity_type: EntityType | str, record_id: int) -> CascadeResult:
        return self._after_cascade(self.engine.restore(coerce_entity_type(entity_type), record_id))

    def takedown(self, entity_type: EntityType | str, record_id: int, reason: str) -> CascadeResult:
        if not reason:
            raise ValueError("A takedown requires a reason")
        return self._after_cascade(self.engine.takedown(coerce_entity_type(entity_type), record_id, reason))

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_retention_stats(self, now: datetime | None = None) -> dict[EntityType, dict[str, int]]:
        return self._stats.get(self.store, self.policies, now, self.graph)

    def get_policies(self) -> dict[EntityType, RetentionPolicy]:
        return dict(self.policies)

    def preview(self, now: datetime | None = None) -> dict[EntityType, dict[str, int]]:
        return get_purge_preview(self.store, self.policies, now, self.graph)

    def list_tombstoned(
        self,
        entity_type: EntityType | str,
        older_than_days: int | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        older_than = timedelta(days=older_than_days) if older_than_days is not None else None
        return list_tombstoned(self.store, coerce_entity_type(entity_type), older_than, limit)

    def export_user_data(self, user_id: int) -> dict[str, Any]:
        return export_user_data(self.store, user_id)

    def read_archive(self, entity_type: EntityType | str) -> list[dict[str, Any]]:
        """Archived batches for one entity type, as written at purge time."""
        entity_type = coerce_entity_type(entity_type)
        if self.engine.archive_sink is None:
            return []
        return self.engine.archive_sink.read_batches(entity_type)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> dict[str, Any] | None:
        """Flush the recorder. Returns its summary, or None if already closed."""
        if self.recorder.is_open:
            return self.recorder.flush()
        return None

    def __enter__(self) -> "RetentionService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
