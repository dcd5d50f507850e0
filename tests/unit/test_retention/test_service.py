# tests/unit/test_retention/test_service.py
"""Unit tests for the retention service facade."""

from datetime import timedelta

import pytest

from promptshelf.config import Settings
from promptshelf.models import Experience, Reaction
from promptshelf.services.retention.archive_service import NullArchiveSink, StorageArchiveSink
from promptshelf.services.retention.errors import AncestorDeleted
from promptshelf.services.retention.graph import EntityType
from promptshelf.services.retention.service import RetentionService, coerce_entity_type
from promptshelf.storage.local_provider import LocalStorageProvider


@pytest.fixture
def service(store, archive_sink):
    svc = RetentionService(store, archive_sink=archive_sink)
    yield svc
    svc.close()


class TestCoerceEntityType:
    def test_accepts_names(self):
        assert coerce_entity_type("prompt_ratings") == EntityType.PROMPT_RATINGS
        assert coerce_entity_type(EntityType.USERS) == EntityType.USERS

    def test_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown entity type"):
            coerce_entity_type("bookmarks")


class TestFromSettings:
    def test_builds_from_settings(self, session_factory):
        settings = Settings(
            DATABASE_URL="sqlite://",
            ARCHIVE_PROVIDER="none",
            RETENTION_POLICY_OVERRIDES='{"experiences": {"grace_period_days": 7}}',
        )

        service = RetentionService.from_settings(settings, session_factory=session_factory)

        assert isinstance(service.engine.archive_sink, NullArchiveSink)
        assert service.get_policies()[EntityType.EXPERIENCES].grace_period_days == 7
        assert service.recorder.is_open
        service.close()


class TestDirectOperations:
    def test_tombstone_and_restore_by_name(self, service, seed):
        tree = seed.experience_tree()

        tombstoned = service.tombstone("experiences", tree["experience"], reason="owner request")
        restored = service.restore("experiences", tree["experience"])

        assert tombstoned.total_affected == 11
        assert restored.total_affected == 11
        assert seed.stamp(Experience, tree["experience"]) is None

    def test_restore_under_dead_user(self, service, seed):
        tree = seed.experience_tree()
        service.tombstone(EntityType.USERS, tree["user"])

        with pytest.raises(AncestorDeleted):
            service.restore(EntityType.EXPERIENCES, tree["experience"])

    def test_takedown_requires_reason(self, service, seed):
        tree = seed.experience_tree()
        with pytest.raises(ValueError, match="reason"):
            service.takedown("experiences", tree["experience"], reason="")
        assert seed.count(Reaction) == 2

    def test_takedown(self, service, seed):
        tree = seed.experience_tree()
        result = service.takedown("experiences", tree["experience"], reason="spam")
        assert result.removed[EntityType.REACTIONS] == 2

    def test_mutations_clear_stats_cache(self, service, seed):
        tree = seed.experience_tree()
        assert service.get_retention_stats()[EntityType.EXPERIENCES]["tombstoned"] == 0

        service.tombstone(EntityType.EXPERIENCES, tree["experience"])

        assert service.get_retention_stats()[EntityType.EXPERIENCES]["tombstoned"] == 1


class TestReporting:
    def test_list_tombstoned_by_days(self, service, seed, now):
        tree = seed.experience_tree()
        service.engine.tombstone(EntityType.EXPERIENCES, tree["experience"], at=now - timedelta(days=45))

        assert len(service.list_tombstoned("experiences", older_than_days=30)) == 1
        assert service.list_tombstoned("experiences", older_than_days=60) == []

    def test_preview_and_export(self, service, seed, now):
        tree = seed.experience_tree(created_at=now - timedelta(days=800))

        assert service.preview(now=now)[EntityType.EXPERIENCES]["pending_tombstone"] == 1
        assert service.export_user_data(tree["user"])["user"]["id"] == tree["user"]

    def test_read_archive_after_purge(self, store, seed, tmp_path, now):
        sink = StorageArchiveSink(LocalStorageProvider(base_path=str(tmp_path)))
        service = RetentionService(store, archive_sink=sink)
        tree = seed.experience_tree()
        service.engine.tombstone(EntityType.EXPERIENCES, tree["experience"], at=now - timedelta(days=31))

        service.run_sweep(now=now)

        experiences = service.read_archive("experiences")
        assert [r["id"] for doc in experiences for r in doc["records"]] == [tree["experience"]]
        assert sum(doc["record_count"] for doc in service.read_archive("comments")) == 5
        assert service.read_archive(EntityType.REACTIONS) == []
        service.close()

    def test_read_archive_without_sink(self, store):
        service = RetentionService(store)
        assert service.read_archive("users") == []
        service.close()


class TestLifecycle:
    def test_sweep_flushes_recorder(self, store, seed, now):
        service = RetentionService(store)
        tree = seed.experience_tree()
        service.tombstone(EntityType.EXPERIENCES, tree["experience"])
        first_id = service.recorder.sweep_id

        service.run_sweep(now=now)

        summary = service.last_sweep_summary
        assert summary["sweep_id"] == first_id
        assert summary["cascades"][0]["operation"] == "tombstone"
        assert summary["cleanups"][-1]["operation"] == "orphan_reconciliation"
        assert service.recorder.is_open
        assert service.recorder.sweep_id != first_id
        assert service.recorder.cleanups == []

        final = service.close()
        assert final["cleanups"] == []
        assert service.close() is None

    def test_recorder_bounded_across_scheduled_sweeps(self, store, now):
        service = RetentionService(store)
        sweep_ids = set()

        for day in range(5):
            results = service.run_sweep(now=now + timedelta(days=day))
            sweep_ids.add(service.last_sweep_summary["sweep_id"])
            assert len(service.last_sweep_summary["cleanups"]) == len(results)
            assert service.recorder.cleanups == []

        assert len(sweep_ids) == 5
        service.close()

    def test_operations_after_close(self, store, seed, now):
        service = RetentionService(store)
        tree = seed.experience_tree()
        service.close()

        tombstoned = service.tombstone(EntityType.EXPERIENCES, tree["experience"])
        reconciled = service.reconcile()
        service.run_sweep(now=now)

        assert tombstoned.total_affected == 11
        assert seed.stamp(Experience, tree["experience"]) is not None
        assert reconciled.operation == "orphan_reconciliation"
        assert service.restore(EntityType.EXPERIENCES, tree["experience"]).total_affected == 11
        assert not service.recorder.is_open
        assert service.last_sweep_summary is None

    def test_context_manager_flushes(self, store):
        with RetentionService(store) as service:
            service.reconcile(dry_run=True)
        assert not service.recorder.is_open
