"""Tests for the retention CLI."""

from unittest.mock import MagicMock, patch

import pytest

from promptshelf.cli import retention as cli
from promptshelf.services.retention.cascade import CascadeResult
from promptshelf.services.retention.errors import AncestorDeleted, RecordNotFound
from promptshelf.services.retention.graph import EntityType
from promptshelf.services.retention.sweeper import CleanupResult


@pytest.fixture
def service():
    svc = MagicMock()
    with patch("promptshelf.cli.retention.get_service", return_value=svc):
        yield svc


def _cascade(operation="tombstone"):
    result = CascadeResult(EntityType.EXPERIENCES, 42, operation)
    result.add_affected(EntityType.EXPERIENCES, 1)
    result.add_affected(EntityType.COMMENTS, 5)
    return result


class TestSweep:
    def test_requires_confirm(self, service):
        with pytest.raises(SystemExit) as exc:
            cli.main(["sweep"])
        assert exc.value.code == 1
        service.run_sweep.assert_not_called()

    def test_dry_run(self, service, capsys):
        service.run_sweep.return_value = [CleanupResult(operation="age_out:experiences", dry_run=True)]

        cli.main(["sweep", "--dry-run"])

        service.run_sweep.assert_called_once_with(dry_run=True)
        assert "age_out:experiences (dry run)" in capsys.readouterr().out
        service.close.assert_called_once()

    def test_errors_exit_nonzero(self, service, capsys):
        service.run_sweep.return_value = [
            CleanupResult(operation="grace_period:users", errors=["users 3: store unavailable"]),
        ]

        with pytest.raises(SystemExit) as exc:
            cli.main(["sweep", "--confirm"])

        assert exc.value.code == 1
        assert "users 3: store unavailable" in capsys.readouterr().out


class TestDirectOperations:
    def test_tombstone(self, service, capsys):
        service.tombstone.return_value = _cascade()

        cli.main(["tombstone", "experiences", "42", "--reason", "spam"])

        service.tombstone.assert_called_once_with("experiences", 42, reason="spam")
        out = capsys.readouterr().out
        assert "Affected: 6" in out
        assert "comments: 5" in out

    def test_restore_error(self, service, capsys):
        service.restore.side_effect = AncestorDeleted("ancestor users 7 is tombstoned")

        with pytest.raises(SystemExit) as exc:
            cli.main(["restore", "experiences", "42"])

        assert exc.value.code == 1
        assert "Error: ancestor users 7 is tombstoned" in capsys.readouterr().out
        service.close.assert_called_once()

    def test_takedown_requires_reason_flag(self, service):
        with pytest.raises(SystemExit):
            cli.main(["takedown", "experiences", "42"])
        service.takedown.assert_not_called()

    def test_takedown_prints_removed(self, service, capsys):
        result = _cascade("takedown")
        result.removed[EntityType.REACTIONS] = 2
        service.takedown.return_value = result

        cli.main(["takedown", "experiences", "42", "--reason", "abuse"])

        assert "Removed reactions: 2" in capsys.readouterr().out


class TestReconcile:
    def test_defaults_to_dry_run(self, service):
        service.reconcile.return_value = CleanupResult(operation="orphan_reconciliation", dry_run=True)
        cli.main(["reconcile"])
        service.reconcile.assert_called_once_with(dry_run=True)

    def test_execute(self, service):
        service.reconcile.return_value = CleanupResult(operation="orphan_reconciliation")
        cli.main(["reconcile", "--execute"])
        service.reconcile.assert_called_once_with(dry_run=False)


class TestExportAndSchedule:
    def test_export_missing_user(self, service, capsys):
        service.export_user_data.side_effect = RecordNotFound("users 9 not found")

        with pytest.raises(SystemExit):
            cli.main(["export-user", "9"])

        assert "users 9 not found" in capsys.readouterr().out

    def test_export_prints_json(self, service, capsys):
        service.export_user_data.return_value = {"user": {"id": 9}}
        cli.main(["export-user", "9"])
        assert '"id": 9' in capsys.readouterr().out

    def test_archived_lists_batches(self, service, capsys):
        service.read_archive.return_value = [
            {"archived_at": "2026-01-06T03:00:00", "batch_id": "b-1", "record_count": 5, "records": []},
        ]

        cli.main(["archived", "comments"])

        service.read_archive.assert_called_once_with("comments")
        out = capsys.readouterr().out
        assert "Archived comments: 1 batches" in out
        assert "b-1  5 records" in out
        service.close.assert_called_once()

    def test_archived_unknown_type(self, service, capsys):
        service.read_archive.side_effect = ValueError("Unknown entity type 'bookmarks'")

        with pytest.raises(SystemExit):
            cli.main(["archived", "bookmarks"])

        assert "Unknown entity type" in capsys.readouterr().out

    def test_schedule_stops_after_max_runs(self, service):
        service.run_sweep.return_value = []

        with patch("promptshelf.cli.retention.time.sleep") as sleep:
            cli.main(["schedule", "--interval-hours", "1", "--max-runs", "2"])

        assert service.run_sweep.call_count == 2
        sleep.assert_called_once_with(3600)
        service.close.assert_called_once()

    def test_status(self, service, capsys):
        service.get_retention_stats.return_value = {
            EntityType.USERS: {"total": 3, "active": 2, "tombstoned": 1, "eligible_for_purge": 0},
        }
        service.preview.return_value = {EntityType.USERS: {"pending_tombstone": 1}}

        cli.main(["status"])

        out = capsys.readouterr().out
        assert "users" in out
        assert "Pending tombstone: 1" in out
