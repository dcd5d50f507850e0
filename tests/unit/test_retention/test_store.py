# tests/unit/test_retention/test_store.py
"""Unit tests for the transactional record store."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from promptshelf.models import Comment, Experience, LifecycleEvent, LifecycleEventType, User
from promptshelf.services.retention.errors import ConstraintViolation, TransientStoreError
from promptshelf.services.retention.graph import EntityType
from promptshelf.services.retention.states import LifecycleState
from promptshelf.services.retention.store import RecordFilter, RecordStore


class TestRecordFilter:
    """Tests for filter-driven reads and writes."""

    def test_state_and_parent_filters(self, store, seed, now):
        tree = seed.experience_tree(comments=3, reactions=0, prompts=0)
        seed.set_stamp(Comment, tree["comments"][0], now)

        with store.transaction() as uow:
            active = uow.find_ids(
                EntityType.COMMENTS,
                RecordFilter(parent_ids=[tree["experience"]], state=LifecycleState.ACTIVE),
            )
            tombstoned = uow.count(EntityType.COMMENTS, RecordFilter(state=LifecycleState.TOMBSTONED))

        assert sorted(active) == sorted(tree["comments"][1:])
        assert tombstoned == 1

    def test_created_before_and_limit(self, store, seed, now):
        owner = seed.user()
        old = [seed.experience(owner, created_at=now - timedelta(days=900 - i)) for i in range(3)]
        seed.experience(owner, created_at=now)

        with store.transaction() as uow:
            ids = uow.find_ids(
                EntityType.EXPERIENCES,
                RecordFilter(created_before=now - timedelta(days=730), limit=2, order_by="created_at"),
            )

        assert ids == old[:2]

    def test_owner_active_applies_before_limit(self, store, seed, now):
        dead = seed.experience_tree(prompts=0, comments=2, reactions=0)
        seed.set_stamp(Experience, dead["experience"], now - timedelta(days=5))
        orphaned = seed.experience_tree(prompts=0, comments=1, reactions=0)
        seed.force_delete(Experience, orphaned["experience"])
        live = seed.experience_tree(prompts=0, comments=1, reactions=0)

        with store.transaction() as uow:
            ids = uow.find_ids(EntityType.COMMENTS, RecordFilter(owner_active=True, limit=1))
            roots = uow.count(EntityType.USERS, RecordFilter(owner_active=True))

        assert ids == live["comments"]
        assert roots == seed.count(User)

    def test_empty_id_list_matches_nothing(self, store, seed):
        seed.experience_tree()
        with store.transaction() as uow:
            assert uow.find_many(EntityType.PROMPTS, RecordFilter(parent_ids=[])) == []
            assert uow.update_many(EntityType.PROMPTS, RecordFilter(ids=[]), {"tombstoned_at": None}) == 0

    def test_large_id_lists_are_chunked(self, store, seed):
        """Id lists longer than one IN() chunk still select every row."""
        tree = seed.experience_tree(prompts=0, comments=2, reactions=0)
        ids = tree["comments"] + list(range(10_000, 10_700))
        with store.transaction() as uow:
            assert uow.count(EntityType.COMMENTS, RecordFilter(ids=ids)) == 2

    def test_missing_parent_ids(self, store, seed):
        tree = seed.experience_tree(prompts=1, comments=1, reactions=0)
        seed.force_delete(Experience, tree["experience"])

        with store.transaction() as uow:
            assert uow.missing_parent_ids(EntityType.COMMENTS, EntityType.EXPERIENCES) == [tree["experience"]]
            assert uow.missing_parent_ids(EntityType.EXPERIENCES, EntityType.USERS) == []


class TestTransaction:
    """Tests for commit, rollback and error translation."""

    def test_commits_on_success(self, store, seed, now):
        tree = seed.experience_tree(prompts=0, comments=0, reactions=0)
        with store.transaction() as uow:
            uow.update_many(EntityType.EXPERIENCES, RecordFilter(ids=[tree["experience"]]), {"tombstoned_at": now})
            uow.add_event(EntityType.EXPERIENCES, tree["experience"], LifecycleEventType.TOMBSTONED, "test")

        assert seed.stamp(Experience, tree["experience"]) == now
        assert seed.count(LifecycleEvent, record_id=tree["experience"]) == 1

    def test_rolls_back_on_error(self, store, seed, now):
        tree = seed.experience_tree(prompts=0, comments=0, reactions=0)
        with pytest.raises(RuntimeError):
            with store.transaction() as uow:
                uow.update_many(
                    EntityType.EXPERIENCES,
                    RecordFilter(ids=[tree["experience"]]),
                    {"tombstoned_at": now},
                )
                uow.add_event(EntityType.EXPERIENCES, tree["experience"], LifecycleEventType.TOMBSTONED, "test")
                raise RuntimeError("boom")

        assert seed.stamp(Experience, tree["experience"]) is None
        assert seed.count(LifecycleEvent) == 0

    def test_operational_error_is_transient(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("UPDATE", {}, Exception("server closed the connection"))
        store = RecordStore(lambda: session, accessors={})

        with pytest.raises(TransientStoreError, match="server closed"):
            with store.transaction():
                pass

        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_integrity_error_is_constraint_violation(self):
        session = MagicMock()
        session.commit.side_effect = IntegrityError("DELETE", {}, Exception("violates foreign key"))
        store = RecordStore(lambda: session, accessors={})

        with pytest.raises(ConstraintViolation):
            with store.transaction():
                pass

        session.rollback.assert_called_once()

    def test_timeout_is_transient(self):
        session = MagicMock()
        store = RecordStore(lambda: session, accessors={})

        with pytest.raises(TransientStoreError, match="deadline"):
            with store.transaction():
                raise TimeoutError("statement timeout")

    def test_deadline_only_set_on_postgres(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        store = RecordStore(lambda: session, accessors={}, transaction_timeout_ms=5000)

        with store.transaction():
            pass

        statement = session.execute.call_args[0][0]
        assert "statement_timeout = 5000" in str(statement)
