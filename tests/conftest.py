# tests/conftest.py
"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database. SQLite does not enforce
foreign keys by default, which lets tests force-delete parent rows to build
orphans the way an out-of-band delete would.
"""

import itertools
import os

import pytest

# Set test environment
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from promptshelf.database import Base  # noqa: E402
from promptshelf.models import (  # noqa: E402
    Comment,
    Experience,
    Prompt,
    PromptRating,
    Reaction,
    User,
    utcnow,
)
from promptshelf.services.retention.archive_service import ArchiveSink  # noqa: E402


# -----------------------------------------------------------------------------
# Archive sinks
# -----------------------------------------------------------------------------


class InMemoryArchiveSink(ArchiveSink):
    """Keeps every written batch in memory."""

    def __init__(self):
        self.batches = []

    def write(self, entity_type, records):
        self.batches.append((entity_type, list(records)))

    def records(self, entity_type=None):
        return [
            record
            for batch_type, records in self.batches
            if entity_type is None or batch_type == entity_type
            for record in records
        ]


class FailingArchiveSink(ArchiveSink):
    """Fails every write, like an unreachable bucket."""

    def __init__(self):
        self.attempts = 0

    def write(self, entity_type, records):
        self.attempts += 1
        raise OSError("archive bucket unavailable")


# -----------------------------------------------------------------------------
# Seeding
# -----------------------------------------------------------------------------


class Seeder:
    """Inserts rows directly, bypassing the retention engine."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._counter = itertools.count(1)

    def _add(self, row):
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
            return row.id
        finally:
            session.close()

    def user(self, created_at=None, tombstoned_at=None):
        n = next(self._counter)
        return self._add(User(
            username=f"user{n}",
            email=f"user{n}@example.com",
            bio="Writes about prompts",
            created_at=created_at or utcnow(),
            tombstoned_at=tombstoned_at,
        ))

    def experience(self, user_id, created_at=None, tombstoned_at=None):
        return self._add(Experience(
            user_id=user_id,
            title=f"Experience {next(self._counter)}",
            description="Refactoring with an assistant",
            created_at=created_at or utcnow(),
            tombstoned_at=tombstoned_at,
        ))

    def prompt(self, experience_id, order_index=0, tombstoned_at=None):
        return self._add(Prompt(
            experience_id=experience_id,
            content="Explain this stack trace",
            order_index=order_index,
            tombstoned_at=tombstoned_at,
        ))

    def comment(self, experience_id, user_id, tombstoned_at=None):
        return self._add(Comment(
            experience_id=experience_id,
            user_id=user_id,
            content="Nice write-up",
            tombstoned_at=tombstoned_at,
        ))

    def reaction(self, experience_id, user_id, tombstoned_at=None):
        return self._add(Reaction(
            experience_id=experience_id,
            user_id=user_id,
            reaction_type="like",
            tombstoned_at=tombstoned_at,
        ))

    def rating(self, prompt_id, user_id, rating=5, tombstoned_at=None):
        return self._add(PromptRating(
            prompt_id=prompt_id,
            user_id=user_id,
            rating=rating,
            tombstoned_at=tombstoned_at,
        ))

    def experience_tree(self, created_at=None, prompts=3, comments=5, reactions=2, ratings_per_prompt=0):
        """
        One owner, one experience and its children.

        Commenters and reactors are separate, recently created users.
        """
        owner = self.user(created_at=created_at)
        experience = self.experience(owner, created_at=created_at)
        others = [self.user() for _ in range(max(comments, reactions, ratings_per_prompt, 1))]
        tree = {
            "user": owner,
            "experience": experience,
            "prompts": [self.prompt(experience, order_index=i) for i in range(prompts)],
            "comments": [self.comment(experience, others[i % len(others)]) for i in range(comments)],
            "reactions": [self.reaction(experience, others[i]) for i in range(reactions)],
            "others": others,
        }
        tree["ratings"] = [
            self.rating(prompt_id, others[i])
            for prompt_id in tree["prompts"]
            for i in range(ratings_per_prompt)
        ]
        return tree

    def get(self, model, record_id):
        session = self._session_factory()
        try:
            return session.get(model, record_id)
        finally:
            session.close()

    def stamp(self, model, record_id):
        row = self.get(model, record_id)
        return row.tombstoned_at if row is not None else None

    def count(self, model, **filters):
        session = self._session_factory()
        try:
            return session.query(model).filter_by(**filters).count()
        finally:
            session.close()

    def set_stamp(self, model, record_id, value):
        session = self._session_factory()
        try:
            session.query(model).filter(model.id == record_id).update({"tombstoned_at": value})
            session.commit()
        finally:
            session.close()

    def force_delete(self, model, record_id):
        """Delete a row outside the engine (no cascade)."""
        session = self._session_factory()
        try:
            session.query(model).filter(model.id == record_id).delete()
            session.commit()
        finally:
            session.close()


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def db_engine():
    """Fresh in-memory database shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine, future=True)


@pytest.fixture
def store(session_factory):
    from promptshelf.services.retention.store import RecordStore

    return RecordStore(session_factory)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def archive_sink():
    return InMemoryArchiveSink()


@pytest.fixture
def failing_sink():
    return FailingArchiveSink()


@pytest.fixture
def engine(store, archive_sink):
    """Cascade engine with default policies and an in-memory archive."""
    from promptshelf.services.retention.cascade import CascadeEngine

    return CascadeEngine(store, archive_sink=archive_sink)


@pytest.fixture
def recorder():
    from promptshelf.logging_config import RetentionRecorder

    return RetentionRecorder()


@pytest.fixture
def now():
    return utcnow()
