# promptshelf/models.py
"""
Database models for the content-sharing platform.

Tables:
- User: account owning experiences
- Experience: a shared AI-assisted coding experience
- Prompt: ordered prompts inside an experience
- Comment, Reaction: feedback left on an experience
- PromptRating: per-user score for a prompt
- LifecycleEvent: immutable audit trail of retention operations

Every content table carries the same lifecycle columns:
- created_at: immutable creation instant
- tombstoned_at: null while Active, set when logically deleted
- deletion_reason: why the record was tombstoned (roots only)
A row missing from its table is Purged.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from promptshelf.database import Base


def utcnow() -> datetime:
    """Naive UTC now; all lifecycle timestamps are stored without tzinfo."""
    return datetime.now(UTC).replace(tzinfo=None)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class LifecycleEventType(str, Enum):
    """Audit event types written by the retention engine."""
    TOMBSTONED = "tombstoned"
    RESTORED = "restored"
    ARCHIVED = "archived"
    PURGED = "purged"
    TAKEN_DOWN = "taken_down"
    ORPHAN_REPAIRED = "orphan_repaired"


class LifecycleColumns:
    """Lifecycle columns shared by every entity table."""
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    tombstoned_at = Column(DateTime, nullable=True, index=True)
    deletion_reason = Column(String(255), nullable=True)


# -----------------------------------------------------------------------------
# User
# -----------------------------------------------------------------------------

class User(LifecycleColumns, Base):
    """Platform account. Root of the ownership graph."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    bio = Column(Text, nullable=True)


# -----------------------------------------------------------------------------
# Experience
# -----------------------------------------------------------------------------

class Experience(LifecycleColumns, Base):
    """A shared experience, owned by exactly one user."""
    __tablename__ = "experiences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")


# -----------------------------------------------------------------------------
# Experience children
# -----------------------------------------------------------------------------

class Prompt(LifecycleColumns, Base):
    """A prompt inside an experience, kept in display order."""
    __tablename__ = "prompts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)


class Comment(LifecycleColumns, Base):
    """Comment on an experience. user_id is the author, not an owner."""
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)


class Reaction(LifecycleColumns, Base):
    """Reaction on an experience (one per user per experience)."""
    __tablename__ = "reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reaction_type = Column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "experience_id", name="uq_reactions_user_experience"),
    )


class PromptRating(LifecycleColumns, Base):
    """Rating of a prompt (one per user per prompt)."""
    __tablename__ = "prompt_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    prompt_id = Column(Integer, ForeignKey("prompts.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "prompt_id", name="uq_prompt_ratings_user_prompt"),
    )


# -----------------------------------------------------------------------------
# Audit trail
# -----------------------------------------------------------------------------

class LifecycleEvent(Base):
    """
    Immutable audit record of a retention operation.

    Written in the same transaction as the change it describes, so a rolled
    back cascade leaves no event behind.
    """
    __tablename__ = "lifecycle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(32), nullable=False)
    record_id = Column(Integer, nullable=False)
    event_type = Column(String(32), nullable=False)
    event_timestamp = Column(DateTime, default=utcnow, nullable=False)
    initiated_by = Column(String(64), nullable=False)
    event_metadata = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_lifecycle_events_entity", "entity_type", "record_id"),
    )
