# promptshelf/services/retention/store.py
"""
Generic transactional record access for the retention engine.

The engine never touches ORM models directly. It asks a UnitOfWork to get,
find, update, delete and count rows of an EntityType using a RecordFilter.
Each EntityType is served by one EntityAccessor; the accessors are resolved
into a dispatch table once, when the store is built.

A RecordStore.transaction() is one atomic unit: it commits when the block
exits cleanly and rolls back on any exception, translating driver errors
into the retention error taxonomy on the way out.
"""

import logging
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy import exists, text
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from promptshelf.models import (
    Comment,
    Experience,
    LifecycleEvent,
    LifecycleEventType,
    Prompt,
    PromptRating,
    Reaction,
    User,
    utcnow,
)
from promptshelf.services.retention.errors import ConstraintViolation, RetentionError, TransientStoreError
from promptshelf.services.retention.graph import DEFAULT_GRAPH, EntityGraph, EntityType
from promptshelf.services.retention.states import LifecycleState

logger = logging.getLogger(__name__)

# Keep IN (...) lists well under driver bind-parameter limits
ID_CHUNK_SIZE = 500

MODEL_FOR_TYPE = {
    EntityType.USERS: User,
    EntityType.EXPERIENCES: Experience,
    EntityType.PROMPTS: Prompt,
    EntityType.COMMENTS: Comment,
    EntityType.REACTIONS: Reaction,
    EntityType.PROMPT_RATINGS: PromptRating,
}


@dataclass(frozen=True)
class RecordFilter:
    """
    Row selection for one entity type. Unset fields do not filter.

    `owner_active` keeps only rows whose owning row exists and is Active.
    `limit` and `order_by` only apply to reads.
    """
    ids: Collection[int] | None = None
    parent_ids: Collection[int] | None = None
    state: LifecycleState | None = None
    created_before: datetime | None = None
    tombstoned_before: datetime | None = None
    tombstoned_at: datetime | None = None
    owner_active: bool = False
    limit: int | None = None
    order_by: str | None = None

    def is_empty_selection(self) -> bool:
        """An explicit empty id list can never match."""
        return (self.ids is not None and len(self.ids) == 0) or (
            self.parent_ids is not None and len(self.parent_ids) == 0
        )


def _chunks(values: Collection[int], size: int) -> Iterator[list[int]]:
    items = list(values)
    for i in range(0, len(items), size):
        yield items[i : i + size]


class EntityAccessor:
    """Maps one EntityType onto its ORM model and owning foreign key."""

    def __init__(
        self,
        entity_type: EntityType,
        model: type,
        parent_key: str | None = None,
        parent_model: type | None = None,
    ):
        self.entity_type = entity_type
        self.model = model
        self.parent_key = parent_key
        self.parent_model = parent_model
        self._parent_column = getattr(model, parent_key) if parent_key else None

    def criteria(self, flt: RecordFilter) -> list:
        model = self.model
        clauses = []
        if flt.ids is not None:
            clauses.append(model.id.in_(list(flt.ids)))
        if flt.parent_ids is not None:
            if self._parent_column is None:
                raise ConstraintViolation(
                    f"{self.entity_type.value} has no owning parent to filter on",
                    entity_type=self.entity_type,
                )
            clauses.append(self._parent_column.in_(list(flt.parent_ids)))
        if flt.state == LifecycleState.ACTIVE:
            clauses.append(model.tombstoned_at.is_(None))
        elif flt.state == LifecycleState.TOMBSTONED:
            clauses.append(model.tombstoned_at.isnot(None))
        if flt.created_before is not None:
            clauses.append(model.created_at < flt.created_before)
        if flt.tombstoned_before is not None:
            clauses.append(model.tombstoned_at < flt.tombstoned_before)
        if flt.tombstoned_at is not None:
            clauses.append(model.tombstoned_at == flt.tombstoned_at)
        if flt.owner_active and self._parent_column is not None:
            owner = self.parent_model
            clauses.append(exists().where(owner.id == self._parent_column, owner.tombstoned_at.is_(None)))
        return clauses

    def ordering(self, flt: RecordFilter):
        if flt.order_by == "created_at":
            return self.model.created_at.asc()
        if flt.order_by == "tombstoned_at":
            return self.model.tombstoned_at.asc()
        return self.model.id.asc()

    def parent_id(self, record: Any) -> int | None:
        if self.parent_key is None:
            return None
        return getattr(record, self.parent_key)


def build_accessors(graph: EntityGraph = DEFAULT_GRAPH) -> dict[EntityType, EntityAccessor]:
    """Build the per-type dispatch table for every type in the graph."""
    accessors = {}
    for entity_type in graph.types:
        edge = graph.edge_to(entity_type)
        accessors[entity_type] = EntityAccessor(
            entity_type,
            MODEL_FOR_TYPE[entity_type],
            parent_key=edge.foreign_key if edge else None,
            parent_model=MODEL_FOR_TYPE[edge.parent] if edge else None,
        )
    return accessors


class UnitOfWork:
    """Record operations bound to one open transaction."""

    def __init__(self, session: Session, accessors: dict[EntityType, EntityAccessor]):
        self.session = session
        self._accessors = accessors

    def accessor(self, entity_type: EntityType) -> EntityAccessor:
        return self._accessors[entity_type]

    def _split(self, flt: RecordFilter) -> Iterator[RecordFilter]:
        """Break large id / parent id lists into bounded chunks."""
        if flt.ids is not None and len(flt.ids) > ID_CHUNK_SIZE:
            for chunk in _chunks(flt.ids, ID_CHUNK_SIZE):
                yield from self._split(replace(flt, ids=chunk))
        elif flt.parent_ids is not None and len(flt.parent_ids) > ID_CHUNK_SIZE:
            for chunk in _chunks(flt.parent_ids, ID_CHUNK_SIZE):
                yield replace(flt, parent_ids=chunk)
        else:
            yield flt

    def get(self, entity_type: EntityType, record_id: int) -> Any | None:
        return self.session.get(self.accessor(entity_type).model, record_id)

    def find_many(self, entity_type: EntityType, flt: RecordFilter) -> list:
        if flt.is_empty_selection():
            return []
        accessor = self.accessor(entity_type)
        results: list = []
        for part in self._split(flt):
            query = (
                self.session.query(accessor.model)
                .filter(*accessor.criteria(part))
                .order_by(accessor.ordering(part))
            )
            if flt.limit is not None:
                remaining = flt.limit - len(results)
                if remaining <= 0:
                    break
                query = query.limit(remaining)
            results.extend(query.all())
        return results

    def find_ids(self, entity_type: EntityType, flt: RecordFilter) -> list[int]:
        if flt.is_empty_selection():
            return []
        accessor = self.accessor(entity_type)
        ids: list[int] = []
        for part in self._split(flt):
            query = self.session.query(accessor.model.id).filter(*accessor.criteria(part))
            if flt.limit is not None:
                query = query.order_by(accessor.ordering(part)).limit(max(flt.limit - len(ids), 0))
            ids.extend(row.id for row in query.all())
        return ids

    def count(self, entity_type: EntityType, flt: RecordFilter | None = None) -> int:
        flt = flt or RecordFilter()
        if flt.is_empty_selection():
            return 0
        accessor = self.accessor(entity_type)
        return sum(
            self.session.query(accessor.model).filter(*accessor.criteria(part)).count()
            for part in self._split(flt)
        )

    def update_many(self, entity_type: EntityType, flt: RecordFilter, values: dict[str, Any]) -> int:
        if flt.is_empty_selection():
            return 0
        accessor = self.accessor(entity_type)
        updated = 0
        for part in self._split(flt):
            updated += (
                self.session.query(accessor.model)
                .filter(*accessor.criteria(part))
                .update(values, synchronize_session=False)
            )
        self.session.expire_all()
        return updated

    def delete_many(self, entity_type: EntityType, flt: RecordFilter) -> int:
        if flt.is_empty_selection():
            return 0
        accessor = self.accessor(entity_type)
        deleted = 0
        for part in self._split(flt):
            deleted += (
                self.session.query(accessor.model)
                .filter(*accessor.criteria(part))
                .delete(synchronize_session=False)
            )
        self.session.expire_all()
        return deleted

    def parent_id_of(self, entity_type: EntityType, record: Any) -> int | None:
        return self.accessor(entity_type).parent_id(record)

    def missing_parent_ids(self, entity_type: EntityType, parent_type: EntityType) -> list[int]:
        """Distinct owner ids referenced by `entity_type` rows whose owner row is gone."""
        child = self.accessor(entity_type)
        parent = self.accessor(parent_type)
        if child.parent_key is None:
            return []
        fk = getattr(child.model, child.parent_key)
        rows = (
            self.session.query(fk)
            .filter(~exists().where(parent.model.id == fk))
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def add_event(
        self,
        entity_type: EntityType,
        record_id: int,
        event_type: LifecycleEventType,
        initiated_by: str,
        event_metadata: dict | None = None,
    ) -> LifecycleEvent:
        """Append an audit event to the current transaction."""
        event = LifecycleEvent(
            entity_type=entity_type.value,
            record_id=record_id,
            event_type=event_type.value,
            event_timestamp=utcnow(),
            initiated_by=initiated_by,
            event_metadata=event_metadata,
        )
        self.session.add(event)
        return event


class RecordStore:
    """
    Transactional access to the relational store.

    Holds no locks of its own; atomicity and isolation come from the
    database transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        accessors: dict[EntityType, EntityAccessor] | None = None,
        transaction_timeout_ms: int = 0,
    ):
        self._session_factory = session_factory
        self._accessors = accessors if accessors is not None else build_accessors()
        self.transaction_timeout_ms = transaction_timeout_ms

    def _apply_deadline(self, session: Session) -> None:
        if not self.transaction_timeout_ms:
            return
        if session.get_bind().dialect.name == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {int(self.transaction_timeout_ms)}"))

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Open one atomic unit of work; commit on success, roll back on error."""
        session = self._session_factory()
        try:
            self._apply_deadline(session)
            yield UnitOfWork(session, self._accessors)
            session.commit()
        except RetentionError:
            session.rollback()
            raise
        except (IntegrityError, DataError) as e:
            session.rollback()
            raise ConstraintViolation(f"Integrity error: {getattr(e, 'orig', e)}") from e
        except OperationalError as e:
            session.rollback()
            raise TransientStoreError(f"Store unavailable: {getattr(e, 'orig', e)}") from e
        except DBAPIError as e:
            session.rollback()
            if e.connection_invalidated:
                raise TransientStoreError(f"Connection lost: {getattr(e, 'orig', e)}") from e
            raise
        except TimeoutError as e:
            session.rollback()
            raise TransientStoreError(f"Transaction deadline exceeded: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
