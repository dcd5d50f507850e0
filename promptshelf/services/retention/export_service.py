# promptshelf/services/retention/export_service.py
"""
User data export.

Collects everything a user owns or authored into one document, typically
before the account is purged. Tombstoned records are included with their
lifecycle fields so the export reflects exactly what the store holds.
"""

import logging
from typing import Any

from promptshelf.models import utcnow
from promptshelf.services.retention.archive_service import serialize_record
from promptshelf.services.retention.errors import RecordNotFound
from promptshelf.services.retention.graph import EntityType
from promptshelf.services.retention.store import RecordFilter, RecordStore, UnitOfWork

logger = logging.getLogger(__name__)

# Types carrying a non-owning author reference (user_id)
AUTHORED_TYPES = (EntityType.COMMENTS, EntityType.REACTIONS, EntityType.PROMPT_RATINGS)


def _authored(uow: UnitOfWork, entity_type: EntityType, user_id: int) -> list[dict[str, Any]]:
    model = uow.accessor(entity_type).model
    rows = uow.session.query(model).filter(model.user_id == user_id).order_by(model.id).all()
    return [serialize_record(row) for row in rows]


def export_user_data(store: RecordStore, user_id: int) -> dict[str, Any]:
    """
    Export a user's profile, experiences (with their prompts, comments and
    reactions) and everything the user authored elsewhere.

    Raises:
        RecordNotFound: The user is not in the store
    """
    with store.transaction() as uow:
        user = uow.get(EntityType.USERS, user_id)
        if user is None:
            raise RecordNotFound(f"users {user_id} not found", EntityType.USERS, user_id)

        experiences = uow.find_many(EntityType.EXPERIENCES, RecordFilter(parent_ids=[user_id]))
        experience_ids = [e.id for e in experiences]

        children: dict[EntityType, dict[int, list[dict[str, Any]]]] = {}
        for child_type in (EntityType.PROMPTS, EntityType.COMMENTS, EntityType.REACTIONS):
            grouped: dict[int, list[dict[str, Any]]] = {}
            for row in uow.find_many(child_type, RecordFilter(parent_ids=experience_ids)):
                grouped.setdefault(row.experience_id, []).append(serialize_record(row))
            children[child_type] = grouped

        data = {
            "exported_at": utcnow().isoformat(),
            "user": serialize_record(user),
            "experiences": [
                {
                    **serialize_record(experience),
                    "prompts": children[EntityType.PROMPTS].get(experience.id, []),
                    "comments": children[EntityType.COMMENTS].get(experience.id, []),
                    "reactions": children[EntityType.REACTIONS].get(experience.id, []),
                }
                for experience in experiences
            ],
        }
        for entity_type in AUTHORED_TYPES:
            data[f"authored_{entity_type.value}"] = _authored(uow, entity_type, user_id)

    logger.info(f"Exported data for user {user_id} ({len(experience_ids)} experiences)")
    return data
