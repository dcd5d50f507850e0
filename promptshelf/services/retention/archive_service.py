# promptshelf/services/retention/archive_service.py
"""
Archive sink for records about to be purged.

Handles:
- Serializing ORM rows into JSON-safe documents
- Writing one compressed document per batch to object storage
- Reading archived batches back for inspection or restore
- Choosing the sink from settings (local, s3, or disabled)

A sink raises on failure. The cascade engine turns any such exception into
ArchiveFailure and rolls the purge back, so rows are never deleted without
a durable copy when archiving is required.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from promptshelf.models import utcnow
from promptshelf.services.retention.graph import EntityType
from promptshelf.storage.base import ContentType, StorageProvider
from promptshelf.storage.factory import get_storage_provider

logger = logging.getLogger(__name__)

ARCHIVE_FORMAT_VERSION = 1


def serialize_record(record: Any) -> dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    data = {}
    for column in record.__table__.columns:
        value = getattr(record, column.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        data[column.key] = value
    return data


class ArchiveSink(ABC):
    """Durable export of records before they are deleted."""

    @abstractmethod
    def write(self, entity_type: EntityType, records: list[dict[str, Any]]) -> None:
        """Persist a batch of serialized records. Raise on any failure."""
        pass

    def read_batches(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Archived batch documents for an entity type. Sinks that keep nothing return []."""
        return []


class NullArchiveSink(ArchiveSink):
    """Discards records. Used when ARCHIVE_PROVIDER=none."""

    def write(self, entity_type: EntityType, records: list[dict[str, Any]]) -> None:
        logger.debug(f"Archiving disabled; dropping {len(records)} {entity_type.value} records")


class StorageArchiveSink(ArchiveSink):
    """
    Writes each batch as one gzip JSON document through a StorageProvider.

    Key layout: archive/<entity_type>/<yyyy>/<mm>/<dd>/<batch uuid>.json.gz
    """

    def __init__(self, storage: StorageProvider):
        self._storage = storage

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    def write(self, entity_type: EntityType, records: list[dict[str, Any]]) -> None:
        if not records:
            return

        archived_at = utcnow()
        batch_id = str(uuid.uuid4())
        document = {
            "format_version": ARCHIVE_FORMAT_VERSION,
            "batch_id": batch_id,
            "entity_type": entity_type.value,
            "archived_at": archived_at.isoformat(),
            "record_count": len(records),
            "records": records,
        }
        key = self._storage.generate_key(entity_type.value, batch_id, archived_at)
        content = json.dumps(document, default=str).encode("utf-8")

        meta = self._storage.upload(
            key,
            content,
            content_type=ContentType.APPLICATION_JSON,
            metadata={"entity-type": entity_type.value, "record-count": str(len(records))},
        )
        logger.info(
            f"Archived {len(records)} {entity_type.value} records to {key}",
            extra={"key": key, "size_bytes": meta.size_bytes, "provider": self._storage.name},
        )

    def read_batches(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """
        Read back every archived batch for an entity type, oldest key first.

        Used to inspect or restore purged records. Keys that vanish between
        listing and download are skipped.
        """
        documents = []
        for key in self._storage.list_keys(f"archive/{entity_type.value}/"):
            stored = self._storage.download(key)
            if stored is None:
                logger.warning(f"Archived batch {key} disappeared before it could be read")
                continue
            documents.append(json.loads(stored.content))
        return documents


def get_archive_sink(settings: Any) -> ArchiveSink:
    """Build the archive sink selected by ARCHIVE_PROVIDER."""
    provider = settings.ARCHIVE_PROVIDER
    if provider == "none":
        logger.warning("ARCHIVE_PROVIDER=none: purged records will not be archived")
        return NullArchiveSink()
    if provider == "s3":
        storage = get_storage_provider(
            "s3",
            bucket=settings.S3_BUCKET,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
        )
    else:
        storage = get_storage_provider("local", base_path=settings.LOCAL_ARCHIVE_PATH)
    return StorageArchiveSink(storage)
