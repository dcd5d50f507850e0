# promptshelf/storage/base.py
"""
Storage provider interface for retention archives.

Design principles:
- Archived records are written to object storage (S3) before they are purged
- Documents compressed before upload (gzip)
- Each upload is verified by SHA256 of the uncompressed document
- Archives are write-once; the retention engine never deletes them
"""

import gzip
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class ContentType(str, Enum):
    """Supported content types for archive documents."""
    APPLICATION_JSON = "application/json"
    TEXT_PLAIN = "text/plain"


class ContentEncoding(str, Enum):
    """Supported content encodings."""
    GZIP = "gzip"
    IDENTITY = "identity"  # No compression


@dataclass
class StorageMetadata:
    """Metadata about stored content."""
    uri: str  # Object key/path
    content_hash: str  # SHA256 of original (uncompressed) content
    content_type: ContentType
    content_encoding: ContentEncoding
    size_bytes: int  # Compressed size
    original_size_bytes: int  # Uncompressed size
    uploaded_at: datetime
    custom_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageObject:
    """A stored object with content and metadata."""
    content: bytes  # Decompressed content
    metadata: StorageMetadata


def compute_content_hash(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compress_content(content: bytes) -> bytes:
    """Compress content using gzip."""
    return gzip.compress(content, compresslevel=6)


def decompress_content(content: bytes) -> bytes:
    """Decompress gzip content."""
    return gzip.decompress(content)


class StorageProvider(ABC):
    """
    Abstract interface for object storage.

    Implementations must handle:
    - Upload with automatic compression
    - Download with automatic decompression
    - Listing by key prefix

    download() and list_keys() are the archive read-back path used to
    inspect or restore purged batches.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 's3', 'local')."""
        pass

    @abstractmethod
    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: dict[str, str] | None = None,
    ) -> StorageMetadata:
        """
        Upload content to storage.

        Args:
            key: Object key/path (e.g., "archive/experiences/2026/01/06/<batch>.json.gz")
            content: Raw content bytes (will be compressed)
            content_type: MIME type of original content
            metadata: Custom metadata to attach

        Returns:
            StorageMetadata with upload details
        """
        pass

    @abstractmethod
    def download(self, key: str) -> StorageObject | None:
        """
        Download content from storage.

        Returns:
            StorageObject with decompressed content, or None if not found
        """
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "archive/") -> list[str]:
        """List object keys under a prefix."""
        pass

    def generate_key(
        self,
        entity_type: str,
        batch_id: str,
        timestamp: datetime | None = None,
    ) -> str:
        """
        Generate a storage key for one archived batch.

        Format: archive/{entity_type}/{year}/{month}/{day}/{batch_id}.json.gz
        """
        ts = timestamp or datetime.now(UTC)
        return f"archive/{entity_type}/{ts.year}/{ts.month:02d}/{ts.day:02d}/{batch_id}.json.gz"
