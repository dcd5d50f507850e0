# promptshelf/storage/local_provider.py
"""
Local filesystem storage provider for development and testing.

Mimics S3 behavior but stores archive files locally.
NOT for production use.
"""

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from promptshelf.storage.base import (
    ContentEncoding,
    ContentType,
    StorageMetadata,
    StorageObject,
    StorageProvider,
    compress_content,
    compute_content_hash,
    decompress_content,
)

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """
    Local filesystem storage provider.

    Stores files in a directory structure that mimics S3, with a sidecar
    `.meta.json` per object.

    Configuration:
    - LOCAL_ARCHIVE_PATH: Base directory (default: ./archive)
    """

    def __init__(self, base_path: str | None = None):
        """
        Initialize local storage.

        Args:
            base_path: Base directory for storage (or LOCAL_ARCHIVE_PATH env)
        """
        self._base_path = Path(base_path or os.getenv("LOCAL_ARCHIVE_PATH", "./archive"))
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._metadata_suffix = ".meta.json"

        logger.info(f"Local archive storage initialized: {self._base_path}")

    @property
    def name(self) -> str:
        return "local"

    def _get_path(self, key: str) -> Path:
        """Get filesystem path for key, with path traversal protection."""
        resolved = (self._base_path / key).resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise ValueError("Path traversal detected")
        return resolved

    def _get_metadata_path(self, key: str) -> Path:
        """Get metadata file path for key, with path traversal protection."""
        resolved = (self._base_path / f"{key}{self._metadata_suffix}").resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise ValueError("Path traversal detected")
        return resolved

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: dict[str, str] | None = None,
    ) -> StorageMetadata:
        """Upload content to local filesystem."""
        content_hash = compute_content_hash(content)
        compressed = compress_content(content)

        file_path = self._get_path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(compressed)

        storage_metadata = StorageMetadata(
            uri=key,
            content_hash=content_hash,
            content_type=content_type,
            content_encoding=ContentEncoding.GZIP,
            size_bytes=len(compressed),
            original_size_bytes=len(content),
            uploaded_at=datetime.now(UTC),
            custom_metadata=metadata or {},
        )

        meta_dict = {
            "uri": storage_metadata.uri,
            "content_hash": storage_metadata.content_hash,
            "content_type": storage_metadata.content_type.value,
            "content_encoding": storage_metadata.content_encoding.value,
            "size_bytes": storage_metadata.size_bytes,
            "original_size_bytes": storage_metadata.original_size_bytes,
            "uploaded_at": storage_metadata.uploaded_at.isoformat(),
            "custom_metadata": storage_metadata.custom_metadata,
        }
        self._get_metadata_path(key).write_text(json.dumps(meta_dict, indent=2))

        logger.debug(f"Archived to local: {key}")
        return storage_metadata

    def download(self, key: str) -> StorageObject | None:
        """Download and decompress content from local filesystem."""
        file_path = self._get_path(key)
        if not file_path.exists():
            return None

        compressed = file_path.read_bytes()
        content = decompress_content(compressed)

        metadata = self._load_metadata(key)
        if not metadata:
            # Create minimal metadata if missing
            metadata = StorageMetadata(
                uri=key,
                content_hash=compute_content_hash(content),
                content_type=ContentType.APPLICATION_JSON,
                content_encoding=ContentEncoding.GZIP,
                size_bytes=len(compressed),
                original_size_bytes=len(content),
                uploaded_at=datetime.fromtimestamp(file_path.stat().st_mtime, UTC),
            )

        return StorageObject(content=content, metadata=metadata)

    def _load_metadata(self, key: str) -> StorageMetadata | None:
        """Load metadata from file."""
        meta_path = self._get_metadata_path(key)
        if not meta_path.exists():
            return None

        try:
            meta_dict = json.loads(meta_path.read_text())
            return StorageMetadata(
                uri=meta_dict["uri"],
                content_hash=meta_dict["content_hash"],
                content_type=ContentType(meta_dict["content_type"]),
                content_encoding=ContentEncoding(meta_dict["content_encoding"]),
                size_bytes=meta_dict["size_bytes"],
                original_size_bytes=meta_dict["original_size_bytes"],
                uploaded_at=datetime.fromisoformat(meta_dict["uploaded_at"]),
                custom_metadata=meta_dict.get("custom_metadata", {}),
            )
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning(f"Failed to load metadata for {key}: {e}")
            return None

    def list_keys(self, prefix: str = "archive/") -> list[str]:
        """List all objects with the given prefix."""
        prefix_path = self._base_path / prefix
        if not prefix_path.exists():
            return []

        return sorted(
            str(meta_file.relative_to(self._base_path)).removesuffix(self._metadata_suffix)
            for meta_file in prefix_path.rglob(f"*{self._metadata_suffix}")
        )
