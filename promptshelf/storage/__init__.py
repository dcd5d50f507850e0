"""
Storage provider abstraction for retention archives.

Records are exported to object storage (S3) before they are purged.
This module provides a clean interface for upload/download operations.
"""

from promptshelf.storage.base import (
    ContentEncoding,
    ContentType,
    StorageMetadata,
    StorageObject,
    StorageProvider,
)
from promptshelf.storage.factory import get_storage_provider
from promptshelf.storage.local_provider import LocalStorageProvider

__all__ = [
    "StorageProvider",
    "StorageObject",
    "StorageMetadata",
    "ContentType",
    "ContentEncoding",
    "LocalStorageProvider",
    "get_storage_provider",
]
