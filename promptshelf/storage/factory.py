# promptshelf/storage/factory.py
"""
Factory function for creating archive storage providers.
"""

import logging
import os

from promptshelf.storage.base import StorageProvider

logger = logging.getLogger(__name__)


def get_storage_provider(
    provider_name: str | None = None,
    **kwargs,
) -> StorageProvider:
    """
    Create the storage provider backing the archive sink.

    Args:
        provider_name: 's3' or 'local' (default from ARCHIVE_PROVIDER env)
        **kwargs: Additional arguments for the provider

    Returns:
        A new StorageProvider; callers own its lifetime.

    Environment:
        ARCHIVE_PROVIDER: 'local' (default) or 's3'
    """
    name = provider_name or os.getenv("ARCHIVE_PROVIDER", "local")
    name = name.lower().strip()

    if name == "s3":
        from promptshelf.storage.s3_provider import S3StorageProvider
        provider = S3StorageProvider(**kwargs)
    elif name == "local":
        from promptshelf.storage.local_provider import LocalStorageProvider
        provider = LocalStorageProvider(**kwargs)
    else:
        raise ValueError(f"Unknown storage provider: {name}. Available: s3, local")

    logger.info(f"Storage provider initialized: {provider.name}")
    return provider
