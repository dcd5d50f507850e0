# promptshelf/storage/s3_provider.py
"""
S3 storage provider implementation using boto3.

Supports:
- AWS S3
- S3-compatible services (MinIO, DigitalOcean Spaces, etc.)
"""

import logging
import os
from datetime import UTC, datetime

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

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


class S3StorageProvider(StorageProvider):
    """
    S3/S3-compatible storage provider.

    Configuration via environment:
    - S3_BUCKET: Bucket name (required)
    - S3_ENDPOINT_URL: Custom endpoint for S3-compatible services
    - S3_REGION: AWS region (default: us-east-1)
    - AWS_ACCESS_KEY_ID: AWS credentials
    - AWS_SECRET_ACCESS_KEY: AWS credentials
    """

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        client=None,
    ):
        """
        Initialize S3 provider.

        Args:
            bucket: S3 bucket name (or S3_BUCKET env var)
            endpoint_url: Custom endpoint for S3-compatible services
            region: AWS region
            client: Pre-built boto3 client (tests)
        """
        self._bucket = bucket or os.getenv("S3_BUCKET")
        if not self._bucket:
            raise ValueError("S3 bucket required. Set S3_BUCKET env var or pass bucket.")

        self._endpoint_url = endpoint_url or os.getenv("S3_ENDPOINT_URL")
        self._region = region or os.getenv("S3_REGION", "us-east-1")

        if client is None:
            config = Config(
                retries={"max_attempts": 3, "mode": "adaptive"},
                connect_timeout=5,
                read_timeout=30,
            )
            client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name=self._region,
                config=config,
            )
        self._client = client

        logger.info(f"S3 archive storage initialized: bucket={self._bucket}")

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(
        self,
        key: str,
        content: bytes,
        content_type: ContentType = ContentType.APPLICATION_JSON,
        metadata: dict[str, str] | None = None,
    ) -> StorageMetadata:
        """Upload content to S3 with gzip compression."""
        content_hash = compute_content_hash(content)
        original_size = len(content)
        compressed = compress_content(content)

        s3_metadata = dict(metadata or {})
        s3_metadata.update({
            "original-size": str(original_size),
            "content-hash": content_hash,
        })

        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=compressed,
                ContentType=content_type.value,
                ContentEncoding=ContentEncoding.GZIP.value,
                Metadata=s3_metadata,
            )
        except ClientError as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise

        logger.debug(f"Archived to S3: {key} (original={original_size}, compressed={len(compressed)})")

        return StorageMetadata(
            uri=key,
            content_hash=content_hash,
            content_type=content_type,
            content_encoding=ContentEncoding.GZIP,
            size_bytes=len(compressed),
            original_size_bytes=original_size,
            uploaded_at=datetime.now(UTC),
            custom_metadata=s3_metadata,
        )

    def download(self, key: str) -> StorageObject | None:
        """Download and decompress content from S3."""
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code in ("NoSuchKey", "404"):
                logger.debug(f"S3 object not found: {key}")
                return None
            logger.error(f"S3 download failed for {key}: {e}")
            raise

        compressed = response["Body"].read()
        s3_metadata = response.get("Metadata", {})
        content = decompress_content(compressed)

        metadata = StorageMetadata(
            uri=key,
            content_hash=s3_metadata.get("content-hash", ""),
            content_type=ContentType(response.get("ContentType", ContentType.APPLICATION_JSON.value)),
            content_encoding=ContentEncoding.GZIP,
            size_bytes=len(compressed),
            original_size_bytes=int(s3_metadata.get("original-size", len(content))),
            uploaded_at=response.get("LastModified", datetime.now(UTC)),
            custom_metadata=s3_metadata,
        )
        return StorageObject(content=content, metadata=metadata)

    def list_keys(self, prefix: str = "archive/") -> list[str]:
        """List all objects with the given prefix."""
        keys = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return keys
