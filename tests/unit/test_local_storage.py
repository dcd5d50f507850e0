"""Tests for LocalStorageProvider."""

import os
import tempfile
from datetime import datetime

import pytest

from promptshelf.storage.base import ContentType
from promptshelf.storage.factory import get_storage_provider
from promptshelf.storage.local_provider import LocalStorageProvider


class TestPathTraversal:
    """Verify _get_path rejects path traversal attempts."""

    def setup_method(self):
        self.tmpdir = os.path.realpath(tempfile.mkdtemp())
        self.provider = LocalStorageProvider(base_path=self.tmpdir)

    def test_traversal_with_dotdot(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_path("../../../etc/passwd")

    def test_traversal_with_absolute(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_path("/etc/passwd")

    def test_normal_key_succeeds(self):
        path = self.provider._get_path("archive/users/2026/01/06/batch.json.gz")
        assert str(path).startswith(self.tmpdir)

    def test_metadata_traversal(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.provider._get_metadata_path("../../../etc/passwd")


class TestUploadDownload:
    def test_round_trip_with_metadata(self, tmp_path):
        provider = LocalStorageProvider(base_path=str(tmp_path))
        content = b'{"records": []}'

        meta = provider.upload("archive/users/a.json.gz", content, metadata={"record-count": "0"})
        stored = provider.download("archive/users/a.json.gz")

        assert stored.content == content
        assert stored.metadata.content_hash == meta.content_hash
        assert stored.metadata.content_type == ContentType.APPLICATION_JSON
        assert stored.metadata.custom_metadata == {"record-count": "0"}
        assert meta.original_size_bytes == len(content)

    def test_missing_key(self, tmp_path):
        provider = LocalStorageProvider(base_path=str(tmp_path))
        assert provider.download("archive/nope.json.gz") is None

    def test_list_keys_by_prefix(self, tmp_path):
        provider = LocalStorageProvider(base_path=str(tmp_path))
        provider.upload("archive/users/b.json.gz", b"{}")
        provider.upload("archive/users/a.json.gz", b"{}")
        provider.upload("archive/comments/c.json.gz", b"{}")

        assert provider.list_keys("archive/users/") == [
            "archive/users/a.json.gz",
            "archive/users/b.json.gz",
        ]
        assert len(provider.list_keys()) == 3
        assert provider.list_keys("archive/reactions/") == []

    def test_generate_key(self, tmp_path):
        provider = LocalStorageProvider(base_path=str(tmp_path))
        key = provider.generate_key("experiences", "batch-1", datetime(2026, 1, 6))
        assert key == "archive/experiences/2026/01/06/batch-1.json.gz"


class TestFactory:
    def test_local(self, tmp_path):
        provider = get_storage_provider("local", base_path=str(tmp_path))
        assert provider.name == "local"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown storage provider"):
            get_storage_provider("ftp")
