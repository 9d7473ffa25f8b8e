"""Unit tests for content-addressed storage."""

import hashlib
from pathlib import Path

from billtracker.services.storage_service import StorageService, compute_file_hash


class TestStorageService:
    """Tests for StorageService."""

    def test_compute_file_hash(self):
        assert compute_file_hash(b"bill") == hashlib.sha256(b"bill").hexdigest()

    async def test_store_writes_sharded_path(self, tmp_path):
        """Test that files land under the first two hex characters of their hash."""
        storage = StorageService(str(tmp_path))

        stored = await storage.store(b"%PDF-1.4 bill", "jan.pdf")

        identity = compute_file_hash(b"%PDF-1.4 bill")
        assert stored.identity == identity
        assert stored.reused is False
        assert stored.size_bytes == len(b"%PDF-1.4 bill")
        assert Path(stored.path) == (tmp_path / identity[:2] / f"{identity}.pdf").resolve()
        assert Path(stored.path).read_bytes() == b"%PDF-1.4 bill"

    async def test_same_content_reuses_file(self, tmp_path):
        """Test that storing identical bytes under another name reuses the file."""
        storage = StorageService(str(tmp_path))

        first = await storage.store(b"same bytes", "a.pdf")
        second = await storage.store(b"same bytes", "b.pdf")

        assert second.reused is True
        assert second.path == first.path
        assert len(list(tmp_path.rglob("*.pdf"))) == 1

    async def test_read_and_exists(self, tmp_path):
        storage = StorageService(str(tmp_path))
        stored = await storage.store(b"content", "c.pdf")

        assert await storage.exists(stored.identity) is True
        assert await storage.read(stored.identity) == b"content"
        assert await storage.exists("ab" + "0" * 62) is False

    async def test_no_partial_files_left(self, tmp_path):
        storage = StorageService(str(tmp_path))
        await storage.store(b"content", "c.pdf")

        assert list(tmp_path.rglob("*.part")) == []
