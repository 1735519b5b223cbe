"""
test_chunk_store.py — Unit Tests for Temporary Chunk Storage
==============================================================
"""

import pytest
from aiofiles.threadpool.binary import AsyncBufferedIOBase
from upload_gateway.core.errors import StorageError
from upload_gateway.services.chunk_store import ChunkStore


@pytest.fixture
def store(tmp_path):
    return ChunkStore(tmp_path / "work")


class TestChunkStore:
    """Tests for writing, reading and removing chunk files."""

    @pytest.mark.asyncio
    async def test_save_and_read(self, store):
        """Saved bytes can be read back from the returned path."""
        path = await store.save(b"chunk-data")
        assert path.parent == store.work_dir
        assert path.read_bytes() == b"chunk-data"
        assert await store.read(path) == b"chunk-data"

    @pytest.mark.asyncio
    async def test_each_save_gets_a_new_file(self, store):
        """Identical payloads are still stored in separate files."""
        first = await store.save(b"same")
        second = await store.save(b"same")
        assert first != second

    @pytest.mark.asyncio
    async def test_write_refuses_existing_file(self, store, tmp_path):
        """Writing never overwrites a file that already exists."""
        await store.prepare()
        target = store.work_dir / "taken"
        target.write_bytes(b"original")
        with pytest.raises(StorageError, match="already exists"):
            await store.write(b"new", target)
        assert target.read_bytes() == b"original"

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, store):
        """Removing twice is fine; only the first call deletes."""
        path = await store.save(b"x")
        assert await store.remove(path) is True
        assert await store.remove(path) is False
        assert not await store.exists(path)

    @pytest.mark.asyncio
    async def test_read_missing_raises(self, store):
        """Reading a missing chunk raises StorageError."""
        await store.prepare()
        with pytest.raises(StorageError):
            await store.read(store.work_dir / "missing")

    @pytest.mark.asyncio
    async def test_prepare_creates_work_dir(self, store):
        """The working directory is created on first use."""
        assert not store.work_dir.exists()
        await store.prepare()
        assert store.work_dir.is_dir()

    @pytest.mark.asyncio
    async def test_failed_write_removes_partial_file(self, store, monkeypatch):
        """A write error raises StorageError and leaves no file behind."""
        await store.prepare()
        target = store.work_dir / "partial"

        async def failing_write(self, data):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(AsyncBufferedIOBase, "write", failing_write)
        with pytest.raises(StorageError, match="No space left"):
            await store.write(b"payload", target)
        assert not target.exists()
