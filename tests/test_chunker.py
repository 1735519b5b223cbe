"""
test_chunker.py — Unit Tests for Client-Side Chunking
=======================================================
"""

import pytest
from upload_gateway.core.chunker import iter_file_chunks, split_payload


class TestSplitPayload:
    """Tests for the split_payload function."""

    def test_split_small_payload(self):
        """Payload smaller than chunk size produces one chunk numbered 1."""
        data = b"Hello, World!"
        chunks = split_payload(data, chunk_size=1024)
        assert chunks == [(1, data)]

    def test_split_exact_multiple(self):
        """Payload that is an exact multiple of chunk size."""
        data = b"A" * 100
        chunks = split_payload(data, chunk_size=50)
        assert [index for index, _ in chunks] == [1, 2]
        assert all(len(c) == 50 for _, c in chunks)

    def test_split_with_remainder(self):
        """The last chunk carries the remainder."""
        data = b"B" * 150
        chunks = split_payload(data, chunk_size=100)
        assert len(chunks) == 2
        assert len(chunks[0][1]) == 100
        assert len(chunks[1][1]) == 50

    def test_split_empty_yields_terminal_chunk(self):
        """Empty data still produces one (empty) terminal chunk."""
        assert split_payload(b"", chunk_size=10) == [(1, b"")]

    def test_split_invalid_chunk_size(self):
        """Zero or negative chunk size should raise ValueError."""
        with pytest.raises(ValueError, match="positive integer"):
            split_payload(b"data", chunk_size=0)

    def test_chunks_concatenate_to_original(self):
        """Joining chunks in index order restores the payload."""
        original = b"Hello " * 1000
        chunks = split_payload(original, chunk_size=256)
        assert b"".join(c for _, c in sorted(chunks)) == original


async def collect(path, chunk_size):
    return [chunk async for chunk in iter_file_chunks(path, chunk_size=chunk_size)]


class TestIterFileChunks:
    """Tests for lazily chunking a file on disk."""

    @pytest.mark.asyncio
    async def test_matches_split_payload(self, tmp_path):
        """Reading a file gives the same chunks as splitting its bytes."""
        data = bytes(range(256)) * 10
        path = tmp_path / "sample.bin"
        path.write_bytes(data)
        assert await collect(path, 300) == split_payload(data, 300)

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        """An empty file yields one empty chunk."""
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")
        assert await collect(path, 16) == [(1, b"")]

    @pytest.mark.asyncio
    async def test_invalid_chunk_size(self, tmp_path):
        """Zero chunk size is refused before the file is read."""
        with pytest.raises(ValueError, match="positive integer"):
            await collect(tmp_path / "missing.bin", 0)
