"""
chunker.py — Client-Side Chunking
==================================
Splits a payload into numbered chunks for a chunked upload.
Chunk indices are 1-based; the highest index is the terminal chunk
that carries the original filename.

Default chunk size: 256 KB (262144 bytes)
"""

import logging
from pathlib import Path
from typing import AsyncIterator, List, Tuple, Union

import aiofiles

logger = logging.getLogger(__name__)

# Default chunk size: 256 KB
DEFAULT_CHUNK_SIZE = 262144

Chunk = Tuple[int, bytes]


def _check_chunk_size(chunk_size: int) -> None:
    if chunk_size <= 0:
        raise ValueError("Chunk size must be a positive integer")


def split_payload(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Chunk]:
    """
    Split bytes into numbered chunks.

    Args:
        data: Raw file content as bytes.
        chunk_size: Size of each chunk in bytes (default 256 KB).

    Returns:
        List of ``(index, chunk)`` tuples, indices starting at 1.
        Empty data yields a single empty chunk so the upload still
        has a terminal chunk.

    Raises:
        ValueError: If chunk_size is not positive.
    """
    _check_chunk_size(chunk_size)
    if not data:
        return [(1, b"")]

    chunks = [
        (number, data[offset : offset + chunk_size])
        for number, offset in enumerate(range(0, len(data), chunk_size), start=1)
    ]
    logger.debug(
        "Split %d bytes into %d chunks (chunk_size=%d)",
        len(data),
        len(chunks),
        chunk_size,
    )
    return chunks


async def iter_file_chunks(
    path: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AsyncIterator[Chunk]:
    """
    Read a file lazily as numbered chunks.

    Yields the same sequence :func:`split_payload` would return for the
    file's content, without holding the whole file in memory.
    """
    _check_chunk_size(chunk_size)
    number = 0
    async with aiofiles.open(path, "rb") as fh:
        while True:
            data = await fh.read(chunk_size)
            if not data:
                break
            number += 1
            yield number, data
    if number == 0:
        yield 1, b""
