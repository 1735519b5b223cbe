"""
chunk_store.py — Temporary Chunk Storage
==========================================
Persists received chunks on the local filesystem, one uniquely
named temp file per chunk, inside the gateway's working directory.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os

from upload_gateway.core.errors import StorageError
from upload_gateway.core.naming import ensure_dir, unique_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ChunkStore:
    """
    Manages temp files holding the chunks of in-flight transmissions.

    Each chunk gets its own freshly allocated file; the transmission
    bookkeeping only keeps the returned path.
    """

    def __init__(self, work_dir: PathLike):
        """
        Initialize the chunk store.

        Args:
            work_dir: Directory where chunk files are created. It is
                      created on first use.
        """
        self.work_dir = Path(work_dir)
        self._dir_ready = False
        logger.info("ChunkStore initialized at %s", self.work_dir)

    async def prepare(self) -> Path:
        """Make sure the working directory exists."""
        if not self._dir_ready:
            try:
                await ensure_dir(self.work_dir)
            except OSError as e:
                raise StorageError(f"Cannot create {self.work_dir}: {e}") from e
            self._dir_ready = True
        return self.work_dir

    async def allocate(self, extension: Optional[str] = None) -> Path:
        """Reserve a fresh path inside the working directory."""
        await self.prepare()
        try:
            return await unique_path(self.work_dir, extension)
        except OSError as e:
            raise StorageError(f"Cannot allocate temp file: {e}") from e

    async def write(self, data: bytes, path: PathLike) -> Path:
        """
        Write a chunk to ``path``, which must not exist yet.

        The file is flushed and closed before this returns, also when
        the write fails; a half-written file is removed again.

        Raises:
            StorageError: If the file cannot be created or written.
        """
        path = Path(path)
        try:
            async with aiofiles.open(path, "xb") as fh:
                await fh.write(data)
                await fh.flush()
        except FileExistsError as e:
            raise StorageError(f"Temp file {path} already exists") from e
        except OSError as e:
            await self.remove(path)
            raise StorageError(f"Failed to write chunk {path}: {e}") from e

        logger.debug("Stored chunk %s (%d bytes)", path.name, len(data))
        return path

    async def save(self, data: bytes) -> Path:
        """Allocate a new temp file and write ``data`` into it."""
        path = await self.allocate()
        return await self.write(data, path)

    async def read(self, path: PathLike) -> bytes:
        """
        Read a stored chunk fully.

        Raises:
            StorageError: If the file is missing or unreadable.
        """
        try:
            async with aiofiles.open(path, "rb") as fh:
                return await fh.read()
        except OSError as e:
            raise StorageError(f"Failed to read chunk {path}: {e}") from e

    async def remove(self, path: PathLike) -> bool:
        """
        Delete a chunk file. Missing files are not an error.

        Returns:
            True if a file was deleted, False if there was none.

        Raises:
            StorageError: If an existing file cannot be deleted.
        """
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}") from e
        logger.debug("Removed %s", Path(path).name)
        return True

    async def exists(self, path: PathLike) -> bool:
        """Check whether a chunk file is still on disk."""
        return await aiofiles.os.path.exists(path)
