"""
assembler.py — Chunk Reassembly
=================================
Concatenates the chunks of a completed transmission, in index order
``1..expected_count``, into one output file inside the working
directory and deletes each chunk file once it has been appended.
"""

import logging
from pathlib import PurePath

import aiofiles

from upload_gateway.core.errors import AssemblyError, StorageError
from upload_gateway.core.models import AssembledFile, Transmission
from upload_gateway.services.chunk_store import ChunkStore

logger = logging.getLogger(__name__)


class Assembler:
    """Builds final files out of the chunks held by a ChunkStore."""

    def __init__(self, chunk_store: ChunkStore):
        self.store = chunk_store

    async def assemble(self, transmission: Transmission) -> AssembledFile:
        """
        Rebuild the original file of a completed transmission.

        Chunk paths are dropped from ``transmission.chunk_paths`` as
        they are consumed, so on failure the mapping lists exactly the
        chunk files that are still on disk.

        Args:
            transmission: A transmission whose ``is_complete`` is True.

        Returns:
            AssembledFile with the output path and the client's filename.

        Raises:
            AssemblyError: If a chunk is missing or any read/write fails.
                           The partially written output is left in place
                           and reported as ``output_path``, which is None
                           when the output file could not be created.
        """
        if not transmission.is_complete:
            raise ValueError(
                f"Transmission {transmission.transmission_id} is not complete"
            )

        extension = None
        if transmission.original_filename:
            extension = PurePath(transmission.original_filename).suffix or None
        output_path = await self.store.allocate(extension)

        try:
            out = await aiofiles.open(output_path, "xb")
        except OSError as e:
            # the output was never created, so there is nothing of ours to remove
            logger.error(
                "Cannot create output %s for %s/%s: %s",
                output_path.name,
                transmission.client_id,
                transmission.transmission_id,
                e,
            )
            raise AssemblyError(
                f"Failed to assemble {transmission.transmission_id}: {e}"
            ) from e

        size = 0
        try:
            try:
                for index in range(1, transmission.expected_count + 1):
                    chunk_path = transmission.chunk_paths.get(index)
                    if chunk_path is None:
                        raise StorageError(f"Chunk {index} is missing")
                    data = await self.store.read(chunk_path)
                    await out.write(data)
                    size += len(data)
                    await self.store.remove(chunk_path)
                    del transmission.chunk_paths[index]
            finally:
                await out.close()
        except (StorageError, OSError) as e:
            logger.error(
                "Assembly of %s/%s failed after %d bytes: %s",
                transmission.client_id,
                transmission.transmission_id,
                size,
                e,
            )
            raise AssemblyError(
                f"Failed to assemble {transmission.transmission_id}: {e}",
                output_path,
            ) from e

        logger.info(
            "Assembled %d chunks of %s/%s into %s (%d bytes)",
            transmission.expected_count,
            transmission.client_id,
            transmission.transmission_id,
            output_path.name,
            size,
        )
        return AssembledFile(
            path=output_path,
            original_filename=transmission.original_filename,
            size=size,
        )
