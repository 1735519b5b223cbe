"""
cleanup.py — Cleanup Coordinator
==================================
Guarantees that nothing a transmission created outlives it:

    * on abort, every chunk file it still references is deleted,
    * its registry entry is dropped, together with the client entry
      once that client has no transmissions left,
    * an assembled file is handed to exactly one consumer and deleted
      as soon as that consumer is done with it.
"""

import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from upload_gateway.core.errors import StorageError
from upload_gateway.core.models import AssembledFile, Transmission
from upload_gateway.services.chunk_store import ChunkStore

logger = logging.getLogger(__name__)

# consumer(path, original_filename, metadata) -> optional response data
FileConsumer = Callable[
    [Path, Optional[str], Dict[str, Any]],
    Union[Any, Awaitable[Any]],
]

Sessions = Dict[str, Dict[str, Transmission]]


class CleanupCoordinator:
    """Releases transmission resources and assembled files."""

    def __init__(self, chunk_store: ChunkStore):
        self.store = chunk_store

    async def release(self, transmission: Transmission) -> int:
        """
        Delete every chunk file the transmission still references.

        A file that cannot be deleted is logged and skipped so the
        remaining files are still removed.

        Returns:
            Number of files actually deleted.
        """
        removed = 0
        for index, path in sorted(transmission.chunk_paths.items()):
            try:
                if await self.store.remove(path):
                    removed += 1
            except StorageError as e:
                logger.error(
                    "Could not remove chunk %d of %s/%s: %s",
                    index,
                    transmission.client_id,
                    transmission.transmission_id,
                    e,
                )
        transmission.chunk_paths.clear()
        transmission.chunk_sizes.clear()
        return removed

    def detach(self, sessions: Sessions, transmission: Transmission) -> None:
        """Remove the registry entry and an emptied client entry."""
        transmissions = sessions.get(transmission.client_id)
        if transmissions is None:
            return
        if transmissions.get(transmission.transmission_id) is transmission:
            del transmissions[transmission.transmission_id]
        if not transmissions:
            del sessions[transmission.client_id]
            logger.debug("Client %s has no transmissions left", transmission.client_id)

    async def discard(self, path: Union[str, Path]) -> bool:
        """Delete an assembled file (or a partial one)."""
        try:
            return await self.store.remove(path)
        except StorageError as e:
            logger.error("Could not remove assembled file %s: %s", path, e)
            return False

    async def consume(
        self,
        assembled: AssembledFile,
        consumer: Optional[FileConsumer] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Hand the assembled file to its consumer, then delete it.

        The consumer may be a plain function or a coroutine function;
        the file is removed after it returns or raises.

        Returns:
            Whatever the consumer returned (None without a consumer).
        """
        try:
            if consumer is None:
                return None
            outcome = consumer(assembled.path, assembled.original_filename, metadata or {})
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome
        finally:
            await self.discard(assembled.path)
            logger.debug("Discarded assembled file %s", assembled.path.name)
