"""
registry.py — Transmission Registry
=====================================
In-memory table of in-flight transmissions, keyed by client id and
transmission id, and the state machine every received chunk runs
through:

    1. look up (or create) the client entry and its transmission
    2. refuse early when the declared total size is over quota
    3. check the chunk index against what is already known
    4. persist the payload and record its temp path and size
    5. on the terminal chunk, learn the chunk count, filename and metadata
    6. re-check the quota against the bytes actually received
    7. once every index 1..count is present, assemble and release

Chunks of one transmission are serialized by a per-key lock; chunks
of unrelated transmissions never wait on each other. Nothing here is
persisted: a restart forgets every transmission.
"""

import asyncio
import enum
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

from upload_gateway.core.errors import (
    AssemblyError,
    ProtocolViolation,
    QuotaExceeded,
    StorageError,
)
from upload_gateway.core.metadata import parse_metadata_or_empty
from upload_gateway.core.models import (
    ChunkDescriptor,
    ChunkResult,
    ChunkStatus,
    Transmission,
    TransmissionKey,
    TransmissionState,
)
from upload_gateway.services.assembler import Assembler
from upload_gateway.services.chunk_store import ChunkStore
from upload_gateway.services.cleanup import CleanupCoordinator, Sessions
from upload_gateway.services.quota import QuotaDecision, QuotaEnforcer

logger = logging.getLogger(__name__)


class DuplicatePolicy(str, enum.Enum):
    """What to do when a chunk index arrives a second time."""

    REPLACE = "replace"   # keep the newer payload, delete the older file
    REJECT = "reject"     # keep the first payload, refuse the newcomer


class _KeyedLocks:
    """asyncio locks created on demand and dropped once unused."""

    def __init__(self):
        self._locks: Dict[TransmissionKey, asyncio.Lock] = {}
        self._users: Dict[TransmissionKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: TransmissionKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TransmissionRegistry:
    """
    Tracks in-flight transmissions and turns chunks into files.

    The registry owns its ChunkStore, QuotaEnforcer, Assembler and
    CleanupCoordinator. Create one per application and call
    :meth:`close` on shutdown to delete whatever is still in flight.
    """

    def __init__(
        self,
        work_dir: Union[str, Path],
        max_size: Optional[int] = None,
        duplicate_policy: Union[DuplicatePolicy, str] = DuplicatePolicy.REPLACE,
    ):
        """
        Initialize the registry.

        Args:
            work_dir: Directory for chunk and assembled files.
            max_size: Default per-transmission ceiling in bytes.
            duplicate_policy: Handling of a chunk index received twice.
        """
        self.store = ChunkStore(work_dir)
        self.quota = QuotaEnforcer(max_size)
        self.assembler = Assembler(self.store)
        self.cleanup = CleanupCoordinator(self.store)
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._sessions: Sessions = {}
        self._locks = _KeyedLocks()
        self._closed = False
        logger.info(
            "TransmissionRegistry initialized (work_dir=%s, duplicates=%s)",
            self.store.work_dir,
            self.duplicate_policy.value,
        )

    # ── Chunk intake ──────────────────────────────────────

    async def receive_chunk(
        self, descriptor: ChunkDescriptor, max_size: Optional[int] = None
    ) -> ChunkResult:
        """
        Process one received chunk.

        Args:
            descriptor: The chunk and its identifying fields.
            max_size: Ceiling override for this call; defaults to the
                      registry-wide limit.

        Returns:
            ChunkResult whose status is INCOMPLETE, COMPLETE (with the
            assembled file, which the caller now owns), QUOTA_EXCEEDED,
            REJECTED or FAILED.
        """
        if self._closed:
            return self._result(ChunkStatus.FAILED, descriptor, "Registry is closed")

        problem = self._validate(descriptor)
        if problem:
            logger.warning(
                "Rejected chunk for %s/%s: %s",
                descriptor.client_id,
                descriptor.transmission_id,
                problem,
            )
            return self._result(ChunkStatus.REJECTED, descriptor, problem)

        async with self._locks.hold(descriptor.key):
            if self._closed:
                return self._result(ChunkStatus.FAILED, descriptor, "Registry is closed")
            transmission = self._lookup_or_create(descriptor)
            transmission.touch()
            return await self._advance(transmission, descriptor, max_size)

    async def _advance(
        self,
        transmission: Transmission,
        descriptor: ChunkDescriptor,
        max_size: Optional[int],
    ) -> ChunkResult:
        index = descriptor.chunk_index

        # The declared size alone can refuse an upload before any write.
        decision = self.quota.check(
            transmission.cumulative_size, descriptor.declared_total_size, max_size
        )
        if decision is QuotaDecision.ABORT:
            return await self._abort_over_quota(transmission, descriptor, max_size)

        try:
            self._check_numbering(transmission, descriptor)
        except ProtocolViolation as e:
            logger.warning(
                "Protocol violation on %s/%s: %s",
                transmission.client_id,
                transmission.transmission_id,
                e,
            )
            result = ChunkResult.from_transmission(
                ChunkStatus.REJECTED, transmission, detail=str(e)
            )
            await self._abort(transmission, "protocol violation")
            return result

        previous = transmission.chunk_paths.get(index)
        if previous is not None and self.duplicate_policy is DuplicatePolicy.REJECT:
            logger.warning(
                "Duplicate chunk %d for %s/%s rejected",
                index,
                transmission.client_id,
                transmission.transmission_id,
            )
            return ChunkResult.from_transmission(
                ChunkStatus.REJECTED,
                transmission,
                detail=f"Chunk {index} was already received",
            )

        try:
            path = await self.store.save(descriptor.payload)
        except StorageError as e:
            logger.error(
                "Could not store chunk %d of %s/%s: %s",
                index,
                transmission.client_id,
                transmission.transmission_id,
                e,
            )
            if not transmission.chunk_paths:
                self.cleanup.detach(self._sessions, transmission)
            return ChunkResult.from_transmission(
                ChunkStatus.FAILED, transmission, detail=str(e)
            )

        if previous is not None:
            logger.info(
                "Chunk %d for %s/%s received again, replacing",
                index,
                transmission.client_id,
                transmission.transmission_id,
            )
            await self.cleanup.discard(previous)
            transmission.cumulative_size -= transmission.chunk_sizes.get(index, 0)

        transmission.chunk_paths[index] = path
        transmission.chunk_sizes[index] = len(descriptor.payload)
        transmission.cumulative_size += len(descriptor.payload)

        if descriptor.is_terminal:
            transmission.expected_count = index
            transmission.original_filename = descriptor.original_filename
            transmission.metadata = parse_metadata_or_empty(descriptor.metadata)

        decision = self.quota.check(
            transmission.cumulative_size, descriptor.declared_total_size, max_size
        )
        if decision is QuotaDecision.ABORT:
            return await self._abort_over_quota(transmission, descriptor, max_size)

        if not transmission.is_complete:
            logger.debug(
                "Chunk %d for %s/%s stored (%d/%s received, %d bytes)",
                index,
                transmission.client_id,
                transmission.transmission_id,
                transmission.received,
                transmission.expected_count or "?",
                transmission.cumulative_size,
            )
            return ChunkResult.from_transmission(ChunkStatus.INCOMPLETE, transmission)

        return await self._complete(transmission)

    async def _complete(self, transmission: Transmission) -> ChunkResult:
        transmission.state = TransmissionState.COMPLETE
        received = transmission.received
        try:
            assembled = await self.assembler.assemble(transmission)
        except AssemblyError as e:
            result = ChunkResult.from_transmission(
                ChunkStatus.FAILED, transmission, detail=str(e)
            )
            await self._abort(transmission, "assembly failure")
            if e.output_path is not None:
                await self.cleanup.discard(e.output_path)
            return result

        self.cleanup.detach(self._sessions, transmission)
        return ChunkResult(
            status=ChunkStatus.COMPLETE,
            client_id=transmission.client_id,
            transmission_id=transmission.transmission_id,
            received=received,
            expected_count=transmission.expected_count,
            cumulative_size=transmission.cumulative_size,
            assembled=assembled,
            metadata=transmission.metadata,
        )

    # ── Validation ────────────────────────────────────────

    @staticmethod
    def _validate(descriptor: ChunkDescriptor) -> Optional[str]:
        if not descriptor.client_id:
            return "Missing client id"
        if not descriptor.transmission_id:
            return "Missing transmission id"
        if not isinstance(descriptor.chunk_index, int) or descriptor.chunk_index < 1:
            return f"Invalid chunk index {descriptor.chunk_index!r}"
        if descriptor.declared_total_size is not None and descriptor.declared_total_size < 0:
            return f"Invalid total size {descriptor.declared_total_size}"
        return None

    @staticmethod
    def _check_numbering(transmission: Transmission, descriptor: ChunkDescriptor) -> None:
        """
        Raise ProtocolViolation when the chunk index cannot belong to
        a transmission of the size already known.
        """
        index = descriptor.chunk_index
        expected = transmission.expected_count
        if expected is not None and index > expected:
            raise ProtocolViolation(
                f"Chunk {index} is beyond the announced count of {expected}"
            )
        if descriptor.is_terminal:
            if expected is not None and index != expected:
                raise ProtocolViolation(
                    f"Terminal chunk {index} conflicts with earlier terminal chunk {expected}"
                )
            if index < transmission.highest_index:
                raise ProtocolViolation(
                    f"Terminal chunk {index} is below already received chunk "
                    f"{transmission.highest_index}"
                )

    # ── Bookkeeping ───────────────────────────────────────

    def _lookup_or_create(self, descriptor: ChunkDescriptor) -> Transmission:
        transmissions = self._sessions.setdefault(descriptor.client_id, {})
        transmission = transmissions.get(descriptor.transmission_id)
        if transmission is None:
            transmission = Transmission(
                client_id=descriptor.client_id,
                transmission_id=descriptor.transmission_id,
            )
            transmissions[descriptor.transmission_id] = transmission
            logger.info(
                "New transmission %s/%s", descriptor.client_id, descriptor.transmission_id
            )
        return transmission

    async def _abort(self, transmission: Transmission, reason: str) -> int:
        """Move to ABORTED, delete its chunk files and registry entry."""
        transmission.state = TransmissionState.ABORTED
        removed = await self.cleanup.release(transmission)
        self.cleanup.detach(self._sessions, transmission)
        logger.info(
            "Aborted transmission %s/%s (%s), removed %d chunk files",
            transmission.client_id,
            transmission.transmission_id,
            reason,
            removed,
        )
        return removed

    async def _abort_over_quota(
        self,
        transmission: Transmission,
        descriptor: ChunkDescriptor,
        max_size: Optional[int],
    ) -> ChunkResult:
        error = QuotaExceeded(
            max(transmission.cumulative_size, descriptor.declared_total_size or 0),
            self.quota.ceiling(max_size),
        )
        result = ChunkResult.from_transmission(
            ChunkStatus.QUOTA_EXCEEDED, transmission, detail=str(error)
        )
        await self._abort(transmission, "quota exceeded")
        return result

    @staticmethod
    def _result(status: ChunkStatus, descriptor: ChunkDescriptor, detail: str) -> ChunkResult:
        return ChunkResult(
            status=status,
            client_id=descriptor.client_id,
            transmission_id=descriptor.transmission_id,
            detail=detail,
        )

    # ── Maintenance ───────────────────────────────────────

    async def sweep_idle(
        self, max_idle_seconds: float, now: Optional[float] = None
    ) -> int:
        """
        Abort transmissions that received nothing for too long.

        Args:
            max_idle_seconds: Allowed time since the last chunk.
            now: Monotonic clock reading to compare against (for tests).

        Returns:
            Number of transmissions released.
        """
        now = time.monotonic() if now is None else now
        stale = [t for t in self.transmissions() if t.idle_for(now) > max_idle_seconds]
        released = 0
        for transmission in stale:
            async with self._locks.hold(transmission.key):
                # it may have completed or received a chunk meanwhile
                if self.get(*transmission.key) is not transmission:
                    continue
                if transmission.idle_for(now) <= max_idle_seconds:
                    continue
                await self._abort(transmission, "idle timeout")
                released += 1
        if released:
            logger.info("Idle sweep released %d transmissions", released)
        return released

    async def close(self) -> None:
        """Release every in-flight transmission and refuse new chunks."""
        self._closed = True
        for transmission in self.transmissions():
            async with self._locks.hold(transmission.key):
                if self.get(*transmission.key) is transmission:
                    await self._abort(transmission, "shutdown")
        logger.info("TransmissionRegistry closed")

    # ── Introspection ─────────────────────────────────────

    def get(self, client_id: str, transmission_id: str) -> Optional[Transmission]:
        """Get an in-flight transmission, or None if unknown."""
        return self._sessions.get(client_id, {}).get(transmission_id)

    def transmissions(self) -> List[Transmission]:
        """All in-flight transmissions, across clients."""
        return [t for client in self._sessions.values() for t in client.values()]

    def snapshot(self) -> List[dict]:
        """Serializable view of the in-flight transmissions."""
        return [t.to_dict() for t in self.transmissions()]

    @property
    def client_count(self) -> int:
        return len(self._sessions)

    @property
    def transmission_count(self) -> int:
        return sum(len(client) for client in self._sessions.values())

    @property
    def closed(self) -> bool:
        return self._closed
