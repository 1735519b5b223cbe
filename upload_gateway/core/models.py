"""
models.py — Reassembly Data Model
===================================
Chunk descriptors coming in from the gateway, the per-transmission
bookkeeping kept by the registry, and the results handed back.
"""

import enum
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

TransmissionKey = Tuple[str, str]  # (client_id, transmission_id)


@dataclass
class ChunkDescriptor:
    """One physically received chunk, as extracted by the gateway."""

    client_id: str
    transmission_id: str
    chunk_index: int                            # 1-based
    payload: bytes
    declared_total_size: Optional[int] = None   # x-total-size, any chunk
    original_filename: Optional[str] = None     # terminal chunk only
    metadata: Optional[str] = None              # raw JSON, terminal chunk only

    @property
    def key(self) -> TransmissionKey:
        return self.client_id, self.transmission_id

    @property
    def is_terminal(self) -> bool:
        """The chunk carrying the filename also reveals the chunk count."""
        return bool(self.original_filename)


class TransmissionState(str, enum.Enum):
    OPEN = "open"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass
class Transmission:
    """Bookkeeping for one in-flight upload of one client."""

    client_id: str
    transmission_id: str
    cumulative_size: int = 0
    chunk_paths: Dict[int, Path] = field(default_factory=dict)
    chunk_sizes: Dict[int, int] = field(default_factory=dict)
    expected_count: Optional[int] = None
    original_filename: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    state: TransmissionState = TransmissionState.OPEN
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def key(self) -> TransmissionKey:
        return self.client_id, self.transmission_id

    @property
    def received(self) -> int:
        """Number of distinct chunk indices recorded."""
        return len(self.chunk_paths)

    @property
    def highest_index(self) -> int:
        return max(self.chunk_paths, default=0)

    @property
    def is_complete(self) -> bool:
        return (
            self.expected_count is not None
            and len(self.chunk_paths) == self.expected_count
        )

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity

    def to_dict(self) -> dict:
        """Serialize the bookkeeping for diagnostics."""
        return {
            "client_id": self.client_id,
            "transmission_id": self.transmission_id,
            "state": self.state.value,
            "cumulative_size": self.cumulative_size,
            "received": self.received,
            "expected_count": self.expected_count,
            "original_filename": self.original_filename,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class AssembledFile:
    """A rebuilt file waiting for its single consumer."""

    path: Path
    original_filename: Optional[str]
    size: int


class ChunkStatus(str, enum.Enum):
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    QUOTA_EXCEEDED = "quota_exceeded"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class ChunkResult:
    """Outcome of processing one chunk, returned to the gateway."""

    status: ChunkStatus
    client_id: str
    transmission_id: str
    received: int = 0
    expected_count: Optional[int] = None
    cumulative_size: int = 0
    assembled: Optional[AssembledFile] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    detail: Optional[str] = None

    @classmethod
    def from_transmission(
        cls, status: ChunkStatus, transmission: Transmission, **kwargs: Any
    ) -> "ChunkResult":
        return cls(
            status=status,
            client_id=transmission.client_id,
            transmission_id=transmission.transmission_id,
            received=transmission.received,
            expected_count=transmission.expected_count,
            cumulative_size=transmission.cumulative_size,
            **kwargs,
        )
