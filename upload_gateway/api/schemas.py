"""
schemas.py — Pydantic Response Models
=======================================
Data models for the Upload Gateway REST API.
"""

from typing import List, Optional

from pydantic import BaseModel


class ChunkResponse(BaseModel):
    """Response returned for every accepted chunk."""

    status: str                            # "BUSY" while chunks are missing, "OK" once assembled
    client_id: str
    transmission_id: str
    received: int                          # Distinct chunks received
    expected_count: Optional[int] = None   # Known once the terminal chunk arrived
    cumulative_size: int                   # Bytes received so far
    filename: Optional[str] = None         # Original filename (complete only)
    size: Optional[int] = None             # Assembled size in bytes (complete only)


class TransmissionInfo(BaseModel):
    """Diagnostic view of one in-flight transmission."""

    client_id: str
    transmission_id: str
    state: str
    cumulative_size: int
    received: int
    created_at: float                      # Epoch seconds of the first chunk
    expected_count: Optional[int] = None
    original_filename: Optional[str] = None


class HealthResponse(BaseModel):
    """Gateway health check response."""

    status: str
    service: str
    active_clients: int
    active_transmissions: int
    max_transmission_size: int
    transmissions: List[TransmissionInfo] = []
