"""
routes.py — Upload Gateway REST API Endpoints
===============================================
Turns HTTP requests into chunk descriptors for the transmission
registry and registry results into HTTP responses.

Endpoints:
    GET  /client-id   — Generate a client id for chunked uploads
    POST /upload      — Receive one chunk (headers + raw body)
    GET  /health      — Gateway health check

Chunk headers:
    x-clientid     client id obtained from /client-id
    x-transid      id of the transmission (one per uploaded file)
    x-partial      1-based chunk index
    x-total-size   optional total file size, checked against the quota
    x-filename     original filename, only on the terminal chunk
    x-data         optional JSON object, only on the terminal chunk
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse

from upload_gateway.api.schemas import ChunkResponse, HealthResponse, TransmissionInfo
from upload_gateway.core.models import ChunkDescriptor, ChunkResult, ChunkStatus
from upload_gateway.core.naming import generate_id
from upload_gateway.services.registry import TransmissionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

# Registry statuses that end in an HTTP error
ERROR_STATUS_CODES = {
    ChunkStatus.QUOTA_EXCEEDED: 403,
    ChunkStatus.REJECTED: 409,
    ChunkStatus.FAILED: 500,
}


def get_registry(request: Request) -> TransmissionRegistry:
    """The registry owned by the running application."""
    return request.app.state.registry


def _cors_headers(request: Request) -> Dict[str, str]:
    origin = request.app.state.settings.ACCESS_CONTROL_ALLOW_ORIGIN
    return {"access-control-allow-origin": origin} if origin else {}


def _chunk_body(result: ChunkResult, status: str) -> Dict[str, Any]:
    body = ChunkResponse(
        status=status,
        client_id=result.client_id,
        transmission_id=result.transmission_id,
        received=result.received,
        expected_count=result.expected_count,
        cumulative_size=result.cumulative_size,
    )
    if result.assembled is not None:
        body.filename = result.assembled.original_filename
        body.size = result.assembled.size
    return body.model_dump()


# ── Client Id Endpoint ─────────────────────────────────

@router.get("/client-id", response_class=PlainTextResponse)
async def generate_client_id(request: Request):
    """
    Generate a unique client id.

    Clients send it as ``x-clientid`` with every chunk so that their
    transmissions never mix with those of other clients.
    """
    namespace = request.app.state.settings.CLIENT_NAMESPACE
    client_id = generate_id(namespace)
    logger.debug("Issued client id %s", client_id)
    return PlainTextResponse(client_id, headers=_cors_headers(request))


# ── Upload Endpoint ────────────────────────────────────

@router.post("/upload", response_model=ChunkResponse)
async def receive_chunk(
    request: Request,
    x_clientid: str = Header(...),
    x_transid: str = Header(...),
    x_partial: int = Header(..., ge=1),
    x_total_size: Optional[int] = Header(None, ge=0),
    x_filename: Optional[str] = Header(None),
    x_data: Optional[str] = Header(None),
):
    """
    Receive one chunk of a transmission.

    Returns ``{"status": "BUSY"}`` while chunks are missing. When the
    last missing chunk arrives the file is rebuilt and handed to the
    application's completion hook; its returned mapping (if any) is
    merged into the ``{"status": "OK"}`` response, and the rebuilt
    file is deleted afterwards.

    Errors:
        403 — transmission exceeds the size limit (it is discarded)
        409 — chunk index does not fit the transmission
        500 — chunk could not be stored or the file rebuilt
    """
    payload = await request.body()
    descriptor = ChunkDescriptor(
        client_id=x_clientid,
        transmission_id=x_transid,
        chunk_index=x_partial,
        payload=payload,
        declared_total_size=x_total_size,
        original_filename=x_filename,
        metadata=x_data,
    )

    registry = get_registry(request)
    result = await registry.receive_chunk(
        descriptor, max_size=request.app.state.upload_max_size
    )
    headers = _cors_headers(request)

    if result.status in ERROR_STATUS_CODES:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES[result.status],
            detail=result.detail,
            headers=headers or None,
        )

    if result.status is ChunkStatus.INCOMPLETE:
        return JSONResponse(_chunk_body(result, "BUSY"), headers=headers)

    consumer = request.app.state.file_consumer
    try:
        extra = await registry.cleanup.consume(result.assembled, consumer, result.metadata)
    except Exception as e:
        logger.error(
            "Completion hook failed for %s/%s: %s",
            result.client_id,
            result.transmission_id,
            e,
        )
        raise HTTPException(
            status_code=500, detail=f"Processing failed: {e}", headers=headers or None
        )

    body = _chunk_body(result, "OK")
    if isinstance(extra, dict):
        body.update(extra)
    logger.info(
        "Transmission %s/%s complete: %s (%d bytes)",
        result.client_id,
        result.transmission_id,
        result.assembled.original_filename,
        result.assembled.size,
    )
    return JSONResponse(jsonable_encoder(body), headers=headers)


# ── Health Endpoint ────────────────────────────────────

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint with in-flight transmission counts."""
    registry = get_registry(request)
    return HealthResponse(
        status="closed" if registry.closed else "healthy",
        service="upload-gateway",
        active_clients=registry.client_count,
        active_transmissions=registry.transmission_count,
        max_transmission_size=registry.quota.ceiling(request.app.state.upload_max_size),
        transmissions=[TransmissionInfo(**t) for t in registry.snapshot()],
    )
