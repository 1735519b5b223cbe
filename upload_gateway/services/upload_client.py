"""
upload_client.py — Chunked Upload Client
==========================================
HTTP client that uploads a file to the gateway as numbered chunks.

Every chunk but the last is sent concurrently (bounded by
``concurrency``), so chunks reach the server out of order; the last
chunk carries the filename and optional metadata and is sent once
all others have been accepted.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Union

import aiofiles.os
import httpx

from upload_gateway.core.chunker import DEFAULT_CHUNK_SIZE, Chunk, iter_file_chunks, split_payload
from upload_gateway.core.naming import generate_id

logger = logging.getLogger(__name__)

TRANSMISSION_NAMESPACE = "FILETRANS"

class ChunkUploadClient:
    """
    Client for the Upload Gateway REST API.

    Obtains a client id, splits payloads into chunks and posts them
    with the ``x-clientid`` / ``x-transid`` / ``x-partial`` headers.
    """

    def __init__(
        self,
        base_url: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        concurrency: int = 4,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the upload client.

        Args:
            base_url: Base URL of the gateway service.
            chunk_size: Bytes per chunk.
            concurrency: Maximum number of chunks in flight at once.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (e.g. an ASGI app).
        """
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        self.concurrency = concurrency
        self.timeout = timeout
        self.client_id: Optional[str] = None
        self._transport = transport
        logger.info("ChunkUploadClient initialized for %s", self.base_url)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def fetch_client_id(self) -> str:
        """
        Ask the gateway for a client id and remember it.

        Returns:
            The namespaced client id.
        """
        async with self._http() as client:
            return await self._fetch_client_id(client)

    async def _fetch_client_id(self, client: httpx.AsyncClient) -> str:
        response = await client.get("/client-id")
        response.raise_for_status()
        self.client_id = response.text.strip()
        logger.debug("Obtained client id %s", self.client_id)
        return self.client_id

    async def upload_bytes(
        self,
        data: bytes,
        filename: str,
        metadata: Optional[Dict[str, Any]] = None,
        transmission_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload an in-memory payload.

        Args:
            data: File content.
            filename: Name reported to the server on the terminal chunk.
            metadata: Extra parameters sent as JSON with the terminal chunk.
            transmission_id: Id for this upload; generated if omitted.

        Returns:
            JSON body of the server's response to the terminal chunk.

        Raises:
            httpx.HTTPStatusError: If the server refused any chunk.
        """
        chunks = split_payload(data, self.chunk_size)
        return await self._upload(_iterate(chunks), filename, len(data), metadata, transmission_id)

    async def upload_file(
        self,
        path: Union[str, Path],
        metadata: Optional[Dict[str, Any]] = None,
        transmission_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Upload a file from disk without loading it all into memory."""
        path = Path(path)
        total = await aiofiles.os.path.getsize(path)
        chunks = iter_file_chunks(path, self.chunk_size)
        return await self._upload(chunks, path.name, total, metadata, transmission_id)

    async def _upload(
        self,
        chunks: AsyncIterator[Chunk],
        filename: str,
        total_size: int,
        metadata: Optional[Dict[str, Any]],
        transmission_id: Optional[str],
    ) -> Dict[str, Any]:
        transmission_id = transmission_id or generate_id(TRANSMISSION_NAMESPACE)
        slots = asyncio.Semaphore(self.concurrency)

        async with self._http() as client:
            client_id = self.client_id or await self._fetch_client_id(client)
            base_headers = {
                "x-clientid": client_id,
                "x-transid": transmission_id,
                "x-total-size": str(total_size),
            }

            async def send(index: int, payload: bytes, extra: Dict[str, str]) -> httpx.Response:
                headers = dict(base_headers, **extra)
                headers["x-partial"] = str(index)
                try:
                    response = await client.post("/upload", content=payload, headers=headers)
                    response.raise_for_status()
                    return response
                finally:
                    slots.release()

            # the last chunk is only known once the iterator is exhausted
            tasks = []
            held: Optional[Chunk] = None
            async for chunk in chunks:
                if held is not None:
                    await slots.acquire()
                    tasks.append(asyncio.create_task(send(held[0], held[1], {})))
                held = chunk

            results = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in results:
                if isinstance(outcome, BaseException):
                    raise outcome

            terminal = {"x-filename": filename}
            if metadata:
                terminal["x-data"] = json.dumps(metadata, default=str)
            await slots.acquire()
            response = await send(held[0], held[1], terminal)

        logger.info(
            "Uploaded %s as %d chunks (transmission %s)",
            filename,
            held[0],
            transmission_id,
        )
        return response.json()

async def _iterate(chunks: Iterable[Chunk]) -> AsyncIterator[Chunk]:
    for chunk in chunks:
        yield chunk
