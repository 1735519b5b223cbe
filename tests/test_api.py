"""
test_api.py — Gateway API Tests
=================================
Exercise the REST endpoints in-process through httpx's ASGI transport.
"""

import json
import time

import httpx
import pytest
from upload_gateway.config import Settings
from upload_gateway.main import create_app


def make_settings(tmp_path, **overrides):
    config = Settings()
    config.WORK_DIR = str(tmp_path)
    config.MAX_TRANSMISSION_SIZE = 1024
    config.DUPLICATE_CHUNK_POLICY = "replace"
    config.ACCESS_CONTROL_ALLOW_ORIGIN = ""
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def client_for(app):
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://gateway"
    )


def chunk_headers(index, filename=None, client="cl-1", trans="tr-1", **extra):
    headers = {"x-clientid": client, "x-transid": trans, "x-partial": str(index)}
    if filename:
        headers["x-filename"] = filename
    headers.update(extra)
    return headers


class TestClientId:
    """Tests for GET /client-id."""

    @pytest.mark.asyncio
    async def test_generates_namespaced_ids(self, tmp_path):
        """Ids carry the configured namespace and differ per call."""
        app = create_app(make_settings(tmp_path, CLIENT_NAMESPACE="TEST_NS"))
        async with client_for(app) as client:
            first = await client.get("/client-id")
            second = await client.get("/client-id")
        assert first.status_code == 200
        assert first.text.startswith("TEST_NS-")
        assert first.text != second.text

    @pytest.mark.asyncio
    async def test_allow_origin_header(self, tmp_path):
        """The configured CORS origin is sent back."""
        app = create_app(
            make_settings(tmp_path, ACCESS_CONTROL_ALLOW_ORIGIN="https://example.org")
        )
        async with client_for(app) as client:
            resp = await client.get("/client-id")
        assert resp.headers["access-control-allow-origin"] == "https://example.org"


class TestUpload:
    """Tests for POST /upload."""

    @pytest.mark.asyncio
    async def test_busy_then_ok(self, tmp_path):
        """Intermediate chunks answer BUSY, the last one OK."""
        app = create_app(make_settings(tmp_path))
        async with client_for(app) as client:
            busy = await client.post("/upload", content=b"2" * 10, headers=chunk_headers(2))
            busy2 = await client.post("/upload", content=b"1" * 10, headers=chunk_headers(1))
            done = await client.post(
                "/upload",
                content=b"3" * 10,
                headers=chunk_headers(3, "photo.png", **{"x-total-size": "30"}),
            )

        assert busy.status_code == 200
        assert busy.json()["status"] == "BUSY"
        assert busy2.json()["received"] == 2
        assert done.status_code == 200
        body = done.json()
        assert body["status"] == "OK"
        assert body["filename"] == "photo.png"
        assert body["size"] == 30
        # assembled file is removed once the response is built
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_completion_hook(self, tmp_path):
        """The hook sees the rebuilt file and its output is merged."""
        seen = {}

        async def consumer(path, filename, metadata):
            seen["data"] = path.read_bytes()
            seen["filename"] = filename
            seen["metadata"] = metadata
            return {"stored_as": "archive/" + filename}

        app = create_app(make_settings(tmp_path), file_consumer=consumer)
        metadata = json.dumps({"album": "summer", "taken": "2015-06-01T12:30:00"})
        async with client_for(app) as client:
            await client.post("/upload", content=b"hello ", headers=chunk_headers(1))
            done = await client.post(
                "/upload",
                content=b"world",
                headers=chunk_headers(2, "greeting.txt", **{"x-data": metadata}),
            )

        assert done.json()["stored_as"] == "archive/greeting.txt"
        assert seen["data"] == b"hello world"
        assert seen["filename"] == "greeting.txt"
        assert seen["metadata"]["album"] == "summer"
        assert seen["metadata"]["taken"].year == 2015
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failing_hook_returns_500(self, tmp_path):
        """A crashing hook yields 500 and the file is still deleted."""

        def consumer(path, filename, metadata):
            raise RuntimeError("processing broke")

        app = create_app(make_settings(tmp_path), file_consumer=consumer)
        async with client_for(app) as client:
            resp = await client.post("/upload", content=b"x", headers=chunk_headers(1, "x.txt"))
        assert resp.status_code == 500
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_quota_exceeded_is_403(self, tmp_path):
        """Exceeding the size limit answers 403 and drops the chunks."""
        app = create_app(make_settings(tmp_path, MAX_TRANSMISSION_SIZE=15))
        async with client_for(app) as client:
            first = await client.post("/upload", content=b"a" * 10, headers=chunk_headers(2))
            second = await client.post("/upload", content=b"b" * 10, headers=chunk_headers(1))
        assert first.status_code == 200
        assert second.status_code == 403
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_app_size_limit_overrides_settings(self, tmp_path):
        """A max_size given to create_app replaces the configured limit."""
        app = create_app(make_settings(tmp_path), max_size=8)
        async with client_for(app) as client:
            refused = await client.post(
                "/upload", content=b"a" * 10, headers=chunk_headers(1, "a.txt")
            )
            health = await client.get("/health")
        assert refused.status_code == 403
        assert health.json()["max_transmission_size"] == 8
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_declared_size_is_403(self, tmp_path):
        """An oversized x-total-size is refused on the first chunk."""
        app = create_app(make_settings(tmp_path))
        async with client_for(app) as client:
            resp = await client.post(
                "/upload", content=b"a", headers=chunk_headers(1, **{"x-total-size": "99999"})
            )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_protocol_violation_is_409(self, tmp_path):
        """A chunk beyond the announced count answers 409."""
        app = create_app(make_settings(tmp_path))
        async with client_for(app) as client:
            await client.post("/upload", content=b"b", headers=chunk_headers(2, "f.txt"))
            resp = await client.post("/upload", content=b"z", headers=chunk_headers(7))
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_missing_headers_rejected(self, tmp_path):
        """Requests without the chunk headers fail validation."""
        app = create_app(make_settings(tmp_path))
        async with client_for(app) as client:
            resp = await client.post("/upload", content=b"x", headers={"x-clientid": "c"})
            bad_index = await client.post("/upload", content=b"x", headers=chunk_headers(0))
        assert resp.status_code == 422
        assert bad_index.status_code == 422


class TestHealth:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_reports_in_flight(self, tmp_path):
        """Health lists the open transmissions."""
        app = create_app(make_settings(tmp_path))
        started = time.time()
        async with client_for(app) as client:
            await client.post("/upload", content=b"abc", headers=chunk_headers(1))
            resp = await client.get("/health")
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["service"] == "upload-gateway"
        assert data["active_clients"] == 1
        assert data["active_transmissions"] == 1
        assert data["max_transmission_size"] == 1024
        assert data["transmissions"][0]["cumulative_size"] == 3
        assert started <= data["transmissions"][0]["created_at"] <= time.time()
