"""
HTTP-level tests for the Resumable.js-compatible upload endpoints.
"""

import pytest
import httpx
from httpx import ASGITransport

from conftest import mp4_bytes
from assembler.config import settings
from assembler.main import app
from assembler.routes.uploads import get_coordinator
from assembler.services.coordinator import UploadCoordinator


def form_fields(number, chunk_size=100, total_size=250, identifier="abc123", filename="movie.mp4"):
    return {
        "resumableChunkNumber": str(number),
        "resumableChunkSize": str(chunk_size),
        "resumableTotalSize": str(total_size),
        "resumableIdentifier": identifier,
        "resumableFilename": filename,
        "resumableRelativePath": filename,
        "resumableType": "video/mp4",
    }


class TestUploadEndpoints:
    """Existence checks, delivery, status and cancel over HTTP."""

    @pytest.fixture
    def server_client(self, coordinator):
        """Create HTTP client bound to a coordinator on temporary directories."""
        app.dependency_overrides[get_coordinator] = lambda: coordinator
        transport = ASGITransport(app=app)
        yield httpx.AsyncClient(transport=transport, base_url="http://test")
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_missing_chunk_returns_204(self, server_client):
        response = await server_client.get("/v1/upload", params=form_fields(1))
        assert response.status_code == 204
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_chunk_upload_then_existence_hit(self, server_client):
        response = await server_client.post(
            "/v1/upload",
            data=form_fields(1),
            files={"file": ("blob", mp4_bytes(100), "application/octet-stream")},
        )
        assert response.status_code == 201
        assert response.json()["outcome"] == "chunk_accepted"

        response = await server_client.get("/v1/upload", params=form_fields(1))
        assert response.status_code == 200
        assert response.json()["outcome"] == "probe_hit"

    @pytest.mark.asyncio
    async def test_full_upload_out_of_order(self, server_client, upload_root, chunk_root):
        data = mp4_bytes(250)
        parts = {1: data[:100], 2: data[100:200], 3: data[200:]}

        for number in (3, 1, 2):
            response = await server_client.post(
                "/v1/upload",
                data=form_fields(number),
                files={"file": ("blob", parts[number], "application/octet-stream")},
            )
            assert response.status_code == 201

        body = response.json()
        assert body["outcome"] == "upload_complete"
        assert (upload_root / "movie.mp4").read_bytes() == data
        assert not (chunk_root / "abc123").exists()

    @pytest.mark.asyncio
    async def test_raw_octet_chunk_with_query_parameters(self, server_client):
        response = await server_client.post(
            "/v1/upload",
            params=form_fields(1),
            content=mp4_bytes(100),
            headers={"Content-Type": "application/octet-stream"},
        )
        assert response.status_code == 201
        assert response.json()["outcome"] == "chunk_accepted"

    @pytest.fixture
    def limited_client(self, store, merge_engine):
        """Client bound to a coordinator that accepts chunks of at most 50 bytes."""
        limited = UploadCoordinator(store, merge_engine, parameter_prefix="resumable", max_chunk_size=50)
        app.dependency_overrides[get_coordinator] = lambda: limited
        transport = ASGITransport(app=app)
        yield httpx.AsyncClient(transport=transport, base_url="http://test")
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_oversized_raw_chunk_returns_413(self, limited_client, chunk_root):
        response = await limited_client.post(
            "/v1/upload",
            params=form_fields(1, chunk_size=50, total_size=100),
            content=mp4_bytes(80),
            headers={"Content-Type": "application/octet-stream"},
        )
        assert response.status_code == 413
        assert response.json()["code"] == 413
        assert not (chunk_root / "abc123").exists()

    @pytest.mark.asyncio
    async def test_oversized_file_field_returns_413(self, limited_client, chunk_root):
        response = await limited_client.post(
            "/v1/upload",
            data=form_fields(1, chunk_size=50, total_size=100),
            files={"file": ("blob", mp4_bytes(80), "application/octet-stream")},
        )
        assert response.status_code == 413
        assert not (chunk_root / "abc123").exists()

    @pytest.mark.asyncio
    async def test_raw_chunk_within_limit_is_accepted(self, limited_client, chunk_root):
        response = await limited_client.post(
            "/v1/upload",
            params=form_fields(1, chunk_size=50, total_size=100),
            content=mp4_bytes(50),
            headers={"Content-Type": "application/octet-stream"},
        )
        assert response.status_code == 201
        assert (chunk_root / "abc123" / "movie.mp4.part1").read_bytes() == mp4_bytes(50)

    @pytest.mark.asyncio
    async def test_late_duplicate_after_completion(self, server_client, upload_root, chunk_root):
        data = mp4_bytes(250)
        parts = {1: data[:100], 2: data[100:200], 3: data[200:]}
        for number in (1, 2, 3):
            await server_client.post(
                "/v1/upload",
                data=form_fields(number),
                files={"file": ("blob", parts[number], "application/octet-stream")},
            )

        response = await server_client.post(
            "/v1/upload",
            data=form_fields(2),
            files={"file": ("blob", parts[2], "application/octet-stream")},
        )
        assert response.status_code == 201
        assert response.json()["outcome"] == "upload_complete"
        assert not (chunk_root / "abc123").exists()

        response = await server_client.get("/v1/upload", params=form_fields(2))
        assert response.status_code == 200
        assert (upload_root / "movie.mp4").read_bytes() == data

    @pytest.mark.asyncio
    async def test_disallowed_content_type_returns_415(self, server_client, chunk_root):
        response = await server_client.post(
            "/v1/upload",
            data=form_fields(1, chunk_size=100, total_size=40),
            files={"file": ("blob", b"this is only text, not an mp4 file at all", "text/plain")},
        )
        assert response.status_code == 415
        assert response.json()["outcome"] == "disallowed_content_type"
        assert (chunk_root / "abc123" / "movie.mp4.part1").is_file()

    @pytest.mark.asyncio
    async def test_invalid_identifier_returns_400(self, server_client):
        response = await server_client.get("/v1/upload", params=form_fields(1, identifier=".."))
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == 400
        assert data["retryable"] is False

    @pytest.mark.asyncio
    async def test_request_without_parameters_is_noop(self, server_client):
        response = await server_client.get("/v1/upload")
        assert response.status_code == 200
        assert response.json()["outcome"] == "no_op"

    @pytest.mark.asyncio
    async def test_status_and_cancel(self, server_client):
        await server_client.post(
            "/v1/upload",
            data=form_fields(2),
            files={"file": ("blob", b"y" * 100, "application/octet-stream")},
        )

        response = await server_client.get("/v1/uploads/abc123/status")
        assert response.status_code == 200
        assert response.json()["received_chunks"] == [2]

        response = await server_client.delete("/v1/uploads/abc123")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = await server_client.get("/v1/uploads/abc123/status")
        assert response.status_code == 404

        response = await server_client.delete("/v1/uploads/abc123")
        assert response.status_code == 404


class TestServiceEndpoints:

    @pytest.fixture
    def server_client(self):
        transport = ASGITransport(app=app)
        return httpx.AsyncClient(transport=transport, base_url="http://test")

    @pytest.mark.asyncio
    async def test_health_reports_writable_roots(self, server_client, chunk_root, upload_root, monkeypatch):
        chunk_root.mkdir(parents=True, exist_ok=True)
        upload_root.mkdir(parents=True, exist_ok=True)
        monkeypatch.setattr(settings, "chunk_tmp_dir", str(chunk_root))
        monkeypatch.setattr(settings, "upload_dir", str(upload_root))

        response = await server_client.get("/v1/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert data["checks"] == {"chunk_root_writable": True, "upload_root_writable": True}

    @pytest.mark.asyncio
    async def test_health_degraded_when_root_missing(self, server_client, tmp_path, upload_root, monkeypatch):
        upload_root.mkdir(parents=True, exist_ok=True)
        monkeypatch.setattr(settings, "chunk_tmp_dir", str(tmp_path / "missing"))
        monkeypatch.setattr(settings, "upload_dir", str(upload_root))

        response = await server_client.get("/v1/healthz")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "DEGRADED"
        assert data["checks"]["chunk_root_writable"] is False
        assert data["checks"]["upload_root_writable"] is True

    @pytest.mark.asyncio
    async def test_server_info(self, server_client):
        response = await server_client.get("/v1/server/info")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "video/mp4" in data["uploads"]["allowed_mime_types"]
