"""Tests for the HTTP analyze / download endpoints."""

import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from clarity_scripts import archive_cleanup_server as server
from clarity_scripts.result_store import ResultStore, StoreConfig


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(server, "STORE", ResultStore(StoreConfig()))
    return TestClient(server.app)


def post_archive(client, data, filename="photos.zip"):
    return client.post(
        "/api/v1/analyze",
        params={"filename": filename},
        content=data,
        headers={"content-type": "application/zip"},
    )


class TestAnalyzeEndpoint:
    """POST /api/v1/analyze"""

    def test_returns_report_and_token(self, client, scenario_archive):
        response = post_archive(client, scenario_archive)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        data = body["data"]
        assert len(data["download_token"]) == 64
        assert data["download_url"] == f"/api/v1/download/{data['download_token']}"
        assert data["expires_in_seconds"] == 600
        assert data["report"]["source_filename"] == "photos.zip"
        assert data["report"]["duplicate_files"] == 1
        assert data["report"]["total_files_removed"] == 2

    def test_empty_upload(self, client):
        response = post_archive(client, b"")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EMPTY_UPLOAD"

    def test_invalid_archive(self, client):
        response = post_archive(client, b"this is not a zip")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_ARCHIVE"
        assert len(server.STORE) == 0

    def test_upload_too_large(self, client, scenario_archive, monkeypatch):
        monkeypatch.setattr(server, "SETTINGS", server.ServerSettings(max_upload_bytes=1024))
        response = post_archive(client, scenario_archive)
        assert response.status_code == 413
        assert response.json()["error"]["code"] == "UPLOAD_TOO_LARGE"


class TestDownloadEndpoint:
    """GET /api/v1/download/{token}"""

    def test_single_use_download(self, client, scenario_archive):
        token = post_archive(client, scenario_archive).json()["data"]["download_token"]

        first = client.get(f"/api/v1/download/{token}")
        assert first.status_code == 200
        assert first.headers["content-type"] == "application/zip"
        assert 'filename="clarity-cleaned.zip"' in first.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(first.content)) as zf:
            assert zf.namelist() == ["a.txt"]

        second = client.get(f"/api/v1/download/{token}")
        assert second.status_code == 404
        assert second.json()["error"]["code"] == "TOKEN_NOT_FOUND"

    def test_unknown_token(self, client):
        response = client.get("/api/v1/download/deadbeef")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Invalid or expired download token"

    def test_expired_token(self, monkeypatch, scenario_archive):
        now = [0.0]
        monkeypatch.setattr(server, "STORE", ResultStore(StoreConfig(ttl_seconds=60), clock=lambda: now[0]))
        client = TestClient(server.app)

        token = post_archive(client, scenario_archive).json()["data"]["download_token"]
        now[0] = 60.0
        assert client.get(f"/api/v1/download/{token}").status_code == 404


class TestServiceEndpoints:
    def test_healthz(self, client):
        body = client.get("/healthz").json()
        assert body["data"]["healthy"] is True
        assert body["data"]["pending_results"] == 0

    def test_root_index(self, client):
        data = client.get("/").json()["data"]
        assert "/api/v1/analyze" in data["core_endpoints"]
        assert data["limits"]["result_ttl_seconds"] == 600
