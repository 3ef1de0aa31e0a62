"""Tests for the CAS HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.api import dependencies
from app.api.v1 import cas as cas_routes
from app.core.config import settings
from app.main import app
from app.services.pdf.exceptions import WrongPasswordError

from tests.conftest import CLIENT_ID

BASE = f"/api/v1/clients/{CLIENT_ID}/cas"


@pytest.fixture
def client(service):
    app.dependency_overrides[dependencies.get_cas_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def upload(client, pdf_bytes, password=None, name="cas.pdf"):
    data = {"casPassword": password} if password is not None else {}
    return client.post(
        f"{BASE}/upload",
        files={"casFile": (name, pdf_bytes, "application/pdf")},
        data=data,
    )


class TestUploadEndpoint:
    def test_upload(self, client, pdf_bytes):
        response = upload(client, pdf_bytes, "Secret123")

        assert response.status_code == 200
        body = response.json()
        assert body["clientId"] == CLIENT_ID
        assert body["status"] == "uploaded"
        assert body["file"]["name"] == "cas.pdf"
        assert body["file"]["passwordProtected"] is True
        assert "encryptedPassword" not in body["file"]
        assert response.headers["X-Trace-Id"]

    def test_rejects_non_pdf(self, client):
        response = upload(client, b"hello", name="notes.txt")

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_rejects_oversized_file(self, client, service, pdf_bytes):
        service.stager.max_file_size = len(pdf_bytes) - 1

        response = upload(client, pdf_bytes)

        assert response.status_code == 400
        assert "too large" in response.json()["message"]

    def test_missing_file_field(self, client):
        response = client.post(f"{BASE}/upload", data={"casPassword": "x"})
        assert response.status_code == 422

    def test_unknown_client(self, client, pdf_bytes):
        response = client.post(
            "/api/v1/clients/nobody/cas/upload",
            files={"casFile": ("cas.pdf", pdf_bytes, "application/pdf")},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "CLIENT_NOT_FOUND"

    def test_upload_while_parsing_conflicts(self, client, service, pdf_bytes):
        upload(client, pdf_bytes)
        service.request_parse(CLIENT_ID)

        response = upload(client, pdf_bytes)

        assert response.status_code == 409


class TestParseEndpoint:
    def test_parse_accepted_then_completed_in_background(self, client, pdf_bytes):
        upload(client, pdf_bytes, "Secret123")

        response = client.post(f"{BASE}/parse")

        assert response.status_code == 202
        assert response.json()["status"] == "parsing"
        # TestClient runs background tasks before returning
        status = client.get(f"{BASE}/status").json()
        assert status["status"] == "parsed"
        assert status["lastParsedAt"]
        assert "parsedData" not in status

    def test_wait_returns_terminal_state(self, client, pdf_bytes):
        upload(client, pdf_bytes)

        response = client.post(f"{BASE}/parse", params={"wait": "true"})

        assert response.status_code == 200
        assert response.json()["status"] == "parsed"

    def test_wait_surfaces_wrong_password(self, client, gateway, pdf_bytes):
        upload(client, pdf_bytes, "wrong")
        gateway.error = WrongPasswordError()

        response = client.post(f"{BASE}/parse", params={"wait": "true"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "WRONG_PASSWORD"
        assert body["message"] == "Incorrect CAS password. Please check and try again."
        status = client.get(f"{BASE}/status").json()
        assert status["status"] == "error"
        assert status["parseError"] == body["message"]

    def test_parse_without_upload(self, client):
        response = client.post(f"{BASE}/parse")

        assert response.status_code == 400
        assert response.json()["message"] == "No CAS file uploaded. Please upload a CAS file first."

    def test_parse_in_flight_conflicts(self, client, service, pdf_bytes):
        upload(client, pdf_bytes)
        service.request_parse(CLIENT_ID)

        response = client.post(f"{BASE}/parse")

        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    def test_rq_backend_enqueues_job(self, client, monkeypatch, pdf_bytes):
        enqueued = []
        monkeypatch.setattr(settings, "cas_parse_backend", "rq")
        monkeypatch.setattr(
            cas_routes, "enqueue_parse", lambda client_id, trace_id=None: enqueued.append(client_id)
        )
        upload(client, pdf_bytes)

        response = client.post(f"{BASE}/parse")

        assert response.status_code == 202
        assert enqueued == [CLIENT_ID]
        assert client.get(f"{BASE}/status").json()["status"] == "parsing"

    def test_rq_unavailable_leaves_retryable_error(self, client, monkeypatch, pdf_bytes):
        def broken_enqueue(client_id, trace_id=None):
            raise RedisConnectionError("connection refused")

        monkeypatch.setattr(settings, "cas_parse_backend", "rq")
        monkeypatch.setattr(cas_routes, "enqueue_parse", broken_enqueue)
        upload(client, pdf_bytes)

        response = client.post(f"{BASE}/parse")

        assert response.status_code == 500
        status = client.get(f"{BASE}/status").json()
        assert status["status"] == "error"
        assert status["parseError"] == cas_routes.QUEUE_UNAVAILABLE_MESSAGE


class TestReadAndDeleteEndpoints:
    def test_get_cas_data(self, client, pdf_bytes):
        upload(client, pdf_bytes)
        client.post(f"{BASE}/parse", params={"wait": "true"})

        body = client.get(BASE).json()

        assert body["status"] == "parsed"
        assert body["parsedData"]["summary"]["totalValue"] == 150000
        assert body["parsedData"]["investor"]["identityNumber"] == "******234F"
        assert [e["action"] for e in body["history"]] == ["upload", "start_parse", "parse_succeeded"]

    def test_get_cas_data_before_upload(self, client):
        response = client.get(BASE)

        assert response.status_code == 404
        assert response.json()["error"] == "CAS_DATA_NOT_FOUND"

    def test_status_before_upload(self, client):
        body = client.get(f"{BASE}/status").json()
        assert body["status"] == "not_uploaded"
        assert body["file"] is None

    def test_delete(self, client, pdf_bytes):
        upload(client, pdf_bytes)

        response = client.delete(BASE)

        assert response.status_code == 200
        assert response.json()["status"] == "not_uploaded"
        assert client.get(BASE).status_code == 404

    def test_flow(self, client, pdf_bytes):
        upload(client, pdf_bytes)

        body = client.get(f"{BASE}/flow").json()

        assert body["state"] == "uploaded"
        assert "start_parse" in body["allowedEvents"]


class TestResetEndpoint:
    def test_requires_internal_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "internal_api_secret", "s3cret")

        response = client.post(f"{BASE}/reset", headers={"X-Internal-Secret": "guess"})

        assert response.status_code == 403

    def test_refused_when_no_secret_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "internal_api_secret", "")

        response = client.post(f"{BASE}/reset", headers={"X-Internal-Secret": ""})

        assert response.status_code == 403

    def test_resets_stuck_parse(self, client, service, monkeypatch, pdf_bytes):
        monkeypatch.setattr(settings, "internal_api_secret", "s3cret")
        upload(client, pdf_bytes)
        service.request_parse(CLIENT_ID)

        response = client.post(f"{BASE}/reset", headers={"X-Internal-Secret": "s3cret"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "error"
        assert body["parseError"].startswith("CAS parsing was interrupted")

    def test_reset_outside_parsing_conflicts(self, client, monkeypatch, pdf_bytes):
        monkeypatch.setattr(settings, "internal_api_secret", "s3cret")
        upload(client, pdf_bytes)

        response = client.post(f"{BASE}/reset", headers={"X-Internal-Secret": "s3cret"})

        assert response.status_code == 409


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_v1_has_security_headers(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
