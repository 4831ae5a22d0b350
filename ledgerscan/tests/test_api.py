"""Tests for the HTTP surface."""

import time

import pytest
from fastapi.testclient import TestClient

from ledgerscan.config import settings
from ledgerscan.main import app, get_workflow

HOUSEHOLD = "household-1"
ACCOUNT = "account-1"
HEADERS = {"X-Household-Id": HOUSEHOLD}

COFFEE_CSV = "01/03/25,Coffee Shop,45.00\n02/03/25,Bakery,30.00\n".encode()


@pytest.fixture
def client(workflow, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "data_dir", tmp_path / "data")
    monkeypatch.setattr(settings, "llm_provider", "none")
    monkeypatch.setattr(settings, "openai_api_key", "")
    monkeypatch.setattr(settings, "ollama_host", settings.ollama_host)
    app.dependency_overrides[get_workflow] = lambda: workflow
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _upload(client, contents=COFFEE_CSV, mime="text/csv", name="march.csv"):
    return client.post(
        "/documents",
        files={"file": (name, contents, mime)},
        data={"account_id": ACCOUNT},
        headers=HEADERS,
    )


def _wait_for_terminal(client, document_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/documents/{document_id}", headers=HEADERS).json()
        if body["status"] not in ("PENDING", "PROCESSING"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"Document {document_id} did not finish")


class TestDocumentsApi:
    """Test upload, polling and review over HTTP."""

    def test_upload_and_complete(self, client):
        """Upload returns PENDING; polling reaches COMPLETED."""
        response = _upload(client)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["file_name"] == "march.csv"

        final = _wait_for_terminal(client, body["id"])
        assert final["status"] == "COMPLETED"
        assert [c["amount"] for c in final["extracted"]] == [-45.0, -30.0]
        assert final["extracted"][0]["categorySlug"] == "dining"
        assert final["duplicate_count"] == 0

    def test_review_flow(self, client):
        """A re-upload is held for review and can be resolved."""
        _wait_for_terminal(client, _upload(client).json()["id"])

        doc_id = _upload(client).json()["id"]
        review = _wait_for_terminal(client, doc_id)
        assert review["status"] == "PENDING_REVIEW"
        assert review["duplicate_count"] == 2
        assert review["extracted"][0]["isDuplicate"] is True
        assert "existingTransaction" in review["extracted"][0]

        response = client.post(
            f"/documents/{doc_id}/confirm-import",
            json={"account_id": ACCOUNT, "action": "skip_duplicates"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"

        again = client.post(
            f"/documents/{doc_id}/confirm-import",
            json={"account_id": ACCOUNT, "action": "add_all"},
            headers=HEADERS,
        )
        assert again.status_code == 409

    def test_bad_indices(self, client):
        """Out-of-range indices are a client error."""
        _wait_for_terminal(client, _upload(client).json()["id"])
        doc_id = _upload(client).json()["id"]
        _wait_for_terminal(client, doc_id)

        response = client.post(
            f"/documents/{doc_id}/confirm-import",
            json={"account_id": ACCOUNT, "indices": [9]},
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_confirm_without_decision(self, client):
        """A request with neither action nor indices is rejected."""
        doc_id = _upload(client).json()["id"]
        _wait_for_terminal(client, doc_id)
        response = client.post(f"/documents/{doc_id}/confirm-import", json={"account_id": ACCOUNT}, headers=HEADERS)
        assert response.status_code == 422

    def test_unsupported_type(self, client):
        """Plain text uploads are refused."""
        response = _upload(client, contents=b"hello", mime="text/plain", name="notes.txt")
        assert response.status_code == 400

    def test_empty_file(self, client):
        """Empty uploads are refused."""
        response = _upload(client, contents=b"")
        assert response.status_code == 400

    def test_pdf_fails(self, client):
        """PDF uploads end FAILED with a readable message."""
        doc_id = _upload(client, contents=b"%PDF-1.4", mime="application/pdf", name="march.pdf").json()["id"]
        final = _wait_for_terminal(client, doc_id)
        assert final["status"] == "FAILED"
        assert "PDF" in final["error_message"]

    def test_unknown_document(self, client):
        """Unknown ids are 404."""
        response = client.get("/documents/00000000-0000-0000-0000-000000000000", headers=HEADERS)
        assert response.status_code == 404

    def test_household_header_required(self, client):
        """Requests without an owner scope are rejected."""
        assert client.get("/documents").status_code == 422

    def test_documents_are_household_scoped(self, client):
        """Another household sees nothing."""
        _wait_for_terminal(client, _upload(client).json()["id"])
        assert len(client.get("/documents", headers=HEADERS).json()) == 1
        assert client.get("/documents", headers={"X-Household-Id": "other"}).json() == []

    def test_processing_status(self, client):
        """Jobs are listed after an upload."""
        doc_id = _upload(client).json()["id"]
        _wait_for_terminal(client, doc_id)
        body = client.get("/processing-status").json()
        assert [j["document_id"] for j in body["jobs"]] == [doc_id]


class TestServiceApi:
    """Test health and settings endpoints."""

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["llm_configured"] is False

    def test_settings_round_trip(self, client):
        """Runtime settings can be read and changed."""
        assert client.get("/settings").json()["has_openai_key"] is False

        response = client.put("/settings", json={"llm_provider": "ollama", "ollama_host": "http://ollama:11434"})
        assert response.status_code == 200

        body = client.get("/settings").json()
        assert body["llm_provider"] == "ollama"
        assert body["ollama_host"] == "http://ollama:11434"

    def test_settings_reject_unknown_provider(self, client):
        assert client.put("/settings", json={"llm_provider": "mystery"}).status_code == 422
