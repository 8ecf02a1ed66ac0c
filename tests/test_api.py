"""
tests/test_api.py

HTTP contract tests with FastAPI's TestClient. Storage and services are
swapped for in-memory versions through dependency overrides, and the
lifespan (database checks) is never entered.
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_crm_store
from app.main import create_app
from app.services.client_import_service import ClientImportService, get_client_import_service
from app.services.event_ingestion_service import EventIngestionService, get_event_ingestion_service

CSV_CONTENT = b"Name,Email,Phone\nAnn,ann@example.com,555-123-4567\n,nobody@example.com,\n"

EXECUTE_BODY = {
    "mappings": [
        {"sourceColumn": "Name", "targetField": "name"},
        {"sourceColumn": "Email", "targetField": "home_email", "transform": "lowercase"},
        {"sourceColumn": "Phone", "targetField": "home_phone", "transform": "phone_format"},
    ],
    "duplicateStrategy": "skip",
}


@pytest.fixture()
def client(store, staging):
    application = create_app()
    import_service = ClientImportService(
        staging=staging,
        max_upload_bytes=1_000,
        preview_rows=5,
        max_row_errors=50,
        log_row_errors=False,
        progress_every=100,
        history_limit=20,
    )
    application.dependency_overrides[get_crm_store] = lambda: store
    application.dependency_overrides[get_client_import_service] = lambda: import_service
    application.dependency_overrides[get_event_ingestion_service] = lambda: EventIngestionService()
    return TestClient(application)


def _upload(client: TestClient, filename: str = "clients.csv", content: bytes = CSV_CONTENT):
    return client.post("/imports/upload-preview", files={"file": (filename, content, "text/csv")})


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


class TestImportEndpoints:
    def test_upload_execute_and_status(self, client) -> None:
        preview = _upload(client)
        assert preview.status_code == 200
        body = preview.json()
        assert body["total_rows"] == 2
        assert body["columns"] == ["Name", "Email", "Phone"]
        assert body["suggested_mappings"][1] == {
            "sourceColumn": "Email",
            "targetField": "home_email",
            "transform": "lowercase",
        }

        job_id = body["job_id"]
        executed = client.post(f"/imports/{job_id}/execute", json=EXECUTE_BODY)
        assert executed.status_code == 200
        summary = executed.json()
        assert summary["createdCount"] == 1
        assert summary["errorCount"] == 1
        assert summary["errors"] == [{"row": 3, "message": "Name is required."}]

        status = client.get(f"/imports/{job_id}")
        assert status.status_code == 200
        job = status.json()
        assert job["status"] == "completed"
        assert job["totalRecords"] == 2
        assert job["processedCount"] == 2
        assert job["successCount"] == 1
        assert job["errors"] == [{"row": 3, "message": "Name is required."}]
        assert job["completedAt"] is not None

        history = client.get("/imports")
        assert history.status_code == 200
        assert [entry["id"] for entry in history.json()["jobs"]] == [job_id]

    def test_re_execute_conflicts(self, client) -> None:
        job_id = _upload(client).json()["job_id"]
        assert client.post(f"/imports/{job_id}/execute", json=EXECUTE_BODY).status_code == 200

        response = client.post(f"/imports/{job_id}/execute", json=EXECUTE_BODY)

        assert response.status_code == 409

    def test_mapping_errors_are_structured(self, client) -> None:
        job_id = _upload(client).json()["job_id"]

        response = client.post(
            f"/imports/{job_id}/execute",
            json={"mappings": [{"sourceColumn": "Missing", "targetField": "name"}], "duplicateStrategy": "skip"},
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["errors"][0]["code"] == "unknown_source_column"

    def test_unknown_job(self, client) -> None:
        assert client.get(f"/imports/{uuid.uuid4()}").status_code == 404
        assert client.post(f"/imports/{uuid.uuid4()}/execute", json=EXECUTE_BODY).status_code == 404

    def test_legacy_excel_rejected(self, client) -> None:
        assert _upload(client, filename="clients.xls").status_code == 400

    def test_oversized_upload(self, client) -> None:
        assert _upload(client, content=b"Name\n" + b"x" * 2_000).status_code == 413

    def test_unreadable_file(self, client) -> None:
        assert _upload(client, content=b"Name,Name\na,b\n").status_code == 400

    def test_templates(self, client) -> None:
        csv_response = client.get("/imports/template/csv")
        assert csv_response.status_code == 200
        assert csv_response.headers["content-type"].startswith("text/csv")
        assert csv_response.content.startswith(b"Name,Email,Phone,Work Phone,Status,Client ID")
        assert "attachment" in csv_response.headers["content-disposition"]

        assert client.get("/imports/template/xlsx").status_code == 200
        assert client.get("/imports/template/pdf").status_code == 400


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def _call_report(call_id: str = "call-9") -> dict:
    return {
        "message": {
            "type": "end-of-call-report",
            "call": {"id": call_id, "customer": {"number": "555-123-4567"}},
            "analysis": {"summary": "Checked in."},
        }
    }


class TestWebhookEndpoints:
    def test_vapi_processes_then_acknowledges_duplicate(self, client, store) -> None:
        first = client.post("/webhooks/vapi", json=_call_report())
        second = client.post("/webhooks/vapi", json=_call_report())

        assert first.status_code == 200
        assert first.json()["received"] is True
        assert first.json()["outcome"]["status"] == "processed"
        assert second.status_code == 200
        assert second.json()["outcome"]["status"] == "duplicate"
        assert len(store.activities) == 1

    def test_vapi_ignores_other_messages(self, client) -> None:
        response = client.post("/webhooks/vapi", json={"message": {"type": "transcript"}})

        assert response.status_code == 200
        assert response.json()["outcome"]["status"] == "ignored"

    def test_vapi_primary_failure_is_500(self, client, store) -> None:
        store.fail_next("has_activity_for_event")

        response = client.post("/webhooks/vapi", json=_call_report())

        assert response.status_code == 500

    def test_n8n_create_lead(self, client, store) -> None:
        response = client.post(
            "/webhooks/n8n",
            json={"action": "create", "entity": "lead", "data": {"name": "Ann", "phone": "555-123-4567"}},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["outcome"]["client_id"] == str(store.clients[0].id)

    def test_n8n_unknown_action(self, client) -> None:
        response = client.post("/webhooks/n8n", json={"action": "explode", "entity": "lead", "data": {}})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["outcome"]["status"] == "rejected"
