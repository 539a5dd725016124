"""
End-to-end tests through the FastAPI application and a file-backed SQLite database.
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import redialer.shared.database as database
from redialer.main import create_app
from redialer.telephony.factory import get_voice_provider


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'redialer.db'}")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("TELEPHONY_PROVIDER_TYPE", "mock")
    monkeypatch.setenv("CRM_ENABLED", "false")
    monkeypatch.setattr(database, "_db_manager", None)
    get_voice_provider.cache_clear()

    with TestClient(create_app()) as test_client:
        yield test_client

    get_voice_provider.cache_clear()


def _enqueue(client: TestClient, **overrides) -> dict:
    body = {
        "prospect_id": "P1",
        "phone_number": "(555) 010-2030",
        "list_id": "L1",
        "first_name": "Ada",
    }
    body.update(overrides)
    resp = client.post("/api/prospects", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_enqueue_normalizes_and_is_idempotent(client: TestClient) -> None:
    first = _enqueue(client)
    second = _enqueue(client, first_name="Someone Else")

    assert first["phone_number"] == "+15550102030"
    assert first["status"] == "pending"
    assert first["attempt_count"] == 0
    assert second == first


def test_enqueue_invalid_number_quarantined(client: TestClient) -> None:
    record = _enqueue(client, prospect_id="P2", phone_number="12")

    assert record["status"] == "quarantined"


def test_pause_resume_and_remove(client: TestClient) -> None:
    _enqueue(client)

    paused = client.post("/api/prospects/P1/+15550102030/pause")
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"

    resumed = client.post("/api/prospects/P1/+15550102030/resume")
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "pending"

    removed = client.delete("/api/prospects/P1/+15550102030")
    assert removed.status_code == 204

    assert client.post("/api/prospects/P1/+15550102030/pause").status_code == 404


def test_unknown_record_is_404(client: TestClient) -> None:
    resp = client.post("/api/prospects/nobody/+15550102030/pause")

    assert resp.status_code == 404


def test_validation_error_shape(client: TestClient) -> None:
    resp = client.post("/api/prospects", json={"phone_number": "+15550102030"})

    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert any(err["field"] == "body.prospect_id" for err in detail["errors"])


def test_health_reports_scheduler_stats(client: TestClient) -> None:
    _enqueue(client)

    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["scheduler"]["records_by_status"] == {"pending": 1}
    assert body["scheduler"]["running"] is False


def test_completion_webhook_for_unknown_attempt(client: TestClient) -> None:
    resp = client.post(
        "/webhooks/voice/completions",
        json={
            "phone_number": "+15550102030",
            "outcome": "no_answer",
            "metadata": {"attempt_id": "never-dispatched"},
        },
    )

    assert resp.status_code == 200
    assert resp.json()["correlated"] is False
