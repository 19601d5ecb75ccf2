import pytest
from fastapi.testclient import TestClient

from notifyq.config import Settings
from notifyq.core.job_types import DOCUMENT_EXPIRY
from notifyq.core.service import NotificationService
from notifyq.main import create_app

from conftest import RecordingTransport

PAYLOAD = {
    "document_id": 42,
    "machine_number": "CMR-007",
    "machine_name": "Excavator",
    "document_type": "Insurance",
    "expiry_date": "2024-05-15",
    "days_until_expiry": 5,
}


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def client(engine, transport):
    settings = Settings(
        _env_file=None,
        database_url="sqlite://",
        scheduler_enabled=False,
        admin_emails="ops@example.com",
        log_json=False,
    )
    service = NotificationService(settings, engine, transport=transport)
    with TestClient(create_app(service=service)) as client:
        yield client


def enqueue(client, **overrides):
    body = {"type": DOCUMENT_EXPIRY, "payload": dict(PAYLOAD)}
    body.update(overrides)
    return client.post("/admin/jobs", json=body)


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["scheduler_running"] is False
    assert data["scheduled"] == []
    assert data["jobs"]["total_jobs"] == 0


def test_enqueue_and_fetch_job(client):
    resp = enqueue(client)

    assert resp.status_code == 201
    job = resp.json()
    assert job["status"] == "pending"
    assert job["attempts"] == 0
    assert job["payload"]["document_id"] == 42

    fetched = client.get(f"/admin/jobs/{job['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["business_key"] == "42"


def test_enqueue_validation_errors(client):
    assert enqueue(client, type="carrier_pigeon").status_code == 422
    assert enqueue(client, payload={**PAYLOAD, "document_id": -1}).status_code == 422
    assert enqueue(client, max_attempts=0).status_code == 422
    assert client.get("/admin/jobs").json() == []


def test_enqueue_duplicate_live_job(client):
    assert enqueue(client).status_code == 201
    assert enqueue(client).status_code == 409


def test_list_jobs_with_filters(client):
    enqueue(client)
    enqueue(client, payload={**PAYLOAD, "document_id": 43})

    assert len(client.get("/admin/jobs").json()) == 2
    assert len(client.get("/admin/jobs", params={"limit": 1}).json()) == 1
    assert client.get("/admin/jobs", params={"status": "failed"}).json() == []
    assert client.get("/admin/jobs", params={"status": "bogus"}).status_code == 422


def test_missing_job_is_404(client):
    assert client.get("/admin/jobs/999").status_code == 404
    assert client.post("/admin/jobs/999/retry").status_code == 404


def test_retry_of_pending_job_conflicts(client):
    job_id = enqueue(client).json()["id"]

    resp = client.post(f"/admin/jobs/{job_id}/retry")

    assert resp.status_code == 409


def test_run_cycle_delivers_queued_jobs(client, transport):
    job_id = enqueue(client).json()["id"]

    resp = client.post("/admin/jobs/run-cycle")

    assert resp.status_code == 200
    report = resp.json()
    assert report["worker"]["completed"] == 1
    assert report["producer"]["candidates"] == 0
    assert report["producer_error"] is None
    assert client.get(f"/admin/jobs/{job_id}").json()["status"] == "completed"
    assert transport.sent[0]["recipients"] == ["ops@example.com"]

    stats = client.get("/admin/jobs/stats", params={"window_days": 1}).json()
    assert stats["completed"] == 1
    assert stats["last_24h"] == 1


def test_failed_job_can_be_retried(client, transport):
    transport.outcomes = [ConnectionError("smtp down")] * 3
    job_id = enqueue(client, max_attempts=3).json()["id"]

    for _ in range(3):
        client.post("/admin/jobs/run-cycle")
    assert client.get(f"/admin/jobs/{job_id}").json()["status"] == "failed"

    resp = client.post(f"/admin/jobs/{job_id}/retry")

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert resp.json()["attempts"] == 0
    assert resp.json()["error"] is None


def test_cleanup_endpoint(client):
    resp = client.post("/admin/jobs/cleanup")
    assert resp.status_code == 200
    assert resp.json() == {"deleted": 0}


def test_telegram_chat_registration(client):
    resp = client.post("/integrations/telegram/register", json={"chat_id": 555, "username": "ops"})
    assert resp.json() == {"ok": True, "chat_id": 555, "enabled": True}

    resp = client.post("/integrations/telegram/register", json={"chat_id": 555, "enabled": False})
    assert resp.json()["enabled"] is False

    chats = client.get("/integrations/telegram/chats").json()
    assert len(chats) == 1
    assert chats[0]["chat_id"] == 555
    assert chats[0]["enabled"] is False
