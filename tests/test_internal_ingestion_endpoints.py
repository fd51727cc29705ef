from __future__ import annotations

import asyncio

from src.auth.context import AuthContext
from src.routers import internal_ingestion as internal_router


ADMIN = AuthContext(user_id="ops-1", role="admin")
SIGNATURE = {"x-integration-signature": "sig-abc"}


def _queue_failure(services, fake_db):
    fake_db.fail_on("integrations", "select")
    result = asyncio.run(
        services.ingestion.ingest_webhook(
            "weather_station",
            SIGNATURE,
            {"readings": [{"providerDeviceId": "ws-001", "metric": "temperature", "value": 80}]},
        )
    )
    return result.failure_id


def test_admin_routes_reject_regular_users(services, api_client):
    client = api_client(services)
    assert client.get("/api/internal/ingestion/failures").status_code == 403
    assert client.post("/api/internal/ingestion/retry", json={}).status_code == 403
    assert client.post("/api/internal/ingestion/poll", json={"provider": "weather_station"}).status_code == 403


def test_admin_routes_require_session(services, api_client):
    client = api_client(services, user=None)
    assert client.get("/api/internal/ingestion/failures").status_code == 401


def test_admin_can_list_failures_with_redacted_signature(services, fake_db, api_client):
    failure_id = _queue_failure(services, fake_db)
    client = api_client(services, user=ADMIN)

    response = client.get("/api/internal/ingestion/failures", params={"status": "pending"})
    assert response.status_code == 200
    items = response.json()
    assert [item["failure_id"] for item in items] == [failure_id]
    assert items[0]["headers"]["x-integration-signature"] == "[redacted]"
    assert items[0]["attempts"] == 1

    assert client.get("/api/internal/ingestion/failures", params={"status": "dead"}).json() == []
    assert client.get("/api/internal/ingestion/failures", params={"status": "bogus"}).status_code == 422


def test_admin_retry_sweep(services, fake_db, api_client, clock):
    _queue_failure(services, fake_db)
    clock.advance(seconds=31)
    client = api_client(services, user=ADMIN)

    response = client.post("/api/internal/ingestion/retry", json={"limit": 10, "max_attempts": 3})
    assert response.status_code == 200
    # No linked device exists, so the retried delivery succeeds with nothing to ingest.
    assert response.json() == {"processed": 1, "resolved": 1, "dead": 0, "pending": 0}
    assert client.post("/api/internal/ingestion/retry", json={"limit": 0}).status_code == 422


def test_scheduled_retry_returns_503_when_secret_not_configured(monkeypatch, services, api_client):
    monkeypatch.setattr(internal_router.settings, "internal_scheduler_secret", None)
    client = api_client(services, user=None)
    response = client.post("/api/internal/ingestion/retry-scheduled", json={})
    assert response.status_code == 503
    assert response.json()["detail"] == "internal scheduler secret is not configured"


def test_scheduled_retry_rejects_invalid_secret(monkeypatch, services, api_client):
    monkeypatch.setattr(internal_router.settings, "internal_scheduler_secret", "sched-secret")
    client = api_client(services, user=None)
    missing = client.post("/api/internal/ingestion/retry-scheduled", json={})
    assert missing.status_code == 401
    wrong = client.post(
        "/api/internal/ingestion/retry-scheduled",
        json={},
        headers={"X-Internal-Scheduler-Secret": "wrong-secret"},
    )
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "invalid scheduler secret"


def test_scheduled_retry_runs_and_persists_metrics(monkeypatch, services, fake_db, api_client, clock):
    monkeypatch.setattr(internal_router.settings, "internal_scheduler_secret", "sched-secret")
    monkeypatch.setattr(internal_router.settings, "observability_export_url", None)
    _queue_failure(services, fake_db)
    clock.advance(seconds=31)
    client = api_client(services, user=None)

    response = client.post(
        "/api/internal/ingestion/retry-scheduled",
        json={},
        headers={"X-Internal-Scheduler-Secret": "sched-secret"},
    )
    assert response.status_code == 200
    assert response.json()["resolved"] == 1

    snapshots = fake_db.tables["observability_metric_snapshots"]
    assert len(snapshots) == 1
    assert snapshots[0]["source"] == "ingestion_retry_scheduled"
    assert snapshots[0]["counters"]["ingestion.retry_resolved|provider=weather_station"] == 1


def test_scheduled_poll(monkeypatch, services, api_client):
    monkeypatch.setattr(internal_router.settings, "internal_scheduler_secret", "sched-secret")
    client = api_client(services, user=None)
    response = client.post(
        "/api/internal/ingestion/poll-scheduled",
        json={"provider": "weather_station"},
        headers={"X-Internal-Scheduler-Secret": "sched-secret"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "provider": "weather_station",
        "devices_polled": 0,
        "devices_skipped": 0,
        "ingested": 0,
        "failed": 0,
    }

    removed = client.post(
        "/api/internal/ingestion/poll-scheduled",
        json={"provider": "govee"},
        headers={"X-Internal-Scheduler-Secret": "sched-secret"},
    )
    assert removed.status_code == 410


def test_admin_poll(services, api_client):
    client = api_client(services, user=ADMIN)
    response = client.post("/api/internal/ingestion/poll", json={"provider": "acme"})
    assert response.status_code == 200
    assert response.json()["provider"] == "acme"
