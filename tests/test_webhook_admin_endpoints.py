from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from fake_supabase import FakeSupabase
from src.auth.context import SuperAdminContext
from src.auth.dependencies import get_current_super_admin
from src.main import app
from src.routers import webhooks as webhooks_router


def _ago(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


def _event_row(event_id, *, provider="nymcard", event_type="card.activated", processed=False, retry_count=0, data=None, created_at=None):
    if provider == "ramp":
        payload = {"id": event_id, "type": event_type, "data": data or {}}
    else:
        payload = {"event_id": event_id, "event_type": event_type, "data": data or {}}
    return {
        "id": f"row-{event_id}",
        "provider": provider,
        "event_id": event_id,
        "event_type": event_type,
        "signature": "sig",
        "raw_payload": payload,
        "processed": processed,
        "processed_at": _ago(0.5) if processed else None,
        "error_message": None if processed else "Card not found: c-1",
        "retry_count": retry_count,
        "last_retry_at": _ago(0.5) if retry_count else None,
        "created_at": created_at or _ago(1),
    }


def _set_super_admin():
    async def _override():
        return SuperAdminContext(super_admin_id="sa-1", email="ops@keyspay.example")

    app.dependency_overrides[get_current_super_admin] = _override


def _clear_overrides():
    app.dependency_overrides.clear()


def _setup(monkeypatch, tables):
    fake_db = FakeSupabase(tables)
    monkeypatch.setattr(webhooks_router, "supabase", fake_db)
    _set_super_admin()
    return fake_db


def test_list_events_filters_by_provider_and_state(monkeypatch):
    _setup(
        monkeypatch,
        {
            "webhook_events_v2": [
                _event_row("n-1", created_at=_ago(3)),
                _event_row("n-2", processed=True, created_at=_ago(2)),
                _event_row("n-3", created_at=_ago(1)),
                _event_row("r-1", provider="ramp", event_type="CREATED"),
            ]
        },
    )
    client = TestClient(app)

    response = client.get("/api/webhooks/events?provider=nymcard&processed=false")

    assert response.status_code == 200
    assert [row["event_id"] for row in response.json()] == ["n-3", "n-1"]
    _clear_overrides()


def test_list_events_rejects_unsupported_provider(monkeypatch):
    _setup(monkeypatch, {"webhook_events_v2": []})
    client = TestClient(app)
    response = client.get("/api/webhooks/events?provider=lob")
    assert response.status_code == 400
    _clear_overrides()


def test_event_detail_returns_payload_or_404(monkeypatch):
    _setup(monkeypatch, {"webhook_events_v2": [_event_row("n-1", data={"card_id": "c-1"})]})
    client = TestClient(app)

    found = client.get("/api/webhooks/events/nymcard/n-1")
    missing = client.get("/api/webhooks/events/nymcard/n-404")

    assert found.status_code == 200
    assert found.json()["raw_payload"]["data"] == {"card_id": "c-1"}
    assert found.json()["signature"] == "sig"
    assert missing.status_code == 404
    _clear_overrides()


def test_replay_processes_previously_failed_event(monkeypatch):
    fake_db = _setup(
        monkeypatch,
        {
            "webhook_events_v2": [_event_row("n-1", retry_count=2, data={"card_id": "c-1"})],
            "cards": [{"id": "card-1", "provider": "nymcard", "provider_card_id": "c-1", "card_status": "pending"}],
        },
    )
    client = TestClient(app)

    response = client.post("/api/webhooks/replay/nymcard/n-1")

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "success"
    assert body["processed"] is True
    assert body["retry_count"] == 2
    assert fake_db.rows("cards")[0]["card_status"] == "active"
    assert fake_db.rows("webhook_events_v2")[0]["processed"] is True
    _clear_overrides()


def test_replay_failure_makes_a_single_attempt(monkeypatch):
    fake_db = _setup(
        monkeypatch,
        {"webhook_events_v2": [_event_row("n-1", retry_count=2, data={"card_id": "c-1"})], "cards": []},
    )
    client = TestClient(app)

    response = client.post("/api/webhooks/replay/nymcard/n-1")

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "retry"
    assert body["processed"] is False
    assert body["retry_count"] == 3
    assert fake_db.calls.count(("cards", "update")) == 1
    _clear_overrides()


def test_replay_of_processed_event_conflicts(monkeypatch):
    _setup(monkeypatch, {"webhook_events_v2": [_event_row("n-1", processed=True)]})
    client = TestClient(app)

    response = client.post("/api/webhooks/replay/nymcard/n-1")

    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "webhook_already_processed"
    _clear_overrides()


def test_replay_of_missing_event_is_404(monkeypatch):
    _setup(monkeypatch, {"webhook_events_v2": []})
    client = TestClient(app)
    assert client.post("/api/webhooks/replay/ramp/nope").status_code == 404
    _clear_overrides()


def test_metrics_summarise_recent_window(monkeypatch):
    _setup(
        monkeypatch,
        {
            "webhook_events_v2": [
                _event_row("n-1", processed=True),
                _event_row("n-2", retry_count=3),
                _event_row("r-1", provider="ramp", event_type="RELEASED", processed=True, retry_count=1),
                _event_row("old", processed=True, created_at=_ago(48)),
            ]
        },
    )
    client = TestClient(app)

    response = client.get("/api/webhooks/metrics?hours=24")

    assert response.status_code == 200
    body = response.json()
    assert body["hours"] == 24
    assert body["total"] == 3
    assert body["processed"] == 2
    assert body["failed"] == 1
    assert body["retried"] == 2
    assert body["by_provider"]["nymcard"] == {"total": 2, "processed": 1, "failed": 1}
    assert body["by_provider"]["ramp"] == {"total": 1, "processed": 1, "failed": 0}
    _clear_overrides()
