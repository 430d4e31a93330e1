from fastapi.testclient import TestClient

from src.main import app


def test_webhook_events_list_requires_super_admin_token():
    client = TestClient(app)
    response = client.get("/api/webhooks/events")
    assert response.status_code == 401


def test_webhook_event_detail_requires_super_admin_token():
    client = TestClient(app)
    response = client.get("/api/webhooks/events/ramp/evt-1")
    assert response.status_code == 401


def test_webhook_replay_requires_super_admin_token():
    client = TestClient(app)
    response = client.post("/api/webhooks/replay/ramp/evt-1")
    assert response.status_code == 401


def test_webhook_metrics_requires_super_admin_token():
    client = TestClient(app)
    response = client.get("/api/webhooks/metrics?hours=24")
    assert response.status_code == 401


def test_operator_endpoints_reject_malformed_and_forged_tokens():
    client = TestClient(app)
    assert client.get("/api/webhooks/events", headers={"Authorization": "Token abc"}).status_code == 401
    assert client.get("/api/webhooks/events", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401
    assert client.get("/api/super-admin/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_webhook_health_is_public(monkeypatch):
    from src.routers import webhooks as webhooks_router

    monkeypatch.setattr(webhooks_router.settings, "circle_webhook_secret", None)
    monkeypatch.setattr(webhooks_router.settings, "ramp_webhook_secret", "ramp-secret")
    monkeypatch.setattr(webhooks_router.settings, "guardarian_enabled", False)
    client = TestClient(app)

    response = client.get("/api/webhooks/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert set(body["providers"]) == {"nymcard", "ramp", "wio", "guardarian", "circle"}
    assert body["providers"]["ramp"]["secret_configured"] is True
    assert body["providers"]["circle"]["secret_configured"] is False
    assert body["providers"]["guardarian"]["enabled"] is False
    assert "RELEASED" in body["providers"]["ramp"]["event_types"]


def test_internal_sweep_requires_scheduler_secret(monkeypatch):
    from src.routers import internal_webhooks as internal_webhooks_router

    monkeypatch.setattr(internal_webhooks_router.settings, "internal_scheduler_secret", "sched-secret")
    client = TestClient(app)
    response = client.post("/api/internal/webhooks/sweep")
    assert response.status_code == 401
