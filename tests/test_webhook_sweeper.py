import asyncio
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
from fastapi.testclient import TestClient

from fake_supabase import FakeSupabase
from src.domain.event_store import WebhookEventStore
from src.domain.retry import RetryConfig, RetryProcessor
from src.domain.sweeper import SweepResult, SweeperConfig, WebhookSweeper
from src.main import app
from src.providers.registry import PROVIDERS
from src.routers import internal_webhooks as internal_webhooks_router


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _iso(delta_seconds: int) -> str:
    return (NOW - timedelta(seconds=delta_seconds)).isoformat()


def _settings(**overrides):
    values = {f"{slug}_enabled": True for slug in PROVIDERS}
    values.update(overrides)
    return SimpleNamespace(**values)


def _event(event_id, *, provider="ramp", event_type="UNKNOWN", processed=False, retry_count=0, last_retry_at=None, data=None, age=600):
    if provider == "ramp":
        payload = {"id": event_id, "type": event_type, "data": data or {}}
    else:
        payload = {"event_id": event_id, "event_type": event_type, "data": data or {}}
    return {
        "id": f"row-{event_id}",
        "provider": provider,
        "event_id": event_id,
        "event_type": event_type,
        "raw_payload": payload,
        "processed": processed,
        "retry_count": retry_count,
        "last_retry_at": last_retry_at,
        "created_at": _iso(age),
    }


def _sweeper(fake_db, sleeps=None, settings=None, **config):
    store = WebhookEventStore(fake_db)
    processor = RetryProcessor(
        store,
        RetryConfig(max_total_delay_ms=None),
        sleep=(sleeps if sleeps is not None else []).append,
    )
    return WebhookSweeper(
        store=store,
        processor=processor,
        providers=PROVIDERS,
        db=fake_db,
        config=SweeperConfig(**config),
        settings=settings or _settings(),
    )


def _row(fake_db, event_id):
    return next(row for row in fake_db.rows("webhook_events_v2") if row["event_id"] == event_id)


def test_sweeper_only_picks_retry_eligible_events():
    fake_db = FakeSupabase(
        {
            "webhook_events_v2": [
                _event("done", processed=True),
                _event("exhausted", retry_count=5, last_retry_at=_iso(3600)),
                _event("cooling", retry_count=1, last_retry_at=_iso(10)),
                _event("never-tried"),
                _event("cooled", retry_count=2, last_retry_at=_iso(120)),
            ]
        }
    )

    result = _sweeper(fake_db).run_once(now=NOW)

    assert result.scanned == 2
    assert result.succeeded == 2
    assert _row(fake_db, "never-tried")["processed"] is True
    assert _row(fake_db, "cooled")["processed"] is True
    assert _row(fake_db, "cooled")["retry_count"] == 2
    assert _row(fake_db, "cooling")["processed"] is False
    assert _row(fake_db, "exhausted")["processed"] is False


def test_sweeper_resumes_backoff_from_stored_retry_count():
    fake_db = FakeSupabase(
        {
            "webhook_events_v2": [
                _event("stuck", provider="nymcard", event_type="card.activated", retry_count=3, last_retry_at=_iso(300), data={"card_id": "gone"}),
            ],
            "cards": [],
        }
    )
    sleeps = []

    result = _sweeper(fake_db, sleeps=sleeps).run_once(now=NOW)

    assert result.exhausted == 1
    assert sleeps == [8.0, 16.0]
    row = _row(fake_db, "stuck")
    assert row["retry_count"] == 5
    assert "gone" in row["error_message"]


def test_sweeper_attempt_limit_defers_to_next_run():
    fake_db = FakeSupabase(
        {
            "webhook_events_v2": [
                _event("later", provider="nymcard", event_type="card.blocked", retry_count=1, last_retry_at=_iso(300), data={"card_id": "gone"}),
            ],
            "cards": [],
        }
    )

    result = _sweeper(fake_db, attempts_per_event=1).run_once(now=NOW)

    assert result.deferred == 1
    assert _row(fake_db, "later")["retry_count"] == 2


def test_sweeper_respects_batch_size_and_creation_order():
    fake_db = FakeSupabase(
        {"webhook_events_v2": [_event(f"e-{i}", age=1000 - i) for i in range(5)]}
    )

    result = _sweeper(fake_db, batch_size=2).run_once(now=NOW)

    assert result.scanned == 2
    processed = sorted(row["event_id"] for row in fake_db.rows("webhook_events_v2") if row["processed"])
    assert processed == ["e-0", "e-1"]


def test_sweeper_skips_unknown_and_disabled_providers():
    fake_db = FakeSupabase(
        {
            "webhook_events_v2": [
                _event("legacy", provider="nium"),
                _event("paused", provider="wio", event_type="transfer.initiated", data={"transfer_id": "t-1"}),
            ]
        }
    )

    result = _sweeper(fake_db, settings=_settings(wio_enabled=False)).run_once(now=NOW)

    assert result.scanned == 2
    assert result.skipped == 2
    assert all(row["processed"] is False for row in fake_db.rows("webhook_events_v2"))


def test_sweeper_continues_after_row_error():
    fake_db = FakeSupabase(
        {"webhook_events_v2": [_event("a"), _event("b")]},
        fail_on={("webhook_events_v2", "update")},
    )

    result = _sweeper(fake_db).run_once(now=NOW)

    assert result.scanned == 2
    assert len(result.errors) == 2
    assert result.errors[0].startswith("ramp:a:")


def test_sweeper_with_nothing_to_do_returns_empty_result():
    result = _sweeper(FakeSupabase({"webhook_events_v2": []})).run_once(now=NOW)
    assert result == SweepResult()


class _StubSweeper:
    def __init__(self):
        self.calls = 0

    def run_once(self, *, now=None, request_id=None):
        self.calls += 1
        return SweepResult(scanned=3, succeeded=2, deferred=1)


def test_sweep_endpoint_requires_configured_secret(monkeypatch):
    monkeypatch.setattr(internal_webhooks_router.settings, "internal_scheduler_secret", None)
    client = TestClient(app)
    response = client.post("/api/internal/webhooks/sweep", headers={"X-Internal-Scheduler-Secret": "x"})
    assert response.status_code == 503


def test_sweep_endpoint_rejects_wrong_secret(monkeypatch):
    monkeypatch.setattr(internal_webhooks_router.settings, "internal_scheduler_secret", "sched-secret")
    stub = _StubSweeper()
    monkeypatch.setattr(app.state, "webhook_sweeper", stub)
    client = TestClient(app)

    missing = client.post("/api/internal/webhooks/sweep")
    wrong = client.post("/api/internal/webhooks/sweep", headers={"X-Internal-Scheduler-Secret": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert stub.calls == 0


def test_sweep_endpoint_runs_app_sweeper(monkeypatch):
    monkeypatch.setattr(internal_webhooks_router.settings, "internal_scheduler_secret", "sched-secret")
    monkeypatch.setattr(internal_webhooks_router.settings, "observability_export_url", None)
    fake_db = FakeSupabase({})
    monkeypatch.setattr(internal_webhooks_router, "supabase", fake_db)
    stub = _StubSweeper()
    monkeypatch.setattr(app.state, "webhook_sweeper", stub)
    client = TestClient(app)

    response = client.post("/api/internal/webhooks/sweep", headers={"X-Internal-Scheduler-Secret": "sched-secret"})

    assert response.status_code == 200
    assert response.json() == {
        "scanned": 3,
        "succeeded": 2,
        "deferred": 1,
        "exhausted": 0,
        "skipped": 0,
        "errors": [],
    }
    assert stub.calls == 1
    assert fake_db.rows("observability_metric_snapshots")[0]["source"] == "webhook_sweeper"


class _SlowSweeper(_StubSweeper):
    def run_once(self, *, now=None, request_id=None):
        time.sleep(0.5)
        return super().run_once(now=now, request_id=request_id)


def test_sweep_endpoint_does_not_block_other_requests(monkeypatch):
    monkeypatch.setattr(internal_webhooks_router.settings, "internal_scheduler_secret", "sched-secret")
    monkeypatch.setattr(internal_webhooks_router.settings, "observability_export_url", None)
    monkeypatch.setattr(internal_webhooks_router, "supabase", FakeSupabase({}))
    stub = _SlowSweeper()
    monkeypatch.setattr(app.state, "webhook_sweeper", stub)

    async def sweep_and_health():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            async def timed_health():
                await asyncio.sleep(0.05)
                started = time.perf_counter()
                response = await client.get("/api/webhooks/health")
                return response, time.perf_counter() - started

            return await asyncio.gather(
                client.post("/api/internal/webhooks/sweep", headers={"X-Internal-Scheduler-Secret": "sched-secret"}),
                timed_health(),
            )

    sweep, (health, health_seconds) = asyncio.run(sweep_and_health())

    assert sweep.status_code == 200
    assert stub.calls == 1
    assert health.status_code == 200
    assert health_seconds < 0.3
