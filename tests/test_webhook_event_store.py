from datetime import datetime, timezone

import pytest

from fake_supabase import FakeSupabase
from src.domain.event_store import WEBHOOK_EVENTS_TABLE, WebhookEventStore
from src.domain.webhook_errors import DuplicateWebhookEvent, WebhookStorageError


def _insert(store, event_id="evt-1"):
    return store.insert_event(
        provider="wio",
        event_id=event_id,
        event_type="transfer.completed",
        signature="sig",
        raw_payload={"event_id": event_id},
    )


def test_insert_creates_unprocessed_row():
    fake_db = FakeSupabase({})
    row = _insert(WebhookEventStore(fake_db))
    assert row["processed"] is False
    assert row["retry_count"] == 0
    assert row["last_retry_at"] is None
    assert fake_db.rows(WEBHOOK_EVENTS_TABLE)[0]["event_type"] == "transfer.completed"


def test_insert_maps_unique_violation_to_duplicate():
    store = WebhookEventStore(FakeSupabase({}))
    _insert(store)
    with pytest.raises(DuplicateWebhookEvent) as exc_info:
        _insert(store)
    assert exc_info.value.provider == "wio"
    assert exc_info.value.event_id == "evt-1"


def test_insert_maps_other_errors_to_storage_error():
    store = WebhookEventStore(FakeSupabase({}, fail_on={(WEBHOOK_EVENTS_TABLE, "insert")}))
    with pytest.raises(WebhookStorageError):
        _insert(store)


def test_lookup_failure_is_storage_error():
    store = WebhookEventStore(FakeSupabase({}, fail_on={(WEBHOOK_EVENTS_TABLE, "select")}))
    with pytest.raises(WebhookStorageError):
        store.find_event("wio", "evt-1")


def test_record_attempt_sets_processed_at_only_on_success():
    fake_db = FakeSupabase({})
    store = WebhookEventStore(fake_db)
    _insert(store)

    store.record_attempt("wio", "evt-1", processed=False, error_message="boom", retry_count=1)
    row = fake_db.rows(WEBHOOK_EVENTS_TABLE)[0]
    assert row["processed_at"] is None
    assert row["last_retry_at"]
    assert row["error_message"] == "boom"

    store.record_attempt("wio", "evt-1", processed=True, error_message=None, retry_count=1)
    row = fake_db.rows(WEBHOOK_EVENTS_TABLE)[0]
    assert row["processed"] is True
    assert row["processed_at"]
    assert row["error_message"] is None


def test_record_attempt_for_missing_row_does_not_raise():
    WebhookEventStore(FakeSupabase({})).record_attempt(
        "wio", "ghost", processed=True, error_message=None, retry_count=0
    )


def test_retry_candidates_use_cooldown_cutoff():
    now = datetime(2026, 3, 1, 12, 0, 30, 123456, tzinfo=timezone.utc)
    fake_db = FakeSupabase(
        {
            WEBHOOK_EVENTS_TABLE: [
                {"provider": "wio", "event_id": "a", "processed": False, "retry_count": 1,
                 "last_retry_at": "2026-03-01T11:59:00+00:00", "created_at": "2026-03-01T11:00:00+00:00"},
                {"provider": "wio", "event_id": "b", "processed": False, "retry_count": 1,
                 "last_retry_at": "2026-03-01T11:59:45+00:00", "created_at": "2026-03-01T11:00:01+00:00"},
            ]
        }
    )

    rows = WebhookEventStore(fake_db).list_retry_candidates(
        max_retries=5, cooldown_seconds=60, limit=10, now=now
    )

    assert [row["event_id"] for row in rows] == ["a"]
