from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from src.domain.webhook_errors import DuplicateWebhookEvent, WebhookStorageError
from src.observability import incr_metric, log_event


WEBHOOK_EVENTS_TABLE = "webhook_events_v2"
_EVENT_COLUMNS = (
    "id, provider, event_id, event_type, signature, raw_payload, processed, processed_at, "
    "error_message, retry_count, last_retry_at, created_at"
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _filter_ts(value: datetime) -> str:
    # PostgREST `or` filters split on "." and ",", so keep the literal free of both.
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _is_unique_violation(exc: Exception) -> bool:
    text = str(exc).lower()
    return "duplicate" in text or "unique" in text or "23505" in text


class WebhookEventStore:
    """Append-only log of inbound provider webhooks keyed by (provider, event_id)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def _table(self):
        return self._client.table(WEBHOOK_EVENTS_TABLE)

    def find_event(self, provider: str, event_id: str) -> dict[str, Any] | None:
        try:
            result = (
                self._table()
                .select("id, processed, retry_count")
                .eq("provider", provider)
                .eq("event_id", event_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise WebhookStorageError(f"Failed to look up {provider} webhook {event_id}: {exc}") from exc
        if not result.data:
            return None
        return result.data[0]

    def get_event(self, provider: str, event_id: str) -> dict[str, Any] | None:
        try:
            result = (
                self._table()
                .select(_EVENT_COLUMNS)
                .eq("provider", provider)
                .eq("event_id", event_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise WebhookStorageError(f"Failed to load {provider} webhook {event_id}: {exc}") from exc
        if not result.data:
            return None
        return result.data[0]

    def insert_event(
        self,
        *,
        provider: str,
        event_id: str,
        event_type: str,
        signature: str | None,
        raw_payload: dict[str, Any],
    ) -> dict[str, Any]:
        row = {
            "provider": provider,
            "event_id": event_id,
            "event_type": event_type,
            "signature": signature,
            "raw_payload": raw_payload,
            "processed": False,
            "processed_at": None,
            "error_message": None,
            "retry_count": 0,
            "last_retry_at": None,
        }
        try:
            result = self._table().insert(row).execute()
        except Exception as exc:
            if _is_unique_violation(exc):
                raise DuplicateWebhookEvent(provider, event_id) from exc
            raise WebhookStorageError(f"Failed to store {provider} webhook {event_id}: {exc}") from exc
        if not result.data:
            raise WebhookStorageError(f"Failed to store {provider} webhook {event_id}: empty insert response")
        return result.data[0]

    def record_attempt(
        self,
        provider: str,
        event_id: str,
        *,
        processed: bool,
        error_message: str | None,
        retry_count: int,
    ) -> None:
        now_iso = _now_utc().isoformat()
        update = {
            "processed": processed,
            "processed_at": now_iso if processed else None,
            "error_message": error_message,
            "retry_count": retry_count,
            "last_retry_at": now_iso,
        }
        try:
            result = (
                self._table()
                .update(update)
                .eq("provider", provider)
                .eq("event_id", event_id)
                .execute()
            )
        except Exception as exc:
            incr_metric("webhook.store.update_failed", provider=provider)
            raise WebhookStorageError(f"Failed to update {provider} webhook {event_id}: {exc}") from exc
        if not result.data:
            log_event(
                "webhook_status_update_missed",
                level=logging.WARNING,
                provider=provider,
                event_id=event_id,
            )

    def list_retry_candidates(
        self,
        *,
        max_retries: int,
        cooldown_seconds: int,
        limit: int,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        cutoff = _filter_ts((now or _now_utc()) - timedelta(seconds=cooldown_seconds))
        try:
            result = (
                self._table()
                .select(_EVENT_COLUMNS)
                .eq("processed", False)
                .lt("retry_count", max_retries)
                .or_(f"last_retry_at.is.null,last_retry_at.lt.{cutoff}")
                .order("created_at")
                .limit(limit)
                .execute()
            )
        except Exception as exc:
            raise WebhookStorageError(f"Failed to fetch failed webhooks: {exc}") from exc
        return result.data or []

    def list_events(
        self,
        *,
        provider: str | None = None,
        processed: bool | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        query = self._table().select(_EVENT_COLUMNS)
        if provider:
            query = query.eq("provider", provider)
        if processed is not None:
            query = query.eq("processed", processed)
        try:
            result = query.order("created_at", desc=True).limit(limit).execute()
        except Exception as exc:
            raise WebhookStorageError(f"Failed to list webhooks: {exc}") from exc
        return result.data or []

    def metrics_since(self, since: datetime) -> dict[str, Any]:
        try:
            result = (
                self._table()
                .select("provider, processed, created_at, retry_count")
                .gte("created_at", since.astimezone(timezone.utc).isoformat())
                .execute()
            )
        except Exception as exc:
            raise WebhookStorageError(f"Failed to fetch webhook metrics: {exc}") from exc

        rows = result.data or []
        by_provider: dict[str, dict[str, int]] = {}
        processed_count = 0
        retried_count = 0
        for row in rows:
            bucket = by_provider.setdefault(row.get("provider") or "unknown", {"total": 0, "processed": 0, "failed": 0})
            bucket["total"] += 1
            if row.get("processed"):
                processed_count += 1
                bucket["processed"] += 1
            else:
                bucket["failed"] += 1
            if int(row.get("retry_count") or 0) > 0:
                retried_count += 1
        return {
            "total": len(rows),
            "processed": processed_count,
            "failed": len(rows) - processed_count,
            "retried": retried_count,
            "by_provider": by_provider,
        }
