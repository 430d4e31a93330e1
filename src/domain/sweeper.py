from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from src.domain.event_store import WebhookEventStore
from src.domain.retry import RetryConfig, RetryProcessor, RetryState
from src.observability import incr_metric, log_event
from src.providers.registry import PROVIDERS


@dataclass(frozen=True)
class SweeperConfig:
    batch_size: int = 10
    cooldown_seconds: int = 60
    max_retries: int = 5
    # Attempts per event per sweep; None runs the retry loop to its own bounds.
    attempts_per_event: int | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "SweeperConfig":
        return cls(
            batch_size=max(1, min(int(settings.webhook_sweeper_batch_size), 200)),
            cooldown_seconds=max(0, int(settings.webhook_sweeper_cooldown_seconds)),
            max_retries=max(0, int(settings.webhook_max_retries)),
            attempts_per_event=settings.webhook_sweeper_attempts_per_event,
        )


@dataclass
class SweepResult:
    scanned: int = 0
    succeeded: int = 0
    deferred: int = 0
    exhausted: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class WebhookSweeper:
    """Periodic re-processing of stored webhooks that have not succeeded yet.

    Candidates are read from the event store and re-dispatched from their
    persisted ``raw_payload`` through the same retry path the intake
    endpoints use, resuming backoff at the stored ``retry_count``.
    """

    def __init__(
        self,
        *,
        store: WebhookEventStore,
        processor: RetryProcessor,
        providers: Mapping[str, Any],
        db: Any,
        config: SweeperConfig = SweeperConfig(),
        settings: Any = None,
    ) -> None:
        self.store = store
        self.processor = processor
        self.providers = providers
        self.db = db
        self.config = config
        self.settings = settings

    def run_once(self, *, now: datetime | None = None, request_id: str | None = None) -> SweepResult:
        result = SweepResult()
        candidates = self.store.list_retry_candidates(
            max_retries=self.config.max_retries,
            cooldown_seconds=self.config.cooldown_seconds,
            limit=self.config.batch_size,
            now=now,
        )
        if not candidates:
            return result

        log_event("webhook_sweep_started", request_id=request_id, candidates=len(candidates))
        for row in candidates:
            result.scanned += 1
            try:
                state = self._retry_row(row, request_id=request_id)
            except Exception as exc:
                result.errors.append(f"{row.get('provider')}:{row.get('event_id')}: {exc}")
                incr_metric("webhook.sweeper.row_failed", provider=row.get("provider"))
                log_event(
                    "webhook_sweep_row_failed",
                    level=logging.ERROR,
                    request_id=request_id,
                    provider=row.get("provider"),
                    event_id=row.get("event_id"),
                    error=str(exc),
                )
                continue
            if state is None:
                result.skipped += 1
            elif state == RetryState.SUCCESS:
                result.succeeded += 1
            elif state == RetryState.EXHAUSTED:
                result.exhausted += 1
            else:
                result.deferred += 1

        incr_metric("webhook.sweeper.runs")
        log_event(
            "webhook_sweep_finished",
            request_id=request_id,
            scanned=result.scanned,
            succeeded=result.succeeded,
            deferred=result.deferred,
            exhausted=result.exhausted,
            skipped=result.skipped,
        )
        return result

    def _retry_row(self, row: dict[str, Any], *, request_id: str | None) -> RetryState | None:
        provider_slug = row.get("provider") or ""
        event_id = row.get("event_id") or ""
        provider = self.providers.get(provider_slug)
        if provider is None:
            log_event(
                "webhook_sweep_unknown_provider",
                level=logging.WARNING,
                request_id=request_id,
                provider=provider_slug,
                event_id=event_id,
            )
            return None
        if self.settings is not None and not provider.enabled(self.settings):
            log_event(
                "webhook_sweep_provider_disabled",
                level=logging.WARNING,
                request_id=request_id,
                provider=provider_slug,
                event_id=event_id,
            )
            return None

        payload = row.get("raw_payload") or {}
        event_type = row.get("event_type") or provider.extract_event(payload)[1] or ""
        data = provider.extract_data(payload)
        outcome = self.processor.run(
            provider=provider_slug,
            event_id=event_id,
            operation=lambda: provider.registry.dispatch(self.db, event_type, data),
            start_attempt=int(row.get("retry_count") or 0),
            attempt_limit=self.config.attempts_per_event,
            request_id=request_id,
        )
        incr_metric("webhook.sweeper.retried", provider=provider_slug, state=outcome.state.value)
        return outcome.state


def build_webhook_sweeper(db: Any, settings: Any) -> WebhookSweeper:
    store = WebhookEventStore(db)
    return WebhookSweeper(
        store=store,
        processor=RetryProcessor(store, RetryConfig.from_settings(settings)),
        providers=PROVIDERS,
        db=db,
        config=SweeperConfig.from_settings(settings),
        settings=settings,
    )
