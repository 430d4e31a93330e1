from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from src.observability import incr_metric, log_event


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 300000
    exponential_base: float = 2.0
    # Upper bound on total sleep inside one run() call; None leaves it unbounded.
    max_total_delay_ms: int | None = 60000

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryConfig":
        return cls(
            max_retries=max(0, int(settings.webhook_max_retries)),
            base_delay_ms=max(0, int(settings.webhook_retry_base_delay_ms)),
            max_delay_ms=max(0, int(settings.webhook_retry_max_delay_ms)),
            exponential_base=max(1.0, float(settings.webhook_retry_exponential_base)),
            max_total_delay_ms=settings.webhook_retry_max_total_delay_ms,
        )


DEFAULT_RETRY_CONFIG = RetryConfig()


def compute_retry_delay_ms(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> int:
    delay = config.base_delay_ms * (config.exponential_base ** max(0, attempt))
    return int(min(delay, config.max_delay_ms))


class RetryState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    RETRY = "retry"
    EXHAUSTED = "exhausted"


@dataclass
class RetryOutcome:
    state: RetryState
    attempts: int
    retry_count: int
    result: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == RetryState.SUCCESS


def _error_text(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class RetryProcessor:
    """Runs an operation with exponential backoff and records every attempt.

    Attempt indices run from ``start_attempt`` up to ``config.max_retries``
    inclusive. After a failure at index ``n`` the event's ``retry_count``
    becomes ``min(n + 1, max_retries)``. The loop is synchronous: it blocks
    the caller for the backoff sleeps, bounded by ``attempt_limit`` and
    ``config.max_total_delay_ms``.
    """

    def __init__(
        self,
        store: Any,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self.config = config
        self._sleep = sleep

    def run(
        self,
        *,
        provider: str,
        event_id: str,
        operation: Callable[[], Any],
        start_attempt: int = 0,
        attempt_limit: int | None = None,
        request_id: str | None = None,
    ) -> RetryOutcome:
        max_retries = self.config.max_retries
        attempt = max(0, start_attempt)
        if attempt > max_retries:
            return RetryOutcome(state=RetryState.EXHAUSTED, attempts=0, retry_count=max_retries)

        attempts_made = 0
        slept_ms = 0
        while True:
            attempts_made += 1
            try:
                result = operation()
            except Exception as exc:
                error = _error_text(exc)
                retry_count = min(attempt + 1, max_retries)
                self._store.record_attempt(
                    provider,
                    event_id,
                    processed=False,
                    error_message=error,
                    retry_count=retry_count,
                )
                incr_metric("webhook.attempt.failed", provider=provider)

                if attempt >= max_retries:
                    incr_metric("webhook.retry.exhausted", provider=provider)
                    log_event(
                        "webhook_retry_exhausted",
                        level=logging.ERROR,
                        request_id=request_id,
                        provider=provider,
                        event_id=event_id,
                        attempts=attempt + 1,
                        error=error,
                    )
                    return RetryOutcome(
                        state=RetryState.EXHAUSTED,
                        attempts=attempts_made,
                        retry_count=retry_count,
                        error=error,
                    )

                delay_ms = compute_retry_delay_ms(attempt, self.config)
                budget = self.config.max_total_delay_ms
                out_of_attempts = attempt_limit is not None and attempts_made >= attempt_limit
                out_of_budget = budget is not None and slept_ms + delay_ms > budget
                if out_of_attempts or out_of_budget:
                    incr_metric("webhook.retry.deferred", provider=provider)
                    log_event(
                        "webhook_retry_deferred",
                        level=logging.WARNING,
                        request_id=request_id,
                        provider=provider,
                        event_id=event_id,
                        retry_count=retry_count,
                        reason="attempt_limit" if out_of_attempts else "delay_budget",
                        error=error,
                    )
                    return RetryOutcome(
                        state=RetryState.RETRY,
                        attempts=attempts_made,
                        retry_count=retry_count,
                        error=error,
                    )

                log_event(
                    "webhook_retry_scheduled",
                    level=logging.WARNING,
                    request_id=request_id,
                    provider=provider,
                    event_id=event_id,
                    attempt=attempt + 1,
                    delay_ms=delay_ms,
                    error=error,
                )
                self._sleep(delay_ms / 1000.0)
                slept_ms += delay_ms
                attempt += 1
                continue

            self._store.record_attempt(
                provider,
                event_id,
                processed=True,
                error_message=None,
                retry_count=attempt,
            )
            incr_metric("webhook.attempt.succeeded", provider=provider)
            return RetryOutcome(
                state=RetryState.SUCCESS,
                attempts=attempts_made,
                retry_count=attempt,
                result=result,
            )
