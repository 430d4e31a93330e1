from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


ProviderSlug = Literal["nymcard", "ramp", "wio", "guardarian", "circle"]


class WebhookEventListItem(BaseModel):
    id: str
    provider: str
    event_id: str
    event_type: str | None = None
    processed: bool = False
    processed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0
    last_retry_at: datetime | None = None
    created_at: datetime | None = None


class WebhookEventDetail(WebhookEventListItem):
    signature: str | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class WebhookReplayResponse(BaseModel):
    provider: ProviderSlug
    event_id: str
    event_type: str | None = None
    state: Literal["success", "retry", "exhausted"]
    processed: bool
    retry_count: int
    error: str | None = None


class ProviderWebhookMetrics(BaseModel):
    total: int
    processed: int
    failed: int


class WebhookMetricsResponse(BaseModel):
    hours: int
    total: int
    processed: int
    failed: int
    retried: int
    by_provider: dict[str, ProviderWebhookMetrics]


class WebhookProviderHealth(BaseModel):
    enabled: bool
    secret_configured: bool
    event_types: list[str]


class WebhookHealthResponse(BaseModel):
    ok: bool
    service: str
    providers: dict[str, WebhookProviderHealth]
    timestamp: datetime


class WebhookSweepResponse(BaseModel):
    scanned: int
    succeeded: int
    deferred: int
    exhausted: int
    skipped: int
    errors: list[str] = []
