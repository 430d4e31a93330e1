from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from src.auth import SuperAdminContext, get_current_super_admin
from src.config import settings
from src.db import supabase
from src.domain.event_store import WebhookEventStore
from src.domain.retry import RetryConfig, RetryProcessor
from src.domain.signatures import verify_signature
from src.domain.webhook_errors import DuplicateWebhookEvent, WebhookStorageError
from src.models.webhooks import (
    WebhookEventDetail,
    WebhookEventListItem,
    WebhookHealthResponse,
    WebhookMetricsResponse,
    WebhookProviderHealth,
    WebhookReplayResponse,
)
from src.observability import elapsed_ms, incr_metric, log_event
from src.providers.registry import PROVIDERS, ProviderWebhook, get_provider


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
_ALREADY_PROCESSED = {"success": True, "message": "Already processed"}


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _event_store() -> WebhookEventStore:
    return WebhookEventStore(supabase)


def _retry_processor(store: WebhookEventStore) -> RetryProcessor:
    return RetryProcessor(store, RetryConfig.from_settings(settings), sleep=time.sleep)


def _storage_error(provider: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "type": "webhook_storage_error",
            "provider": provider,
            "message": "Storage failed",
            "error": str(exc),
        },
    )


def _get_provider_or_400(provider_slug: str) -> ProviderWebhook:
    provider = get_provider(provider_slug)
    if provider is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported provider")
    return provider


def _parse_payload(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    return payload


async def _ingest_provider_webhook(provider: ProviderWebhook, request: Request) -> dict[str, Any]:
    started = time.perf_counter()
    req_id = _request_id(request)
    slug = provider.slug
    incr_metric("webhook.events.received", provider=slug)

    if not provider.enabled(settings):
        incr_metric("webhook.events.rejected", provider=slug, reason="disabled")
        log_event("webhook_provider_disabled", level=logging.WARNING, request_id=req_id, provider=slug)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "type": "webhook_provider_disabled",
                "provider": slug,
                "message": f"{slug} webhooks are disabled",
            },
        )

    raw_body = await request.body()
    signature = request.headers.get(provider.signature_header)
    timestamp = request.headers.get(provider.timestamp_header) if provider.timestamp_header else None
    if not verify_signature(
        raw_body,
        signature,
        timestamp,
        provider.secret(settings),
        provider.scheme,
        tolerance_seconds=settings.webhook_signature_tolerance_seconds,
    ):
        incr_metric("webhook.events.rejected", provider=slug, reason="signature")
        log_event(
            "webhook_signature_rejected",
            level=logging.WARNING,
            request_id=req_id,
            provider=slug,
            has_signature=bool(signature),
            has_timestamp=bool(timestamp),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "type": "webhook_signature_invalid",
                "provider": slug,
                "message": "Invalid signature",
            },
        )

    payload = _parse_payload(raw_body)
    event_id, event_type = provider.extract_event(payload)
    if not event_id or not event_type:
        incr_metric("webhook.events.rejected", provider=slug, reason="missing_fields")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event ID or type")

    log_event(
        "webhook_received",
        request_id=req_id,
        provider=slug,
        event_id=event_id,
        event_type=event_type,
    )

    store = _event_store()
    try:
        existing = store.find_event(slug, event_id)
        if existing is None:
            store.insert_event(
                provider=slug,
                event_id=event_id,
                event_type=event_type,
                signature=signature,
                raw_payload=payload,
            )
    except DuplicateWebhookEvent:
        existing = {"event_id": event_id}
    except WebhookStorageError as exc:
        incr_metric("webhook.events.failed", provider=slug, reason="storage")
        log_event(
            "webhook_storage_failed",
            level=logging.ERROR,
            request_id=req_id,
            provider=slug,
            event_id=event_id,
            error=str(exc),
        )
        raise _storage_error(slug, exc) from exc

    if existing is not None:
        incr_metric("webhook.events.duplicate", provider=slug)
        log_event(
            "webhook_duplicate_ignored",
            request_id=req_id,
            provider=slug,
            event_id=event_id,
            event_type=event_type,
        )
        return dict(_ALREADY_PROCESSED)

    data = provider.extract_data(payload)
    try:
        outcome = await run_in_threadpool(
            _retry_processor(store).run,
            provider=slug,
            event_id=event_id,
            operation=lambda: provider.registry.dispatch(supabase, event_type, data),
            attempt_limit=max(1, settings.webhook_inline_attempts),
            request_id=req_id,
        )
    except WebhookStorageError as exc:
        incr_metric("webhook.events.failed", provider=slug, reason="storage")
        log_event(
            "webhook_status_update_failed",
            level=logging.ERROR,
            request_id=req_id,
            provider=slug,
            event_id=event_id,
            error=str(exc),
        )
        raise _storage_error(slug, exc) from exc

    response_time_ms = elapsed_ms(started)
    if outcome.succeeded:
        incr_metric("webhook.events.processed", provider=slug)
        log_event(
            "webhook_processed",
            request_id=req_id,
            provider=slug,
            event_id=event_id,
            event_type=event_type,
            response_time_ms=response_time_ms,
        )
    else:
        incr_metric("webhook.events.failed", provider=slug, reason="handler")
        log_event(
            "webhook_failed",
            level=logging.WARNING,
            request_id=req_id,
            provider=slug,
            event_id=event_id,
            event_type=event_type,
            state=outcome.state.value,
            retry_count=outcome.retry_count,
            error=outcome.error,
        )
    return {
        "success": True,
        "event_id": event_id,
        "processed": outcome.succeeded,
        "response_time_ms": response_time_ms,
    }


def _preflight(provider: ProviderWebhook) -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=provider.cors_headers())


@router.post("/nymcard")
async def ingest_nymcard_webhook(request: Request):
    return await _ingest_provider_webhook(PROVIDERS["nymcard"], request)


@router.options("/nymcard")
async def nymcard_webhook_preflight():
    return _preflight(PROVIDERS["nymcard"])


@router.post("/ramp")
async def ingest_ramp_webhook(request: Request):
    return await _ingest_provider_webhook(PROVIDERS["ramp"], request)


@router.options("/ramp")
async def ramp_webhook_preflight():
    return _preflight(PROVIDERS["ramp"])


@router.post("/wio")
async def ingest_wio_webhook(request: Request):
    return await _ingest_provider_webhook(PROVIDERS["wio"], request)


@router.options("/wio")
async def wio_webhook_preflight():
    return _preflight(PROVIDERS["wio"])


@router.post("/guardarian")
async def ingest_guardarian_webhook(request: Request):
    return await _ingest_provider_webhook(PROVIDERS["guardarian"], request)


@router.options("/guardarian")
async def guardarian_webhook_preflight():
    return _preflight(PROVIDERS["guardarian"])


@router.post("/circle")
async def ingest_circle_webhook(request: Request):
    return await _ingest_provider_webhook(PROVIDERS["circle"], request)


@router.options("/circle")
async def circle_webhook_preflight():
    return _preflight(PROVIDERS["circle"])


@router.get("/health", response_model=WebhookHealthResponse)
async def webhooks_health():
    providers = {
        slug: WebhookProviderHealth(
            enabled=provider.enabled(settings),
            secret_configured=bool(provider.secret(settings)),
            event_types=provider.registry.event_types(),
        )
        for slug, provider in PROVIDERS.items()
    }
    return WebhookHealthResponse(
        ok=True,
        service="keyspay-webhooks",
        providers=providers,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/events", response_model=list[WebhookEventListItem])
async def list_webhook_events(
    provider: str | None = None,
    processed: bool | None = None,
    limit: int = 50,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    if provider:
        _get_provider_or_400(provider)
    bounded_limit = max(1, min(limit, 200))
    try:
        rows = _event_store().list_events(provider=provider, processed=processed, limit=bounded_limit)
    except WebhookStorageError as exc:
        raise _storage_error(provider or "all", exc) from exc
    log_event(
        "webhook_events_listed",
        provider=provider,
        processed=processed,
        returned=len(rows),
        limit=bounded_limit,
    )
    return rows


@router.get("/events/{provider_slug}/{event_id}", response_model=WebhookEventDetail)
async def get_webhook_event(
    provider_slug: str,
    event_id: str,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    _get_provider_or_400(provider_slug)
    try:
        row = _event_store().get_event(provider_slug, event_id)
    except WebhookStorageError as exc:
        raise _storage_error(provider_slug, exc) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook event not found")
    return row


@router.post("/replay/{provider_slug}/{event_id}", response_model=WebhookReplayResponse)
async def replay_webhook_event(
    provider_slug: str,
    event_id: str,
    request: Request,
    ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    provider = _get_provider_or_400(provider_slug)
    req_id = _request_id(request)
    store = _event_store()
    try:
        row = store.get_event(provider_slug, event_id)
    except WebhookStorageError as exc:
        raise _storage_error(provider_slug, exc) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook event not found")
    if row.get("processed"):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "type": "webhook_already_processed",
                "provider": provider_slug,
                "event_id": event_id,
                "message": "Webhook event already processed",
            },
        )

    payload = row.get("raw_payload") or {}
    event_type = row.get("event_type") or provider.extract_event(payload)[1] or ""
    data = provider.extract_data(payload)
    try:
        outcome = await run_in_threadpool(
            _retry_processor(store).run,
            provider=provider_slug,
            event_id=event_id,
            operation=lambda: provider.registry.dispatch(supabase, event_type, data),
            start_attempt=int(row.get("retry_count") or 0),
            attempt_limit=1,
            request_id=req_id,
        )
    except WebhookStorageError as exc:
        raise _storage_error(provider_slug, exc) from exc

    incr_metric("webhook.replay.attempted", provider=provider_slug, state=outcome.state.value)
    log_event(
        "webhook_replayed",
        request_id=req_id,
        provider=provider_slug,
        event_id=event_id,
        event_type=event_type,
        super_admin_id=ctx.super_admin_id,
        state=outcome.state.value,
        retry_count=outcome.retry_count,
    )
    return WebhookReplayResponse(
        provider=provider_slug,
        event_id=event_id,
        event_type=event_type or None,
        state=outcome.state.value,
        processed=outcome.succeeded,
        retry_count=outcome.retry_count,
        error=outcome.error,
    )


@router.get("/metrics", response_model=WebhookMetricsResponse)
async def get_webhook_metrics(
    hours: int = 24,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    bounded_hours = max(1, min(hours, 24 * 30))
    since = datetime.now(timezone.utc) - timedelta(hours=bounded_hours)
    try:
        metrics = _event_store().metrics_since(since)
    except WebhookStorageError as exc:
        raise _storage_error("all", exc) from exc
    return WebhookMetricsResponse(hours=bounded_hours, **metrics)
