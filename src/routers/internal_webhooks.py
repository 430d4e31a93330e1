from __future__ import annotations

import hmac
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from src.config import settings
from src.db import supabase
from src.domain.sweeper import WebhookSweeper
from src.domain.webhook_errors import WebhookStorageError
from src.models.webhooks import WebhookSweepResponse
from src.observability import incr_metric, log_event, persist_metrics_snapshot


router = APIRouter(prefix="/api/internal/webhooks", tags=["internal-webhooks"])


def get_webhook_sweeper(request: Request) -> WebhookSweeper:
    sweeper = getattr(request.app.state, "webhook_sweeper", None)
    if sweeper is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="webhook sweeper is not configured",
        )
    return sweeper


@router.post("/sweep", response_model=WebhookSweepResponse)
async def run_webhook_sweep(
    request: Request,
    x_internal_scheduler_secret: str | None = Header(default=None),
    sweeper: WebhookSweeper = Depends(get_webhook_sweeper),
):
    request_id = getattr(request.state, "request_id", None)
    configured_secret = settings.internal_scheduler_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="internal scheduler secret is not configured",
        )
    if not x_internal_scheduler_secret or not hmac.compare_digest(
        x_internal_scheduler_secret,
        configured_secret,
    ):
        incr_metric("webhook.sweeper.auth_failed")
        log_event("webhook_sweep_auth_failed", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid scheduler secret",
        )
    incr_metric("webhook.sweeper.auth_succeeded")

    try:
        result = await run_in_threadpool(sweeper.run_once, request_id=request_id)
    except WebhookStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"type": "webhook_storage_error", "message": "Storage failed", "error": str(exc)},
        ) from exc

    persist_metrics_snapshot(
        supabase_client=supabase,
        source="webhook_sweeper",
        request_id=request_id,
        reset_after_persist=False,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )
    return WebhookSweepResponse(**asdict(result))
