from __future__ import annotations

import logging
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.records import now_iso, update_provider_record
from src.domain.webhook_errors import WebhookTargetNotFound
from src.models.provider_events import CirclePaymentEvent, CircleWalletEvent
from src.observability import log_event


PROVIDER = "circle"
registry = HandlerRegistry(PROVIDER)


def _update_transaction(db: Any, payment_id: str, values: dict[str, Any]) -> list[dict[str, Any]]:
    return update_provider_record(
        db,
        "circle_transactions",
        key_column="circle_transaction_id",
        key_value=payment_id,
        values=values,
    )


@registry.register("payments.confirmed", CirclePaymentEvent)
def handle_payment_confirmed(db: Any, event: CirclePaymentEvent) -> None:
    received_at = now_iso()
    updated = _update_transaction(
        db,
        event.payment_id,
        {
            "status": "completed",
            "completed_at": received_at,
            "webhook_received_at": received_at,
            "circle_response": event.raw(),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Circle transaction not found: {event.payment_id}")
    log_event("circle_payment_confirmed", payment_id=event.payment_id)


@registry.register("payments.failed", CirclePaymentEvent)
def handle_payment_failed(db: Any, event: CirclePaymentEvent) -> None:
    raw = event.raw()
    updated = _update_transaction(
        db,
        event.payment_id,
        {
            "status": "failed",
            "webhook_received_at": now_iso(),
            "error_details": event.failure or raw,
            "circle_response": raw,
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Circle transaction not found: {event.payment_id}")
    log_event("circle_payment_failed", level=logging.WARNING, payment_id=event.payment_id)


@registry.register("wallets.created", CircleWalletEvent)
def handle_wallet_created(db: Any, event: CircleWalletEvent) -> None:
    log_event("circle_wallet_created", wallet_id=event.wallet_id)
