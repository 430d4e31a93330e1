from __future__ import annotations

import logging
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.records import now_iso, update_provider_record
from src.domain.webhook_errors import WebhookTargetNotFound
from src.models.provider_events import GuardarianTransactionEvent
from src.observability import log_event


PROVIDER = "guardarian"
registry = HandlerRegistry(PROVIDER)


def _update_order(db: Any, order_id: str, values: dict[str, Any]) -> list[dict[str, Any]]:
    return update_provider_record(
        db,
        "crypto_orders",
        key_column="provider_order_id",
        key_value=order_id,
        provider=PROVIDER,
        values={**values, "updated_at": now_iso()},
    )


@registry.register("transaction.completed", GuardarianTransactionEvent)
def handle_transaction_completed(db: Any, event: GuardarianTransactionEvent) -> None:
    updated = _update_order(
        db,
        event.id,
        {
            "status": "completed",
            "crypto_amount": event.to_amount,
            "settled_at": now_iso(),
            "webhook_data": event.raw(),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Order not found for provider ID: {event.id}")
    log_event("guardarian_transaction_completed", provider_order_id=event.id)


@registry.register("transaction.failed", GuardarianTransactionEvent)
def handle_transaction_failed(db: Any, event: GuardarianTransactionEvent) -> None:
    webhook_data = event.raw()
    webhook_data["decline_reason"] = event.decline_reason
    updated = _update_order(db, event.id, {"status": "failed", "webhook_data": webhook_data})
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update order: {event.id}")
    log_event(
        "guardarian_transaction_failed",
        level=logging.WARNING,
        provider_order_id=event.id,
        reason=event.decline_reason,
    )


@registry.register("transaction.expired", GuardarianTransactionEvent)
def handle_transaction_expired(db: Any, event: GuardarianTransactionEvent) -> None:
    updated = _update_order(db, event.id, {"status": "expired", "webhook_data": event.raw()})
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update expired order: {event.id}")
    log_event("guardarian_transaction_expired", provider_order_id=event.id)
