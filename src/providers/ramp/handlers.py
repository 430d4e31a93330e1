from __future__ import annotations

import logging
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.records import now_iso, update_provider_record
from src.domain.webhook_errors import WebhookTargetNotFound
from src.models.provider_events import RampOrderEvent
from src.observability import log_event


PROVIDER = "ramp"
registry = HandlerRegistry(PROVIDER)


def _update_order(db: Any, order_id: str, values: dict[str, Any]) -> list[dict[str, Any]]:
    values = dict(values)
    values["updated_at"] = now_iso()
    return update_provider_record(
        db,
        "crypto_orders",
        key_column="provider_order_id",
        key_value=order_id,
        provider=PROVIDER,
        values=values,
    )


@registry.register("CREATED", RampOrderEvent)
def handle_order_created(db: Any, event: RampOrderEvent) -> None:
    # The purchase widget can report the order before our checkout row is written.
    updated = _update_order(db, event.id, {"status": "pending", "webhook_data": event.raw()})
    if not updated:
        log_event("ramp_order_not_found", level=logging.WARNING, provider_order_id=event.id)
        return
    log_event("ramp_order_created", provider_order_id=event.id)


@registry.register("PAYMENT_STARTED", RampOrderEvent)
def handle_payment_started(db: Any, event: RampOrderEvent) -> None:
    webhook_data = event.raw()
    webhook_data["payment_method"] = event.payment_method_type
    updated = _update_order(db, event.id, {"status": "processing", "webhook_data": webhook_data})
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update Ramp order payment started: {event.id}")
    log_event("ramp_payment_started", provider_order_id=event.id, payment_method=event.payment_method_type)


@registry.register("PAYMENT_CONFIRMED", RampOrderEvent)
def handle_payment_confirmed(db: Any, event: RampOrderEvent) -> None:
    updated = _update_order(
        db,
        event.id,
        {"status": "confirmed", "tx_hash": event.final_tx_hash, "webhook_data": event.raw()},
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update Ramp payment confirmed: {event.id}")
    log_event("ramp_payment_confirmed", provider_order_id=event.id, tx_hash=event.final_tx_hash)


@registry.register("RELEASED", RampOrderEvent)
def handle_order_released(db: Any, event: RampOrderEvent) -> None:
    updated = _update_order(
        db,
        event.id,
        {
            "status": "completed",
            "crypto_amount": event.crypto_amount,
            "exchange_rate": event.asset_exchange_rate,
            "settled_at": now_iso(),
            "webhook_data": event.raw(),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update completed Ramp order: {event.id}")
    log_event(
        "ramp_order_completed",
        provider_order_id=event.id,
        crypto_amount=event.crypto_amount,
        asset=event.asset,
    )


@registry.register("CANCELLED", RampOrderEvent)
def handle_order_cancelled(db: Any, event: RampOrderEvent) -> None:
    webhook_data = event.raw()
    webhook_data["cancel_reason"] = event.cancel_reason
    updated = _update_order(db, event.id, {"status": "cancelled", "webhook_data": webhook_data})
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update cancelled Ramp order: {event.id}")
    log_event("ramp_order_cancelled", provider_order_id=event.id, reason=event.cancel_reason)


@registry.register("EXPIRED", RampOrderEvent)
def handle_order_expired(db: Any, event: RampOrderEvent) -> None:
    updated = _update_order(db, event.id, {"status": "expired", "webhook_data": event.raw()})
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update expired Ramp order: {event.id}")
    log_event("ramp_order_expired", provider_order_id=event.id)
