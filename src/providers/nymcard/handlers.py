from __future__ import annotations

import logging
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.records import find_provider_record, now_iso, update_provider_record
from src.domain.webhook_errors import WebhookTargetNotFound
from src.models.provider_events import (
    NymCardCardEvent,
    NymCardChargebackEvent,
    NymCardTransactionEvent,
)
from src.observability import log_event


PROVIDER = "nymcard"
registry = HandlerRegistry(PROVIDER)


def _require_card(db: Any, provider_card_id: str) -> dict[str, Any]:
    card = find_provider_record(
        db,
        "cards",
        key_column="provider_card_id",
        key_value=provider_card_id,
        provider=PROVIDER,
        columns="id, user_id, card_status",
    )
    if not card:
        raise WebhookTargetNotFound(f"Card not found: {provider_card_id}")
    return card


def _upsert_card_transaction(
    db: Any,
    *,
    card: dict[str, Any],
    transaction_id: str,
    values: dict[str, Any],
) -> None:
    existing = find_provider_record(
        db,
        "card_transactions",
        key_column="provider_transaction_id",
        key_value=transaction_id,
        provider=PROVIDER,
        columns="id",
    )
    row = dict(values)
    row["updated_at"] = now_iso()
    if existing:
        db.table("card_transactions").update(row).eq("id", existing["id"]).execute()
        return
    row.update(
        {
            "provider": PROVIDER,
            "provider_transaction_id": transaction_id,
            "card_id": card["id"],
            "user_id": card.get("user_id"),
            "created_at": row["updated_at"],
        }
    )
    db.table("card_transactions").insert(row).execute()


@registry.register("card.activated", NymCardCardEvent)
def handle_card_activated(db: Any, event: NymCardCardEvent) -> None:
    updated = update_provider_record(
        db,
        "cards",
        key_column="provider_card_id",
        key_value=event.card_id,
        provider=PROVIDER,
        values={
            "card_status": "active",
            "spending_limits": event.spending_limits or {},
            "card_controls": event.controls or {},
            "updated_at": now_iso(),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update card activation: {event.card_id}")
    log_event("nymcard_card_activated", provider_card_id=event.card_id)


@registry.register("card.blocked", NymCardCardEvent)
def handle_card_blocked(db: Any, event: NymCardCardEvent) -> None:
    limits = dict(event.spending_limits or {})
    limits["block_reason"] = event.block_reason
    updated = update_provider_record(
        db,
        "cards",
        key_column="provider_card_id",
        key_value=event.card_id,
        provider=PROVIDER,
        values={
            "card_status": "blocked",
            "spending_limits": limits,
            "updated_at": now_iso(),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update card block: {event.card_id}")
    log_event("nymcard_card_blocked", provider_card_id=event.card_id, block_reason=event.block_reason)


@registry.register("transaction.authorization", NymCardTransactionEvent)
def handle_transaction_authorization(db: Any, event: NymCardTransactionEvent) -> None:
    card = _require_card(db, event.card_id)
    _upsert_card_transaction(
        db,
        card=card,
        transaction_id=event.transaction_id,
        values={
            "status": "authorized",
            "authorization_status": event.status,
            "amount": event.amount,
            "currency": event.currency,
            "merchant": event.merchant,
            "raw_payload": event.raw(),
        },
    )
    log_event(
        "nymcard_transaction_authorized",
        transaction_id=event.transaction_id,
        amount=event.amount,
        currency=event.currency,
        status=event.status,
    )


@registry.register("transaction.clearing", NymCardTransactionEvent)
def handle_transaction_clearing(db: Any, event: NymCardTransactionEvent) -> None:
    card = _require_card(db, event.card_id)
    _upsert_card_transaction(
        db,
        card=card,
        transaction_id=event.transaction_id,
        values={
            "status": "cleared",
            "amount": event.amount,
            "currency": event.currency,
            "merchant": event.merchant,
            "cleared_at": now_iso(),
            "raw_payload": event.raw(),
        },
    )
    merchant_name = (event.merchant or {}).get("name")
    log_event(
        "nymcard_transaction_cleared",
        transaction_id=event.transaction_id,
        amount=event.amount,
        currency=event.currency,
        merchant=merchant_name,
    )


@registry.register("transaction.chargeback", NymCardChargebackEvent)
def handle_transaction_chargeback(db: Any, event: NymCardChargebackEvent) -> None:
    card = _require_card(db, event.card_id)
    _upsert_card_transaction(
        db,
        card=card,
        transaction_id=event.transaction_id,
        values={
            "status": "charged_back",
            "chargeback_amount": event.chargeback_amount,
            "chargeback_reason": event.reason,
            "raw_payload": event.raw(),
        },
    )
    log_event(
        "nymcard_transaction_chargeback",
        level=logging.WARNING,
        transaction_id=event.transaction_id,
        chargeback_amount=event.chargeback_amount,
        reason=event.reason,
    )
