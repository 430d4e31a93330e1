from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.ledger import post_transfer_ledger_entry
from src.domain.records import find_provider_record, now_iso, update_provider_record
from src.domain.webhook_errors import WebhookTargetNotFound
from src.models.provider_events import WioIncomingCreditEvent, WioTransferEvent
from src.observability import log_event


PROVIDER = "wio"
registry = HandlerRegistry(PROVIDER)


def _update_transfer(db: Any, provider_ref: str, values: dict[str, Any]) -> list[dict[str, Any]]:
    return update_provider_record(
        db,
        "bank_transfers",
        key_column="provider_ref",
        key_value=provider_ref,
        provider=PROVIDER,
        values=values,
    )


def _metadata(event: WioTransferEvent | WioIncomingCreditEvent, **extra: Any) -> dict[str, Any]:
    metadata = event.raw()
    metadata.update(extra)
    metadata["webhook_received_at"] = now_iso()
    return metadata


@registry.register("transfer.initiated", WioTransferEvent)
def handle_transfer_initiated(db: Any, event: WioTransferEvent) -> None:
    # Wio may confirm initiation before the local transfer row is committed.
    updated = _update_transfer(
        db,
        event.transfer_id,
        {"status": "processing", "metadata": _metadata(event)},
    )
    if not updated:
        log_event("wio_transfer_not_found", level=logging.WARNING, provider_ref=event.transfer_id)
        return
    log_event("wio_transfer_initiated", provider_ref=event.transfer_id)


@registry.register("transfer.processing", WioTransferEvent)
def handle_transfer_processing(db: Any, event: WioTransferEvent) -> None:
    updated = _update_transfer(
        db,
        event.transfer_id,
        {
            "status": "processing",
            "expected_completion_date": event.estimated_completion,
            "metadata": _metadata(event),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update transfer processing: {event.transfer_id}")
    log_event("wio_transfer_processing", provider_ref=event.transfer_id)


@registry.register("transfer.completed", WioTransferEvent)
def handle_transfer_completed(db: Any, event: WioTransferEvent) -> None:
    updated = _update_transfer(
        db,
        event.transfer_id,
        {
            "status": "completed",
            "completed_at": event.completion_time or now_iso(),
            "fees_amount": event.fees,
            "metadata": _metadata(event),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update completed transfer: {event.transfer_id}")

    transfer = updated[0]
    amount = event.final_amount if event.final_amount is not None else float(transfer.get("amount") or 0)
    post_transfer_ledger_entry(db, provider=PROVIDER, transfer=transfer, amount=amount, fees=event.fees or 0)
    log_event("wio_transfer_completed", provider_ref=event.transfer_id, amount=amount)


@registry.register("transfer.failed", WioTransferEvent)
def handle_transfer_failed(db: Any, event: WioTransferEvent) -> None:
    updated = _update_transfer(
        db,
        event.transfer_id,
        {
            "status": "failed",
            "metadata": _metadata(
                event,
                failure_reason=event.failure_reason,
                failure_code=event.failure_code,
            ),
        },
    )
    if not updated:
        raise WebhookTargetNotFound(f"Failed to update failed transfer: {event.transfer_id}")
    log_event(
        "wio_transfer_failed",
        level=logging.WARNING,
        provider_ref=event.transfer_id,
        reason=event.failure_reason,
    )


def _incoming_credit_ref(event: WioIncomingCreditEvent) -> str:
    if event.credit_id:
        return event.credit_id
    # Credits without an id are keyed by their payload so redelivery maps to the same row.
    payload = json.dumps(event.raw(), sort_keys=True, default=str)
    return f"incoming_{hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]}"


@registry.register("incoming.credit", WioIncomingCreditEvent)
def handle_incoming_credit(db: Any, event: WioIncomingCreditEvent) -> None:
    provider_ref = _incoming_credit_ref(event)
    existing = find_provider_record(
        db,
        "bank_transfers",
        key_column="provider_ref",
        key_value=provider_ref,
        provider=PROVIDER,
        columns="id",
    )
    if existing:
        log_event("wio_incoming_credit_already_recorded", provider_ref=provider_ref)
        return

    completed_at = now_iso()
    created = db.table("bank_transfers").insert(
        {
            "provider": PROVIDER,
            "provider_ref": provider_ref,
            "organization_id": event.to_organization_id,
            "direction": "inbound",
            "currency": event.currency,
            "amount": event.amount,
            "status": "completed",
            "beneficiary_json": {"from_account": event.from_account, "reference": event.reference},
            "completed_at": completed_at,
            "metadata": _metadata(event),
        }
    ).execute()
    if not created.data:
        raise RuntimeError(f"Failed to create incoming credit record: {provider_ref}")

    post_transfer_ledger_entry(db, provider=PROVIDER, transfer=created.data[0], amount=event.amount, fees=0)
    log_event(
        "wio_incoming_credit",
        provider_ref=provider_ref,
        amount=event.amount,
        currency=event.currency,
        organization_id=event.to_organization_id,
    )
