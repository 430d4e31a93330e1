from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from src.observability import incr_metric, log_event


RECONCILIATION_TABLE = "ledger_reconciliation_items"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _find_cash_account(db: Any, organization_id: str | None, currency: str | None) -> dict[str, Any] | None:
    result = (
        db.table("ledger_accounts")
        .select("id")
        .eq("organization_id", organization_id)
        .eq("currency", currency)
        .eq("account_type", "asset")
        .eq("account_code", f"CASH_{currency}")
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def _mark_pending_reconciliation(
    db: Any,
    *,
    provider: str,
    transfer: dict[str, Any],
    amount: float,
    fees: float,
    reason: str,
    error: str | None,
) -> None:
    try:
        db.table(RECONCILIATION_TABLE).insert(
            {
                "provider": provider,
                "source_table": "bank_transfers",
                "source_id": transfer.get("id"),
                "reference": transfer.get("provider_ref"),
                "organization_id": transfer.get("organization_id"),
                "currency": transfer.get("currency"),
                "amount": amount,
                "fees_amount": fees,
                "status": "pending_reconciliation",
                "reason": reason,
                "error_message": error,
                "created_at": _now_iso(),
            }
        ).execute()
    except Exception as exc:
        incr_metric("ledger.reconciliation.record_failed", provider=provider)
        log_event(
            "ledger_reconciliation_record_failed",
            level=logging.ERROR,
            provider=provider,
            transfer_id=transfer.get("id"),
            reason=reason,
            error=str(exc),
        )


def post_transfer_ledger_entry(
    db: Any,
    *,
    provider: str,
    transfer: dict[str, Any],
    amount: float,
    fees: float = 0,
) -> bool:
    """Post a cash ledger entry for a settled bank transfer.

    Ledger posting is secondary to the transfer status update that precedes
    it: this never raises. When posting is not possible the transfer is
    queued as a pending reconciliation item instead.
    """
    reason = "ledger_insert_failed"
    error: str | None = None
    try:
        cash_account = _find_cash_account(db, transfer.get("organization_id"), transfer.get("currency"))
        if cash_account is None:
            reason = "cash_account_missing"
            log_event(
                "ledger_cash_account_missing",
                level=logging.WARNING,
                provider=provider,
                organization_id=transfer.get("organization_id"),
                currency=transfer.get("currency"),
            )
        else:
            inbound = transfer.get("direction") == "inbound"
            db.table("ledger_entries").insert(
                {
                    "organization_id": transfer.get("organization_id"),
                    "account_id": cash_account["id"],
                    "transaction_id": transfer.get("id"),
                    "debit_amount": amount if inbound and amount > 0 else None,
                    "credit_amount": amount if not inbound and amount > 0 else None,
                    "fees_amount": fees or None,
                    "currency": transfer.get("currency"),
                    "description": f"Bank transfer - {transfer.get('direction') or 'outbound'}",
                    "reference": transfer.get("provider_ref"),
                    "provider": provider,
                    "provider_transaction_id": transfer.get("provider_ref"),
                }
            ).execute()
            incr_metric("ledger.posting.succeeded", provider=provider)
            log_event(
                "ledger_entry_posted",
                provider=provider,
                transfer_id=transfer.get("id"),
                amount=amount,
            )
            return True
    except Exception as exc:
        error = str(exc)
        log_event(
            "ledger_entry_post_failed",
            level=logging.ERROR,
            provider=provider,
            transfer_id=transfer.get("id"),
            error=error,
        )

    incr_metric("ledger.posting.failed", provider=provider, reason=reason)
    _mark_pending_reconciliation(
        db,
        provider=provider,
        transfer=transfer,
        amount=amount,
        fees=fees,
        reason=reason,
        error=error,
    )
    return False
