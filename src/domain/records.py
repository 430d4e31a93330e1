from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def update_provider_record(
    db: Any,
    table: str,
    *,
    key_column: str,
    key_value: str,
    values: dict[str, Any],
    provider: str | None = None,
) -> list[dict[str, Any]]:
    """Overwrite fields on the record(s) a provider reference points at.

    Returns the updated rows; an empty list means no record matched.
    """
    query = db.table(table).update(values).eq(key_column, key_value)
    if provider:
        query = query.eq("provider", provider)
    result = query.execute()
    return result.data or []


def find_provider_record(
    db: Any,
    table: str,
    *,
    key_column: str,
    key_value: str,
    provider: str | None = None,
    columns: str = "*",
) -> dict[str, Any] | None:
    query = db.table(table).select(columns).eq(key_column, key_value)
    if provider:
        query = query.eq("provider", provider)
    result = query.limit(1).execute()
    if not result.data:
        return None
    return result.data[0]
