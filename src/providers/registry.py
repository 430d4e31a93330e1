from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.domain.dispatch import HandlerRegistry
from src.domain.signatures import SignatureScheme
from src.providers.circle.handlers import registry as circle_registry
from src.providers.guardarian.handlers import registry as guardarian_registry
from src.providers.nymcard.handlers import registry as nymcard_registry
from src.providers.ramp.handlers import registry as ramp_registry
from src.providers.wio.handlers import registry as wio_registry


@dataclass(frozen=True)
class ProviderWebhook:
    """Everything the intake pipeline needs to know about one provider."""

    slug: str
    signature_header: str
    timestamp_header: str | None
    scheme: SignatureScheme
    event_id_field: str
    event_type_field: str
    data_field: str | None
    registry: HandlerRegistry

    def secret(self, settings: Any) -> str:
        return getattr(settings, f"{self.slug}_webhook_secret", None) or ""

    def enabled(self, settings: Any) -> bool:
        return bool(getattr(settings, f"{self.slug}_enabled", False))

    def extract_event(self, payload: dict[str, Any]) -> tuple[str | None, str | None]:
        event_id = payload.get(self.event_id_field)
        event_type = payload.get(self.event_type_field)
        return (
            str(event_id) if event_id not in (None, "") else None,
            str(event_type) if event_type not in (None, "") else None,
        )

    def extract_data(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.data_field is None:
            return payload
        data = payload.get(self.data_field)
        return data if isinstance(data, dict) else {}

    def cors_headers(self) -> dict[str, str]:
        allowed = ["Content-Type", self.signature_header]
        if self.timestamp_header:
            allowed.append(self.timestamp_header)
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": ", ".join(allowed),
        }


PROVIDERS: dict[str, ProviderWebhook] = {
    "nymcard": ProviderWebhook(
        slug="nymcard",
        signature_header="x-nymcard-signature",
        timestamp_header="x-nymcard-timestamp",
        scheme=SignatureScheme(message_format="timestamp_body", digest_encoding="hex"),
        event_id_field="event_id",
        event_type_field="event_type",
        data_field="data",
        registry=nymcard_registry,
    ),
    "ramp": ProviderWebhook(
        slug="ramp",
        signature_header="x-ramp-signature",
        timestamp_header="x-ramp-timestamp",
        scheme=SignatureScheme(message_format="timestamp_body", digest_encoding="hex", version_prefix="v1="),
        event_id_field="id",
        event_type_field="type",
        data_field="data",
        registry=ramp_registry,
    ),
    "wio": ProviderWebhook(
        slug="wio",
        signature_header="x-wio-signature",
        timestamp_header="x-wio-timestamp",
        scheme=SignatureScheme(message_format="timestamp_dot_body", digest_encoding="base64"),
        event_id_field="event_id",
        event_type_field="event_type",
        data_field="data",
        registry=wio_registry,
    ),
    "guardarian": ProviderWebhook(
        slug="guardarian",
        signature_header="x-guardarian-signature",
        timestamp_header="x-guardarian-timestamp",
        scheme=SignatureScheme(message_format="timestamp_dot_body", digest_encoding="hex"),
        event_id_field="id",
        event_type_field="type",
        data_field="data",
        registry=guardarian_registry,
    ),
    "circle": ProviderWebhook(
        slug="circle",
        signature_header="circle-signature",
        timestamp_header=None,
        scheme=SignatureScheme(
            message_format="body",
            digest_encoding="hex",
            version_prefix="v1=",
            requires_timestamp=False,
        ),
        event_id_field="eventId",
        event_type_field="eventType",
        data_field=None,
        registry=circle_registry,
    ),
}


def get_provider(slug: str) -> ProviderWebhook | None:
    return PROVIDERS.get(slug)
