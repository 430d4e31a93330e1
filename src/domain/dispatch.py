from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from src.domain.webhook_errors import WebhookPayloadError
from src.observability import incr_metric, log_event


EventHandler = Callable[[Any, Any], None]


@dataclass(frozen=True)
class RegisteredHandler:
    event_type: str
    handler: EventHandler
    model: type[BaseModel]


class HandlerRegistry:
    """Maps one provider's event-type strings to typed domain handlers.

    Handlers are called as ``handler(db, payload)`` where ``payload`` is an
    instance of the model registered for the event type. Event types with no
    registered handler are accepted as benign no-ops.
    """

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self._handlers: dict[str, RegisteredHandler] = {}

    def register(self, event_type: str, model: type[BaseModel]) -> Callable[[EventHandler], EventHandler]:
        def _decorator(handler: EventHandler) -> EventHandler:
            if event_type in self._handlers:
                raise ValueError(f"{self.provider} handler already registered for {event_type}")
            self._handlers[event_type] = RegisteredHandler(event_type=event_type, handler=handler, model=model)
            return handler

        return _decorator

    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def parse(self, event_type: str, data: dict[str, Any] | None) -> BaseModel:
        entry = self._handlers[event_type]
        try:
            return entry.model.model_validate(data or {})
        except ValidationError as exc:
            fields = ",".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
            raise WebhookPayloadError(f"Invalid {self.provider} {event_type} payload: {fields}") from exc

    def dispatch(self, db: Any, event_type: str, data: dict[str, Any] | None) -> bool:
        """Run the handler for ``event_type``. Returns False when none is registered."""
        entry = self._handlers.get(event_type)
        if entry is None:
            incr_metric("webhook.events.unhandled_type", provider=self.provider, event_type=event_type)
            log_event(
                "webhook_event_type_unhandled",
                level=logging.INFO,
                provider=self.provider,
                event_type=event_type,
            )
            return False
        payload = self.parse(event_type, data)
        entry.handler(db, payload)
        incr_metric("webhook.handler.succeeded", provider=self.provider, event_type=event_type)
        return True
