from __future__ import annotations


class WebhookError(Exception):
    """Base class for webhook intake failures."""


class WebhookStorageError(WebhookError):
    """The event store could not be read or written."""


class DuplicateWebhookEvent(WebhookError):
    def __init__(self, provider: str, event_id: str) -> None:
        super().__init__(f"Duplicate {provider} webhook event: {event_id}")
        self.provider = provider
        self.event_id = event_id


class WebhookPayloadError(ValueError):
    """Provider payload did not match the schema registered for its event type."""


class WebhookTargetNotFound(LookupError):
    """A handler could not find the downstream record the event refers to."""
