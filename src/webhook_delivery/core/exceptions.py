"""Common exceptions for domain, transport and repository layers."""
from __future__ import annotations

from webhook_delivery.domain.enums import TransportErrorKind


class WebhookDeliveryError(Exception):
    """Base error for webhook delivery."""


class InvalidWebhookConfigError(WebhookDeliveryError, ValueError):
    """Raised when a webhook configuration cannot be used for delivery."""


class WebhookDisabledError(InvalidWebhookConfigError):
    """Raised when enqueueing against a disabled webhook."""


class NotFoundError(WebhookDeliveryError):
    """Raised when requested entity is missing."""


class WebhookNotFoundError(NotFoundError):
    """Raised when a webhook id is not registered."""


class DeliveryNotFoundError(NotFoundError):
    """Raised when a delivery id is unknown to the repository."""


class InvalidStatusTransitionError(WebhookDeliveryError):
    """Raised when a delivery attempts an unsupported status change."""


class TransportError(WebhookDeliveryError):
    """Network-level failure reported by a transport."""

    def __init__(self, kind: TransportErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class HttpStatusError(WebhookDeliveryError):
    """Non-2xx response surfaced as an exception (generic outbound calls)."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"HTTP {status}: {body[:200]}" if body else f"HTTP {status}")
        self.status = status
        self.body = body
