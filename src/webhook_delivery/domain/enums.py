"""Domain enums for webhook delivery."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    """Webhook delivery lifecycle states."""

    PENDING = "pending"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class HttpMethod(str, Enum):
    """HTTP methods allowed for webhook requests."""

    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class TransportErrorKind(str, Enum):
    """Structured classification of network failures."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    DNS = "dns"
    OTHER = "other"
