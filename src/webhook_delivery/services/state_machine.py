"""Delivery status transitions."""
from __future__ import annotations

from datetime import datetime, timedelta

from webhook_delivery.core.exceptions import InvalidStatusTransitionError
from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookDelivery

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {
        DeliveryStatus.RETRYING,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.DEAD_LETTER,
        DeliveryStatus.FAILED,
    },
    DeliveryStatus.RETRYING: {
        DeliveryStatus.RETRYING,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.DEAD_LETTER,
        DeliveryStatus.FAILED,
    },
    DeliveryStatus.DELIVERED: set(),
    # Manual reset only
    DeliveryStatus.DEAD_LETTER: {DeliveryStatus.PENDING},
    DeliveryStatus.FAILED: {DeliveryStatus.PENDING},
}

ATTEMPTABLE_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.RETRYING})
TERMINAL_FAILED_STATUSES = frozenset({DeliveryStatus.FAILED, DeliveryStatus.DEAD_LETTER})


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


def _transition(delivery: WebhookDelivery, new: DeliveryStatus) -> None:
    validate_delivery_transition(delivery.status, new)
    delivery.status = new


def is_due(delivery: WebhookDelivery, now: datetime) -> bool:
    if delivery.status not in ATTEMPTABLE_STATUSES:
        return False
    return delivery.next_retry_at is None or delivery.next_retry_at <= now


def should_retry(delivery: WebhookDelivery) -> bool:
    return delivery.attempts < delivery.max_attempts


def mark_delivered(
    delivery: WebhookDelivery,
    *,
    response_status: int,
    response_body: str | None,
    now: datetime,
) -> None:
    _transition(delivery, DeliveryStatus.DELIVERED)
    delivery.response_status = response_status
    delivery.response_body = response_body
    delivery.delivered_at = now
    delivery.next_retry_at = None
    delivery.error = None


def schedule_retry(
    delivery: WebhookDelivery,
    *,
    error: str,
    now: datetime,
    delay_ms: float,
) -> None:
    _transition(delivery, DeliveryStatus.RETRYING)
    delivery.error = error
    delivery.next_retry_at = now + timedelta(milliseconds=delay_ms)


def mark_dead_letter(delivery: WebhookDelivery, *, error: str) -> None:
    _transition(delivery, DeliveryStatus.DEAD_LETTER)
    delivery.error = error
    delivery.next_retry_at = None


def mark_failed(delivery: WebhookDelivery, *, error: str) -> None:
    _transition(delivery, DeliveryStatus.FAILED)
    delivery.error = error
    delivery.next_retry_at = None


def reset_for_retry(delivery: WebhookDelivery) -> None:
    """Operator-initiated reset of a dead-lettered or failed delivery."""
    _transition(delivery, DeliveryStatus.PENDING)
    delivery.attempts = 0
    delivery.error = None
    delivery.next_retry_at = None
