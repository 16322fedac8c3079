"""Delivery rollups and filtering."""
from __future__ import annotations

from typing import Iterable, List

from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookBreakdown, WebhookDelivery, WebhookStats

_STATUS_FIELDS = {
    DeliveryStatus.PENDING: "pending",
    DeliveryStatus.DELIVERED: "delivered",
    DeliveryStatus.FAILED: "failed",
    DeliveryStatus.RETRYING: "retrying",
    DeliveryStatus.DEAD_LETTER: "dead_letter",
}


def aggregate(records: Iterable[WebhookDelivery]) -> WebhookStats:
    stats = WebhookStats()
    for delivery in records:
        stats.total += 1
        field = _STATUS_FIELDS[delivery.status]
        setattr(stats, field, getattr(stats, field) + 1)

        breakdown = stats.by_webhook.setdefault(delivery.webhook_id, WebhookBreakdown())
        breakdown.total += 1
        if delivery.status == DeliveryStatus.DELIVERED:
            breakdown.delivered += 1
        elif delivery.status in (DeliveryStatus.FAILED, DeliveryStatus.DEAD_LETTER):
            breakdown.failed += 1
    return stats


def filter_deliveries(
    records: Iterable[WebhookDelivery],
    *,
    status: DeliveryStatus | None = None,
    webhook_id: str | None = None,
    limit: int | None = None,
) -> List[WebhookDelivery]:
    """Newest first, optionally filtered and truncated."""
    filtered = [
        d
        for d in records
        if (status is None or d.status == status)
        and (webhook_id is None or d.webhook_id == webhook_id)
    ]
    filtered.sort(key=lambda d: d.created_at, reverse=True)
    if limit is not None:
        filtered = filtered[:limit]
    return filtered
