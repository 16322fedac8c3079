"""In-process delivery store (tests, single-process deployments)."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookDelivery
from webhook_delivery.services.state_machine import (
    ATTEMPTABLE_STATUSES,
    TERMINAL_FAILED_STATUSES,
    is_due,
)
from webhook_delivery.services.stats import filter_deliveries


class InMemoryDeliveryRepository:
    """Dict-backed :class:`DeliveryRepository`.

    Records are kept by reference, so in-place mutations are visible to
    every reader.
    """

    def __init__(self) -> None:
        self._items: dict[str, WebhookDelivery] = {}
        self._leases: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        return self._items.get(delivery_id)

    def _find_by_key(self, key: str) -> WebhookDelivery | None:
        matches = [d for d in self._items.values() if d.idempotency_key == key]
        for delivery in matches:
            if delivery.status not in TERMINAL_FAILED_STATUSES:
                return delivery
        if not matches:
            return None
        return max(matches, key=lambda d: d.created_at)

    async def get_by_idempotency_key(self, key: str) -> WebhookDelivery | None:
        return self._find_by_key(key)

    async def insert_if_absent(self, delivery: WebhookDelivery) -> tuple[WebhookDelivery, bool]:
        async with self._lock:
            existing = self._find_by_key(delivery.idempotency_key)
            if existing is not None and existing.status not in TERMINAL_FAILED_STATUSES:
                return existing, False
            self._items[delivery.id] = delivery
            return delivery, True

    async def save(self, delivery: WebhookDelivery) -> None:
        async with self._lock:
            self._items[delivery.id] = delivery
            self._leases.pop(delivery.id, None)

    async def list(
        self,
        *,
        status: DeliveryStatus | None = None,
        webhook_id: str | None = None,
        limit: int | None = None,
    ) -> list[WebhookDelivery]:
        return filter_deliveries(
            self._items.values(), status=status, webhook_id=webhook_id, limit=limit
        )

    async def claim(
        self,
        delivery_id: str,
        now: datetime,
        *,
        lease_seconds: float,
        due_only: bool = True,
    ) -> WebhookDelivery | None:
        async with self._lock:
            delivery = self._items.get(delivery_id)
            if delivery is None or delivery.status not in ATTEMPTABLE_STATUSES:
                return None
            if due_only and not is_due(delivery, now):
                return None
            if self._leases.get(delivery_id, now) > now:
                return None
            self._leases[delivery_id] = now + timedelta(seconds=lease_seconds)
            return delivery

    async def claim_due(
        self, now: datetime, *, limit: int, lease_seconds: float
    ) -> list[WebhookDelivery]:
        async with self._lock:
            due = [
                d
                for d in self._items.values()
                if is_due(d, now) and self._leases.get(d.id, now) <= now
            ]
            due.sort(key=lambda d: d.next_retry_at or d.created_at)
            claimed = due[:limit]
            expires = now + timedelta(seconds=lease_seconds)
            for delivery in claimed:
                self._leases[delivery.id] = expires
            return claimed
