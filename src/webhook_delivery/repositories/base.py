"""Repository contract and shared asyncpg helpers."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

import asyncpg  # type: ignore[import-untyped]

from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookDelivery


class DeliveryRepository(Protocol):
    """Persistence contract for delivery records.

    ``insert_if_absent`` must be atomic per idempotency key and
    ``claim_due`` must hand each due record to at most one caller until it
    is saved back or its lease expires.
    """

    async def get(self, delivery_id: str) -> WebhookDelivery | None: ...

    async def get_by_idempotency_key(self, key: str) -> WebhookDelivery | None: ...

    async def insert_if_absent(self, delivery: WebhookDelivery) -> tuple[WebhookDelivery, bool]: ...

    async def save(self, delivery: WebhookDelivery) -> None: ...

    async def list(
        self,
        *,
        status: DeliveryStatus | None = None,
        webhook_id: str | None = None,
        limit: int | None = None,
    ) -> list[WebhookDelivery]: ...

    async def claim(
        self,
        delivery_id: str,
        now: datetime,
        *,
        lease_seconds: float,
        due_only: bool = True,
    ) -> WebhookDelivery | None: ...

    async def claim_due(
        self, now: datetime, *, limit: int, lease_seconds: float
    ) -> list[WebhookDelivery]: ...


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)
