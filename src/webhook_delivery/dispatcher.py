"""Background webhook dispatcher (polls the delivery store and attempts due deliveries)."""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime

import structlog
from aiohttp import web

from webhook_delivery.repositories.base import DeliveryRepository
from webhook_delivery.services.coordinator import DeliveryCoordinator
from webhook_delivery.settings import settings
from webhook_delivery.transport import AiohttpTransport, Transport
from webhook_delivery.worker import BackgroundWorker, WorkerTask

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """Claims due deliveries, attempts them concurrently, saves the results.

    Due-ness comes from persisted ``next_retry_at`` timestamps, so a restart
    loses nothing: the next sweep picks up whatever is due.
    """

    def __init__(
        self,
        repository: DeliveryRepository,
        transport: Transport,
        *,
        coordinator: DeliveryCoordinator | None = None,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        lease_seconds: float | None = None,
        interval_seconds: float | None = None,
    ):
        self._repository = repository
        self._transport = transport
        self._coordinator = coordinator or DeliveryCoordinator(repository)
        self._batch_size = batch_size or settings.webhook_dispatch_batch_size
        self._max_concurrency = max_concurrency or settings.webhook_dispatch_max_concurrency
        self._lease_seconds = lease_seconds or settings.webhook_lease_seconds
        self.worker = BackgroundWorker(
            name="webhook_dispatcher",
            interval_seconds=interval_seconds or settings.webhook_dispatch_interval_seconds,
            tasks=[WorkerTask(name="webhook_dispatch", fn=self.dispatch_due)],
        )

    async def dispatch_due(self, now: datetime) -> str | None:
        due = await self._repository.claim_due(
            now, limit=self._batch_size, lease_seconds=self._lease_seconds
        )
        if not due:
            return None

        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcomes: Counter[str] = Counter()

        async def _run(delivery) -> None:
            async with semaphore:
                try:
                    await self._coordinator.attempt(delivery, self._transport)
                    await self._repository.save(delivery)
                except Exception:
                    outcomes["errors"] += 1
                    logger.exception("webhook dispatch failed", delivery_id=delivery.id)
                    return
                outcomes[delivery.status.value] += 1

        await asyncio.gather(*(_run(d) for d in due))
        return " ".join(f"{status}={count}" for status, count in sorted(outcomes.items()))

    async def start(self, app: web.Application) -> None:
        await self.worker.start(app)

    async def stop(self, app: web.Application) -> None:
        await self.worker.stop(app)
        if isinstance(self._transport, AiohttpTransport):
            await self._transport.close()
