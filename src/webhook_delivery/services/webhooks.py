"""Webhook domain service (registrations + sending with retry)."""
from __future__ import annotations

from typing import Any, List, Mapping

import structlog

from webhook_delivery.core.exceptions import (
    DeliveryNotFoundError,
    InvalidStatusTransitionError,
    WebhookNotFoundError,
)
from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.webhooks import WebhookConfig, WebhookDelivery, WebhookStats
from webhook_delivery.repositories.base import DeliveryRepository
from webhook_delivery.services.coordinator import DeliveryCoordinator
from webhook_delivery.services.state_machine import (
    TERMINAL_FAILED_STATUSES,
    mark_failed,
    reset_for_retry,
)
from webhook_delivery.services.stats import aggregate
from webhook_delivery.settings import settings
from webhook_delivery.transport import Transport

logger = structlog.get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        repository: DeliveryRepository,
        transport: Transport,
        coordinator: DeliveryCoordinator | None = None,
    ):
        self._deliveries = repository
        self._transport = transport
        self._coordinator = coordinator or DeliveryCoordinator(repository)
        self._webhooks: dict[str, WebhookConfig] = {}

    @property
    def coordinator(self) -> DeliveryCoordinator:
        return self._coordinator

    def register_webhook(self, config: WebhookConfig) -> None:
        self._webhooks[config.id] = config
        logger.info(
            "webhook registered",
            webhook_id=config.id,
            url=config.url,
            method=config.method.value,
        )

    def get_webhook(self, webhook_id: str) -> WebhookConfig:
        config = self._webhooks.get(webhook_id)
        if config is None:
            raise WebhookNotFoundError(f"Webhook not found: {webhook_id}")
        return config

    async def send_webhook(
        self,
        webhook_id: str,
        payload: Any,
        *,
        headers: Mapping[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> WebhookDelivery:
        """Enqueue a delivery and make the first attempt right away.

        An existing delivery for the same idempotency key is returned as is;
        later attempts are left to the dispatcher.
        """
        config = self.get_webhook(webhook_id)
        delivery, created = await self._coordinator.submit(
            config, payload, idempotency_key, headers
        )
        if not created:
            return delivery
        return await self._attempt_now(delivery)

    async def deliver(
        self,
        config: WebhookConfig,
        payload: Any,
        *,
        idempotency_key: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookDelivery:
        """Entry point for callers that hold a config rather than a registered id."""
        if self._webhooks.get(config.id) != config:
            self.register_webhook(config)
        return await self.send_webhook(
            config.id, payload, headers=headers, idempotency_key=idempotency_key
        )

    async def _attempt_now(self, delivery: WebhookDelivery) -> WebhookDelivery:
        claimed = await self._deliveries.claim(
            delivery.id,
            self._coordinator.now(),
            lease_seconds=settings.webhook_lease_seconds,
        )
        if claimed is None:
            # Another worker holds it
            return delivery
        await self._coordinator.attempt(claimed, self._transport)
        await self._deliveries.save(claimed)
        return claimed

    async def list_deliveries(
        self,
        *,
        status: DeliveryStatus | None = None,
        webhook_id: str | None = None,
        limit: int | None = None,
    ) -> List[WebhookDelivery]:
        return await self._deliveries.list(status=status, webhook_id=webhook_id, limit=limit)

    async def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        return await self._deliveries.get(delivery_id)

    async def dead_letter_queue(self) -> List[WebhookDelivery]:
        return await self.list_deliveries(status=DeliveryStatus.DEAD_LETTER)

    async def stats(self) -> WebhookStats:
        return aggregate(await self._deliveries.list())

    async def retry_dead_letter(self, delivery_id: str) -> WebhookDelivery:
        """Operator reset of a dead-lettered or failed delivery, then one attempt."""
        delivery = await self._require(delivery_id)
        active = await self._deliveries.get_by_idempotency_key(delivery.idempotency_key)
        if (
            active is not None
            and active.id != delivery.id
            and active.status not in TERMINAL_FAILED_STATUSES
        ):
            raise InvalidStatusTransitionError(
                f"Delivery {active.id} is already active for idempotency key "
                f"{delivery.idempotency_key!r}"
            )
        reset_for_retry(delivery)
        await self._deliveries.save(delivery)
        logger.info("webhook delivery reset for retry", delivery_id=delivery.id)
        return await self._attempt_now(delivery)

    async def abandon(self, delivery_id: str, reason: str) -> WebhookDelivery:
        """Mark a pending or retrying delivery FAILED out of band.

        The delivery is leased first, so an attempt in flight is never
        overwritten; a leased delivery is rejected.
        """
        delivery = await self._deliveries.claim(
            delivery_id,
            self._coordinator.now(),
            lease_seconds=settings.webhook_lease_seconds,
            due_only=False,
        )
        if delivery is None:
            current = await self._require(delivery_id)
            raise InvalidStatusTransitionError(
                f"Delivery {current.id} cannot be abandoned in status "
                f"{current.status.value} or while an attempt holds it"
            )
        mark_failed(delivery, error=reason)
        await self._deliveries.save(delivery)
        logger.info("webhook delivery abandoned", delivery_id=delivery.id, reason=reason)
        return delivery

    async def _require(self, delivery_id: str) -> WebhookDelivery:
        delivery = await self._deliveries.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Webhook delivery not found: {delivery_id}")
        return delivery
