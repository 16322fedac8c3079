"""Delivery coordinator: enqueue, select due records, run one attempt."""
from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping

import structlog

from webhook_delivery.core.exceptions import (
    InvalidStatusTransitionError,
    InvalidWebhookConfigError,
    WebhookDisabledError,
)
from webhook_delivery.domain.webhooks import WebhookConfig, WebhookDelivery, validate_webhook_url
from webhook_delivery.repositories.base import DeliveryRepository
from webhook_delivery.services.backoff import compute_delay
from webhook_delivery.services.retry import is_retryable_error, is_retryable_status
from webhook_delivery.services.signing import encode_body, signed_headers
from webhook_delivery.services.state_machine import (
    ATTEMPTABLE_STATUSES,
    is_due,
    mark_dead_letter,
    mark_delivered,
    mark_failed,
    schedule_retry,
    should_retry,
)
from webhook_delivery.settings import settings
from webhook_delivery.transport import Transport

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_delivery_id() -> str:
    return f"dlv_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


class DeliveryCoordinator:
    """Owns delivery records while they are being attempted."""

    def __init__(self, repository: DeliveryRepository, *, clock: Clock = _utcnow):
        self._repository = repository
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def enqueue(
        self,
        config: WebhookConfig,
        payload: Any,
        idempotency_key: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookDelivery:
        """Create a PENDING delivery, or return the active one for ``idempotency_key``."""
        delivery, _ = await self.submit(config, payload, idempotency_key, headers)
        return delivery

    async def submit(
        self,
        config: WebhookConfig,
        payload: Any,
        idempotency_key: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[WebhookDelivery, bool]:
        """:meth:`enqueue` that also reports whether a new record was created."""
        if not config.enabled:
            raise WebhookDisabledError(f"Webhook is disabled: {config.id}")
        try:
            validate_webhook_url(config.url)
        except ValueError as exc:
            raise InvalidWebhookConfigError(str(exc)) from exc

        now = self._clock()
        delivery_id = generate_delivery_id()
        extra = {settings.webhook_delivery_id_header: delivery_id}
        if headers:
            extra.update(headers)
        delivery = WebhookDelivery(
            id=delivery_id,
            idempotency_key=idempotency_key or delivery_id,
            webhook_id=config.id,
            url=config.url,
            method=config.method,
            headers=signed_headers(config, payload, extra, now=now),
            payload=payload,
            max_attempts=config.retry.max_attempts,
            retry=config.retry,
            created_at=now,
        )
        stored, created = await self._repository.insert_if_absent(delivery)
        if created:
            logger.info(
                "webhook delivery enqueued",
                delivery_id=stored.id,
                webhook_id=stored.webhook_id,
                url=stored.url,
            )
        else:
            logger.info(
                "webhook delivery already enqueued",
                delivery_id=stored.id,
                idempotency_key=stored.idempotency_key,
                status=stored.status.value,
            )
        return stored, created

    @staticmethod
    def process_due(
        records: Iterable[WebhookDelivery], now: datetime
    ) -> List[WebhookDelivery]:
        """Records that should be attempted at ``now``."""
        return [d for d in records if is_due(d, now)]

    async def attempt(self, delivery: WebhookDelivery, transport: Transport) -> WebhookDelivery:
        """Run one HTTP attempt and apply the resulting transition in place.

        Transport failures are recorded on the delivery, never raised.
        """
        if delivery.status not in ATTEMPTABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Delivery {delivery.id} cannot be attempted in status {delivery.status.value}"
            )

        started = self._clock()
        delivery.attempts += 1
        delivery.last_attempt_at = started
        headers = {"Content-Type": "application/json", **delivery.headers}
        log = logger.bind(
            delivery_id=delivery.id,
            webhook_id=delivery.webhook_id,
            url=delivery.url,
            attempt=delivery.attempts,
            max_attempts=delivery.max_attempts,
        )

        try:
            response = await transport.send(
                delivery.method.value, delivery.url, headers, encode_body(delivery.payload)
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            self._handle_failure(delivery, error, retryable=is_retryable_error(exc), log=log)
            return delivery

        delivery.response_status = response.status
        delivery.response_body = response.body[: settings.webhook_response_body_max_chars]
        if response.ok:
            mark_delivered(
                delivery,
                response_status=response.status,
                response_body=delivery.response_body,
                now=self._clock(),
            )
            log.info(
                "webhook delivered",
                status_code=response.status,
                duration_ms=round((self._clock() - started).total_seconds() * 1000),
            )
            return delivery

        self._handle_failure(
            delivery,
            f"HTTP {response.status}",
            retryable=is_retryable_status(response.status),
            log=log,
        )
        return delivery

    def _handle_failure(
        self,
        delivery: WebhookDelivery,
        error: str,
        *,
        retryable: bool,
        log: Any,
    ) -> None:
        if not retryable:
            mark_failed(delivery, error=error)
            log.warning("webhook delivery failed permanently", reason=error)
            return
        if not should_retry(delivery):
            mark_dead_letter(delivery, error=error)
            log.warning("webhook moved to dead letter queue", reason=error)
            return
        delay_ms = compute_delay(delivery.attempts, delivery.retry)
        schedule_retry(delivery, error=error, now=self._clock(), delay_ms=delay_ms)
        log.info("webhook retry scheduled", reason=error, delay_ms=round(delay_ms))
