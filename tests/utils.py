from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from webhook_delivery.domain.webhooks import (
    RetryConfig,
    TransportResponse,
    WebhookConfig,
    WebhookDelivery,
)
from webhook_delivery.domain.enums import DeliveryStatus

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeTransport:
    """Replays scripted outcomes: an int status, a TransportResponse or an exception."""

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def send(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes
    ) -> TransportResponse:
        self.calls.append({"method": method, "url": url, "headers": dict(headers), "body": body})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return TransportResponse(status=outcome, body=f"status {outcome}")
        return outcome


def make_policy(**overrides: Any) -> RetryConfig:
    values = {
        "max_attempts": 3,
        "initial_delay_ms": 1000,
        "max_delay_ms": 30000,
        "backoff_multiplier": 2,
        "jitter_factor": 0.0,
    }
    values.update(overrides)
    return RetryConfig(**values)


def make_config(**overrides: Any) -> WebhookConfig:
    values: dict[str, Any] = {
        "id": "wh_orders",
        "url": "https://hooks.example.com/orders",
        "retry": make_policy(),
    }
    values.update(overrides)
    return WebhookConfig(**values)


def make_delivery(
    *,
    status: DeliveryStatus = DeliveryStatus.PENDING,
    webhook_id: str = "wh_orders",
    created_at: datetime = BASE_TIME,
    **overrides: Any,
) -> WebhookDelivery:
    values: dict[str, Any] = {
        "id": f"dlv_{created_at.timestamp():.0f}_{webhook_id}_{status.value}",
        "idempotency_key": f"key-{created_at.timestamp():.0f}-{webhook_id}-{status.value}",
        "webhook_id": webhook_id,
        "url": "https://hooks.example.com/orders",
        "payload": {"event": "pipeline.completed"},
        "status": status,
        "max_attempts": 3,
        "retry": make_policy(),
        "created_at": created_at,
    }
    values.update(overrides)
    return WebhookDelivery(**values)
