"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from webhook_delivery.domain.enums import DeliveryStatus, HttpMethod
from webhook_delivery.settings import settings

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def validate_webhook_url(url: str) -> str:
    """Return ``url`` unchanged if it is an absolute http(s) URL, else raise ``ValueError``."""
    if not isinstance(url, str) or "://" not in url:
        raise ValueError(f"Webhook URL must be an absolute http(s) URL: {url!r}")
    try:
        _HTTP_URL.validate_python(url)
    except ValueError as exc:
        raise ValueError(f"Webhook URL must be an absolute http(s) URL: {url!r}") from exc
    return url


class RetryConfig(BaseModel):
    """Retry/backoff policy for a webhook."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default_factory=lambda: settings.webhook_max_attempts, ge=1)
    initial_delay_ms: int = Field(default_factory=lambda: settings.webhook_initial_delay_ms, ge=0)
    max_delay_ms: int = Field(default_factory=lambda: settings.webhook_max_delay_ms, ge=0)
    backoff_multiplier: float = Field(
        default_factory=lambda: settings.webhook_backoff_multiplier, ge=1.0
    )
    jitter_factor: float = Field(
        default_factory=lambda: settings.webhook_jitter_factor, ge=0.0, le=1.0
    )

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "RetryConfig":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


def hook_retry_config() -> RetryConfig:
    """Retry profile used for hook-triggered notifications (shorter max delay)."""
    return RetryConfig(
        max_delay_ms=max(settings.webhook_hook_max_delay_ms, settings.webhook_initial_delay_ms)
    )


class WebhookConfig(BaseModel):
    """Target endpoint configuration."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None
    signature_header: str = Field(default_factory=lambda: settings.webhook_signature_header)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        return validate_webhook_url(value)


class WebhookDelivery(BaseModel):
    """One logical notification being delivered to one endpoint."""

    id: str
    idempotency_key: str
    webhook_id: str
    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    payload: Any = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    max_attempts: int = Field(ge=1)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    error: str | None = None
    created_at: datetime
    delivered_at: datetime | None = None


class WebhookBreakdown(BaseModel):
    total: int = 0
    delivered: int = 0
    failed: int = 0


class WebhookStats(BaseModel):
    """Rollup of delivery outcomes, recomputed on demand."""

    total: int = 0
    pending: int = 0
    delivered: int = 0
    failed: int = 0
    retrying: int = 0
    dead_letter: int = 0
    by_webhook: dict[str, WebhookBreakdown] = Field(default_factory=dict)


class TransportResponse(BaseModel):
    status: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
