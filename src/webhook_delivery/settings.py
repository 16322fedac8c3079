"""Application settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core configuration for webhook delivery."""

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_DELIVERY_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "webhook-delivery"
    log_level: str = "INFO"
    log_format: Literal["kv", "json"] = "kv"

    # Retry policy defaults (used when a WebhookConfig does not carry its own)
    webhook_max_attempts: int = Field(default=5, ge=1)
    webhook_initial_delay_ms: int = Field(default=1_000, ge=0)
    webhook_max_delay_ms: int = Field(default=3_600_000, ge=0)  # 1 hour
    webhook_hook_max_delay_ms: int = Field(default=300_000, ge=0)  # 5 minutes for hook webhooks
    webhook_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    webhook_jitter_factor: float = Field(default=0.1, ge=0.0, le=1.0)

    # Outgoing request headers
    webhook_user_agent: str = "Webhook-Delivery/1.0"
    webhook_signature_header: str = "X-Signature"
    webhook_id_header: str = "X-Webhook-ID"
    webhook_timestamp_header: str = "X-Webhook-Timestamp"
    webhook_delivery_id_header: str = "X-Webhook-Delivery-Id"

    # Transport
    webhook_request_timeout_seconds: float = 30.0
    webhook_response_body_max_chars: int = 2000

    # Dispatcher
    webhook_dispatch_interval_seconds: float = 30.0
    webhook_dispatch_batch_size: int = 100
    webhook_dispatch_max_concurrency: int = 10
    webhook_lease_seconds: float = 600.0  # claimed deliveries are reclaimable after this


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
