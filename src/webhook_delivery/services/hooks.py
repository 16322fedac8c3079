"""Hook-triggered notifications (pipeline stage webhooks)."""
from __future__ import annotations

import base64
import re
from typing import Any, Mapping

import structlog

from webhook_delivery.core.exceptions import WebhookDeliveryError
from webhook_delivery.domain.webhooks import (
    RetryConfig,
    WebhookConfig,
    WebhookDelivery,
    hook_retry_config,
)
from webhook_delivery.services.retry import send_with_retry
from webhook_delivery.services.signing import encode_body, signed_headers
from webhook_delivery.services.webhooks import WebhookService
from webhook_delivery.settings import settings
from webhook_delivery.transport import Transport

logger = structlog.get_logger(__name__)

HOOK_ID_HASH_LENGTH = 16
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def hook_webhook_id(url: str) -> str:
    """Stable webhook id derived from the target URL."""
    encoded = base64.b64encode(url.encode("utf-8")).decode("ascii")
    return f"hook_{_NON_ALNUM.sub('', encoded)[:HOOK_ID_HASH_LENGTH]}"


def hook_config(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    secret: str | None = None,
    signature_header: str | None = None,
    retry: RetryConfig | None = None,
) -> WebhookConfig:
    return WebhookConfig(
        id=hook_webhook_id(url),
        url=url,
        headers=dict(headers or {}),
        secret=secret,
        signature_header=signature_header or settings.webhook_signature_header,
        retry=retry or hook_retry_config(),
    )


def hook_idempotency_key(webhook_id: str, body: Mapping[str, Any]) -> str | None:
    run_id = body.get("runId")
    if not run_id:
        return None
    return f"{webhook_id}-{run_id}-{body.get('stage')}"


class HookNotifier:
    """Sends hook notifications through :class:`WebhookService` when available.

    Without a service, falls back to a direct send with in-process retries;
    failures are logged and swallowed so a hook never breaks the pipeline.
    """

    def __init__(self, transport: Transport, service: WebhookService | None = None):
        self._transport = transport
        self._service = service

    async def notify(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        secret: str | None = None,
        signature_header: str | None = None,
        retry: RetryConfig | None = None,
    ) -> WebhookDelivery | None:
        try:
            config = hook_config(
                url,
                headers=headers,
                secret=secret,
                signature_header=signature_header,
                retry=retry,
            )
        except ValueError as exc:
            logger.warning("hook webhook url rejected", url=url, error=str(exc))
            return None

        if self._service is not None:
            try:
                return await self._service.deliver(
                    config,
                    dict(body),
                    idempotency_key=hook_idempotency_key(config.id, body),
                )
            except Exception:
                logger.exception("hook webhook delivery failed", url=url, webhook_id=config.id)
                return None

        request_headers = {
            "Content-Type": "application/json",
            **signed_headers(config, dict(body)),
        }
        try:
            await send_with_retry(
                self._transport,
                config.method.value,
                config.url,
                request_headers,
                encode_body(dict(body)),
                config.retry,
            )
        except WebhookDeliveryError as exc:
            logger.warning("hook webhook send failed", url=url, error=str(exc))
        except Exception:
            logger.exception("hook webhook send failed", url=url)
        return None
