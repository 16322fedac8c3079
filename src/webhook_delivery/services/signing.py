"""HMAC payload signing and outgoing header construction."""
from __future__ import annotations

import hmac
import json
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Mapping

from webhook_delivery.domain.webhooks import WebhookConfig
from webhook_delivery.settings import settings

SIGNATURE_PREFIX = "sha256="


def encode_body(payload: Any) -> bytes:
    """Serialize a payload exactly as it goes on the wire.

    Keys are sorted so the bytes (and therefore the signature) survive a
    JSONB round-trip through the delivery store.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def sign_payload(body: bytes | str, secret: str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes | str, secret: str, signature: str) -> bool:
    """Constant-time check of a received ``sha256=<hex>`` signature."""
    return hmac.compare_digest(sign_payload(body, secret), signature)


def build_headers(
    config: WebhookConfig,
    extra: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> dict[str, str]:
    """Merge identification headers, the config's static headers and ``extra``.

    Later sources override earlier ones on key collision.
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    headers = {
        "User-Agent": settings.webhook_user_agent,
        settings.webhook_id_header: config.id,
        settings.webhook_timestamp_header: timestamp,
    }
    headers.update(config.headers)
    if extra:
        headers.update(extra)
    return headers


def signed_headers(
    config: WebhookConfig,
    payload: Any,
    extra: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> dict[str, str]:
    """``build_headers`` plus the signature header when the config has a secret."""
    headers = build_headers(config, extra, now=now)
    if config.secret:
        headers[config.signature_header] = sign_payload(encode_body(payload), config.secret)
    return headers
