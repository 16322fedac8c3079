"""Generic bounded-retry wrapper for fallible outbound calls."""
from __future__ import annotations

import asyncio
import random
import re
from typing import Awaitable, Callable, Iterable, Mapping, Pattern, TypeVar

import structlog

from webhook_delivery.core.exceptions import HttpStatusError, TransportError
from webhook_delivery.domain.enums import TransportErrorKind
from webhook_delivery.domain.webhooks import RetryConfig, TransportResponse
from webhook_delivery.services.backoff import compute_delay
from webhook_delivery.transport import Transport

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException, float], None]

RETRYABLE_TRANSPORT_KINDS = frozenset(
    {TransportErrorKind.TIMEOUT, TransportErrorKind.CONNECTION, TransportErrorKind.DNS}
)

# Fallback for errors that carry no structured classification.
RETRYABLE_MESSAGE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "connection aborted",
    "socket hang up",
    "enotfound",
    "eai_again",
    "name or service not known",
    "temporary failure in name resolution",
    "rate limit",
    "too many requests",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
)
_RETRYABLE_STATUS_IN_MESSAGE = re.compile(r"\b(408|429|500|502|503|504)\b")


def is_retryable_status(status: int) -> bool:
    """408, 429 and every 5xx except 501."""
    if status in (408, 429):
        return True
    return 500 <= status < 600 and status != 501


def is_retryable_error(
    error: BaseException,
    extra_patterns: Iterable[str | Pattern[str]] = (),
) -> bool:
    if isinstance(error, TransportError):
        if error.kind in RETRYABLE_TRANSPORT_KINDS:
            return True
    elif isinstance(error, HttpStatusError):
        return is_retryable_status(error.status)
    elif isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS):
        return True
    if _RETRYABLE_STATUS_IN_MESSAGE.search(message):
        return True
    for pattern in extra_patterns:
        if isinstance(pattern, str):
            if pattern.lower() in message:
                return True
        elif pattern.search(message):
            return True
    return False


async def execute_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    *,
    is_retryable: RetryPredicate = is_retryable_error,
    on_retry: RetryHook | None = None,
    rng: random.Random | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, a non-retryable error occurs or attempts run out.

    The last error is re-raised. ``on_retry(attempt, error, delay_ms)`` is
    invoked before each backoff sleep.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not is_retryable(exc):
                raise
            delay_ms = compute_delay(attempt, policy, rng=rng)
            logger.warning(
                "retry scheduled",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_ms=round(delay_ms),
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_ms)
            await sleep(delay_ms / 1000)
            attempt += 1


async def execute_with_retry_or_none(
    fn: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    *,
    is_retryable: RetryPredicate = is_retryable_error,
    on_retry: RetryHook | None = None,
    rng: random.Random | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T | None:
    """Like :func:`execute_with_retry` but returns ``None`` instead of raising."""
    try:
        return await execute_with_retry(
            fn,
            policy,
            is_retryable=is_retryable,
            on_retry=on_retry,
            rng=rng,
            sleep=sleep,
        )
    except Exception as exc:
        logger.warning("retry exhausted", max_attempts=policy.max_attempts, error=str(exc))
        return None


async def send_with_retry(
    transport: Transport,
    method: str,
    url: str,
    headers: Mapping[str, str],
    body: bytes,
    policy: RetryConfig,
    *,
    on_retry: RetryHook | None = None,
) -> TransportResponse:
    """Send with in-process retries; non-2xx responses raise :class:`HttpStatusError`."""

    async def _call() -> TransportResponse:
        response = await transport.send(method, url, headers, body)
        if not response.ok:
            raise HttpStatusError(response.status, response.body)
        return response

    return await execute_with_retry(_call, policy, on_retry=on_retry)
