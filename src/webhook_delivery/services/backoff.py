"""Exponential backoff with optional jitter."""
from __future__ import annotations

import random

from webhook_delivery.domain.webhooks import RetryConfig


def compute_delay_deterministic(attempt: int, policy: RetryConfig) -> float:
    """Delay in milliseconds before the next attempt, without jitter.

    ``attempt`` is 1-based; anything below 1 is treated as 1. The result is
    ``initial_delay_ms * backoff_multiplier ** (attempt - 1)`` clamped to
    ``max_delay_ms``.
    """
    attempt = max(1, int(attempt))
    try:
        base = policy.initial_delay_ms * policy.backoff_multiplier ** (attempt - 1)
    except OverflowError:
        return float(policy.max_delay_ms)
    return float(min(base, policy.max_delay_ms))


def compute_delay(attempt: int, policy: RetryConfig, rng: random.Random | None = None) -> float:
    """Delay in milliseconds with jitter added after clamping.

    The result lies in ``[d, d * (1 + jitter_factor)]`` where ``d`` is the
    deterministic delay, so it never exceeds ``max_delay_ms * (1 + jitter_factor)``.
    """
    delay = compute_delay_deterministic(attempt, policy)
    if policy.jitter_factor <= 0 or delay <= 0:
        return delay
    source = rng if rng is not None else random
    return delay + delay * source.uniform(0, policy.jitter_factor)
