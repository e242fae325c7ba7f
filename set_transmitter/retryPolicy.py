"""
Retry decisions and backoff timing for SET transmission.

Everything here is pure apart from the randomness used for jitter, which can
be swapped for a seeded ``random.Random`` in tests.
"""

from __future__ import annotations

import math
import random
import typing as t
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from set_transmitter.transmitConfig import RetryConfig

JITTER_RATIO = 0.25


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
    retry_after_ms: int | None = None,
    rng: random.Random | None = None,
) -> int:
    """
    Milliseconds to wait after ``attempt`` (1-based) before the next one.

    A positive server hint is honoured as-is, capped at ``max_backoff_ms``.
    Otherwise: exponential delay, clamped, with +-25% uniform jitter.
    """
    if retry_after_ms is not None and retry_after_ms > 0:
        return min(retry_after_ms, config.max_backoff_ms)

    try:
        exponential = config.backoff_ms * config.backoff_multiplier ** (attempt - 1)
    except OverflowError:
        exponential = config.max_backoff_ms
    clamped = max(0.0, min(exponential, config.max_backoff_ms))

    jitter = clamped * JITTER_RATIO
    low, high = clamped - jitter, clamped + jitter
    source = rng or random
    return math.floor(source.random() * (high - low) + low)


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """
    Convert a Retry-After header into milliseconds.

    Accepts delay-seconds or an HTTP-date. Dates in the past, and anything
    unparsable, give None.
    """
    if not value:
        return None
    value = value.strip()

    if value.isascii() and value.isdigit():
        return int(value) * 1000

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delay_ms = int((retry_at - now).total_seconds() * 1000)
    return delay_ms if delay_ms > 0 else None


def is_retryable_status(status_code: int, retryable_statuses: t.Iterable[int]) -> bool:
    return status_code in retryable_statuses


def should_retry(status_code: int | None, attempt: int, config: RetryConfig) -> bool:
    """
    Decide whether another attempt may follow ``attempt``.

    ``status_code`` is None when no HTTP response was obtained (timeout,
    connection error); those are always retryable until the attempt cap.
    """
    if attempt >= config.max_attempts:
        return False
    if status_code is None:
        return True
    return is_retryable_status(status_code, config.retryable_statuses)
