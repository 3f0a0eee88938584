"""Shared helpers: ids, URL joining, backoff schedules, console output."""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from email.utils import format_datetime

from rich.console import Console

console = Console()

# Render-status polling tiers: 0.5s x5, 1s x5, 2s x5, then 5s steady.
RENDER_STATUS_DELAYS: tuple[float, ...] = (0.5,) * 5 + (1.0,) * 5 + (2.0,) * 5 + (5.0,)

# Long-request polling uses the same tiers.
POLLING_DELAYS: tuple[float, ...] = RENDER_STATUS_DELAYS

# 503 backoff: 2s x5, 5s x4, then 10s steady.
CONCURRENCY_BACKOFF: tuple[float, ...] = (2.0,) * 5 + (5.0,) * 4 + (10.0,)


def guid() -> str:
    return str(uuid.uuid4())


def sha256_hex(value: bytes) -> str:
    return hashlib.sha256(value).hexdigest()


def url_concat(base: str, *parts: str) -> str:
    """Join URL path segments with exactly one slash between them."""
    url = base.rstrip("/")
    for part in parts:
        url = f"{url}/{part.strip('/')}"
    return url


def backoff_delay(schedule: Sequence[float], attempt: int) -> float:
    """Return the delay for *attempt* (0-based); the last tier repeats forever."""
    if not schedule:
        return 0.0
    return schedule[min(attempt, len(schedule) - 1)]


def http_date(now: datetime | None = None) -> str:
    """RFC 1123 date, as sent in the ``Eyes-Date`` header."""
    return format_datetime(now or datetime.now(timezone.utc), usegmt=True)


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a ``Retry-After`` header; only the delta-seconds form is honoured."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)

