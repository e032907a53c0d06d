"""Clock arithmetic shared by the token service and both clients.

The safety-margin subtraction and the expiry comparison live here only, so
the countdown shown to a human and the server-side expiry check can never
disagree about which side of the deadline "now" is on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(now: datetime, expires_at: datetime) -> bool:
    return normalize_utc(now) > normalize_utc(expires_at)


def display_deadline(expires_at: datetime, margin_seconds: float) -> datetime:
    if margin_seconds < 0:
        raise ValueError("margin_seconds must not be negative")
    return normalize_utc(expires_at) - timedelta(seconds=margin_seconds)


def remaining_seconds(now: datetime, deadline: datetime) -> int:
    delta = (normalize_utc(deadline) - normalize_utc(now)).total_seconds()
    if delta <= 0:
        return 0
    return int(math.floor(delta))


def format_countdown(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


@dataclass(frozen=True)
class PollPolicy:
    initial_delay: float = 5.0
    interval: float = 60.0
    max_attempts: int = 10


def next_poll_delay(attempt: int, policy: PollPolicy) -> Optional[float]:
    """Delay before probe number ``attempt`` (zero-based), or None to stop."""
    if attempt < 0 or attempt >= policy.max_attempts:
        return None
    if attempt == 0:
        return policy.initial_delay
    return policy.interval
