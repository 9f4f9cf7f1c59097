"""Monotonic deadlines shared by the watch loop and the SSH retry loop.

The tenacity strategies below tie a retry loop to a ``Deadline``: stop
once it has passed, and never sleep past it.
"""

from __future__ import annotations

import re
import time
from typing import Optional

from tenacity import RetryCallState
from tenacity.stop import stop_base
from tenacity.wait import wait_base

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a duration like '1h', '5m', '10s', '1h30m' or '90' into seconds.

    Raises:
        ValueError: If the string isn't a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


class Deadline:
    """A point in time, on the monotonic clock, after which work must stop."""

    def __init__(self, seconds: float, clock=time.monotonic) -> None:
        self._clock = clock
        self.seconds = seconds
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def bound(self, delay: float) -> float:
        """Clip *delay* so that sleeping it never overshoots the deadline."""
        return min(delay, self.remaining())

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.1f}s)"


class stop_at_deadline(stop_base):
    """Stop retrying once *deadline* has passed."""

    def __init__(self, deadline: Deadline) -> None:
        self.deadline = deadline

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.deadline.expired()


class wait_within_deadline(wait_base):
    """Wrap another wait strategy so no pause outlasts *deadline*."""

    def __init__(self, deadline: Deadline, wait: wait_base) -> None:
        self.deadline = deadline
        self.wait = wait

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.deadline.bound(self.wait(retry_state))


def format_seconds(seconds: Optional[float]) -> str:
    if seconds is None:
        return "never"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
