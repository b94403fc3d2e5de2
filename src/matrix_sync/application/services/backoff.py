"""Retry delay policy for failed sync polls."""

from __future__ import annotations

DEFAULT_BACKOFF_CAP_SECONDS = 60.0
_BASE_DELAY_SECONDS = 2.0


def compute_sync_backoff(
    consecutive_failures: int,
    *,
    cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS,
) -> float:
    """Return the delay before the next poll after N consecutive failures.

    The first failure retries immediately; from the second one the delay
    doubles from 2 seconds and is capped: 0, 2, 4, 8, 16, 32, 60, 60, ...
    """

    if consecutive_failures <= 1:
        return 0.0
    exponent = min(consecutive_failures - 2, 32)
    return min(_BASE_DELAY_SECONDS * (2**exponent), cap_seconds)
