from __future__ import annotations

from matrix_sync.application.services.backoff import compute_sync_backoff


def test_backoff_sequence_retries_immediately_then_doubles_to_cap() -> None:
    delays = [compute_sync_backoff(failures) for failures in range(1, 10)]

    assert delays == [0.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0, 60.0]


def test_no_failures_means_no_delay() -> None:
    assert compute_sync_backoff(0) == 0.0


def test_custom_cap_is_honored() -> None:
    assert compute_sync_backoff(4, cap_seconds=5.0) == 5.0


def test_very_long_failure_streak_stays_at_cap() -> None:
    assert compute_sync_backoff(10_000) == 60.0
