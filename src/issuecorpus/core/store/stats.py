# src/issuecorpus/core/store/stats.py
"""Rolling call statistics for the ResilientStore."""

from collections import deque

from issuecorpus.contracts.store import StoreStats
from issuecorpus.core.store.failures import CallTrace

DURATION_WINDOW = 1_000


class StatsCollector:
    """Accumulates per-call outcomes.

    Counters cover every call since the last reset; the average duration
    covers the most recent DURATION_WINDOW calls.
    """

    def __init__(self, window: int = DURATION_WINDOW) -> None:
        self._window = window
        self.reset()

    def reset(self) -> None:
        self._total_calls = 0
        self._timeout_calls = 0
        self._retried_calls = 0
        self._lock_contentions = 0
        self._total_retry_attempts = 0
        self._max_duration_ms = 0.0
        self._durations: deque[float] = deque(maxlen=self._window)

    def record(self, trace: CallTrace, duration_ms: float) -> None:
        self._total_calls += 1
        if trace.timed_out:
            self._timeout_calls += 1
        if trace.retried:
            self._retried_calls += 1
        if trace.lock_contended:
            self._lock_contentions += 1
        self._total_retry_attempts += trace.retry_attempts
        self._durations.append(duration_ms)
        self._max_duration_ms = max(self._max_duration_ms, duration_ms)

    def snapshot(self) -> StoreStats:
        average = sum(self._durations) / len(self._durations) if self._durations else 0.0
        return StoreStats(
            total_calls=self._total_calls,
            timeout_calls=self._timeout_calls,
            retried_calls=self._retried_calls,
            lock_contentions=self._lock_contentions,
            total_retry_attempts=self._total_retry_attempts,
            average_duration_ms=average,
            max_duration_ms=self._max_duration_ms,
        )
