# src/issuecorpus/core/clock.py
"""Clock abstraction for testable timeout, backoff and checkpoint timestamps.

This module provides a Clock protocol that abstracts time access,
enabling deterministic testing of time-dependent code paths like the
grouping time boxes, store deadlines and retry backoff.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol

_EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


class Clock(Protocol):
    """Abstract clock for timeouts, backoff sleeps and timestamps.

    Implementations:
    - SystemClock: Uses time.monotonic() and time.sleep() (production)
    - MockClock: Returns controllable times, sleep advances time (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds.

        Must be monotonic (never goes backwards), suitable for elapsed
        time calculations and timeouts. Corresponds to time.monotonic().

        Returns:
            Current monotonic time in seconds.
        """
        ...

    def now(self) -> datetime:
        """Return the current wall-clock time as an aware UTC datetime."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...


class SystemClock:
    """Production clock using the system monotonic and wall clocks."""

    def monotonic(self) -> float:
        """Return system monotonic time."""
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class MockClock:
    """Controllable clock for deterministic testing.

    Allows tests to advance time programmatically. ``sleep()`` does not
    block; it advances the clock and records the requested duration so
    backoff schedules can be asserted.

    Example:
        clock = MockClock(start=0.0)
        store = ResilientStore(db, settings, clock=clock)

        store.execute(flaky_op, "flaky")
        assert clock.sleeps == [1.0, 2.0]
    """

    def __init__(self, start: float = 0.0) -> None:
        """Initialize mock clock at a given time.

        Args:
            start: Initial monotonic time value (default 0.0).
        """
        self._current = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        """Return current mock time."""
        return self._current

    def now(self) -> datetime:
        """Return a fixed epoch offset by the current mock time."""
        return _EPOCH + timedelta(seconds=self._current)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self._current += seconds

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Args:
            seconds: Amount to advance (must be non-negative).

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value.

        Unlike advance(), this can move time backwards.
        """
        self._current = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
