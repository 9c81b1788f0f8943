# src/issuecorpus/core/store/deadline.py
"""Deadline token observed by store operations.

The ResilientStore hands every attempt a Deadline. The operation is
expected to honour it; on SQLite the store also installs a progress
handler that interrupts the running statement once the deadline has
passed, which rolls back the statement and its transaction.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Connection

from issuecorpus.contracts.errors import StoreTimeoutError
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock


class Deadline:
    """Absolute expiry for one store attempt."""

    def __init__(self, operation: str, timeout_ms: int, clock: Clock = DEFAULT_CLOCK) -> None:
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")
        self.operation = operation
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._expires_at = clock.monotonic() + timeout_ms / 1000.0

    @property
    def remaining_ms(self) -> float:
        return max(0.0, (self._expires_at - self._clock.monotonic()) * 1000.0)

    @property
    def expired(self) -> bool:
        return self._clock.monotonic() >= self._expires_at

    def check(self) -> None:
        """Raise StoreTimeoutError if the deadline has passed.

        Called before committing a write, so a write whose caller has
        already timed out is rolled back instead of committed late.
        """
        if self.expired:
            raise StoreTimeoutError(self.operation, self.timeout_ms)

    def __repr__(self) -> str:
        return f"Deadline(operation={self.operation!r}, timeout_ms={self.timeout_ms}, remaining_ms={self.remaining_ms:.1f})"


@contextmanager
def interrupt_on_expiry(conn: Connection, deadline: Deadline, interval: int) -> Iterator[None]:
    """Abort the running SQLite statement once ``deadline`` expires.

    Installs a progress handler invoked every ``interval`` VM instructions;
    a non-zero return makes SQLite abort with "interrupted". The handler is
    always removed on exit because pooled connections are reused. No-op on
    drivers without set_progress_handler.
    """
    driver_connection = conn.connection.driver_connection
    set_handler = getattr(driver_connection, "set_progress_handler", None)
    if set_handler is None:
        yield
        return

    def _handler() -> int:
        return 1 if deadline.expired else 0

    set_handler(_handler, interval)
    try:
        yield
    finally:
        set_handler(None, interval)
