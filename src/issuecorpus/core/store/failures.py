# src/issuecorpus/core/store/failures.py
"""Failure classification and per-call bookkeeping for the ResilientStore.

A failed attempt is classified exactly once, when it is captured. The
retry predicate and the statistics read the stored kind; nothing re-parses
the exception message later.
"""

from dataclasses import dataclass, field

from issuecorpus.contracts.enums import StoreFailureKind
from issuecorpus.contracts.errors import StoreError

# Lower-cased message markers per transient kind. SQLAlchemy wraps the
# driver error, so str(exc) contains the sqlite3 message.
_LOCK_MARKERS: tuple[str, ...] = ("database is locked", "database is busy", "sqlite_busy", "sqlite_locked")
_IO_MARKERS: tuple[str, ...] = ("disk i/o error", "sqlite_ioerr")
_READ_ONLY_MARKERS: tuple[str, ...] = ("attempt to write a readonly database", "sqlite_readonly")


def classify_store_failure(exc: BaseException) -> StoreFailureKind:
    """Map an exception raised by a store attempt to a StoreFailureKind.

    Args:
        exc: Exception raised by the operation

    Returns:
        TIMEOUT, LOCK_CONTENTION, TRANSIENT_IO or READ_ONLY for transient
        failures; PERMANENT for everything else (syntax errors, constraint
        violations, programming errors).
    """
    if isinstance(exc, StoreError):
        return exc.kind

    message = str(exc).lower()
    if any(marker in message for marker in _LOCK_MARKERS):
        return StoreFailureKind.LOCK_CONTENTION
    if any(marker in message for marker in _IO_MARKERS):
        return StoreFailureKind.TRANSIENT_IO
    if any(marker in message for marker in _READ_ONLY_MARKERS):
        return StoreFailureKind.READ_ONLY
    return StoreFailureKind.PERMANENT


@dataclass
class CallTrace:
    """Bookkeeping for one ResilientStore call across its attempts."""

    operation: str
    attempts: int = 0
    timed_out: bool = False
    lock_contended: bool = False
    failures: list[StoreFailureKind] = field(default_factory=list)

    @property
    def last_failure(self) -> StoreFailureKind | None:
        return self.failures[-1] if self.failures else None

    @property
    def retried(self) -> bool:
        return self.attempts > 1

    @property
    def retry_attempts(self) -> int:
        return max(0, self.attempts - 1)

    def record_failure(self, kind: StoreFailureKind) -> StoreFailureKind:
        self.failures.append(kind)
        if kind is StoreFailureKind.TIMEOUT:
            self.timed_out = True
        elif kind is StoreFailureKind.LOCK_CONTENTION:
            self.lock_contended = True
        return kind
