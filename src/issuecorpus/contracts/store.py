"""Store statistics and health contracts."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StoreStats:
    """Aggregate statistics of a ResilientStore since the last reset."""

    total_calls: int = 0
    timeout_calls: int = 0
    retried_calls: int = 0
    lock_contentions: int = 0
    total_retry_attempts: int = 0
    average_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    @property
    def timeout_rate(self) -> float:
        return self.timeout_calls / self.total_calls if self.total_calls else 0.0

    @property
    def retry_rate(self) -> float:
        return self.retried_calls / self.total_calls if self.total_calls else 0.0

    @property
    def lock_contention_rate(self) -> float:
        return self.lock_contentions / self.total_calls if self.total_calls else 0.0

    def to_dict(self) -> dict[str, int | float]:
        return {
            "total_calls": self.total_calls,
            "timeout_calls": self.timeout_calls,
            "retried_calls": self.retried_calls,
            "lock_contentions": self.lock_contentions,
            "total_retry_attempts": self.total_retry_attempts,
            "average_duration_ms": round(self.average_duration_ms, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "timeout_rate": round(self.timeout_rate, 4),
            "retry_rate": round(self.retry_rate, 4),
            "lock_contention_rate": round(self.lock_contention_rate, 4),
        }


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Result of ResilientStore.check_health()."""

    healthy: bool
    issues: tuple[str, ...] = ()
