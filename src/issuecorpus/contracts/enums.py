"""Status codes, kinds and variants used across subsystem boundaries.

Values that are persisted (error types, severities, run statuses) are
StrEnums so they round-trip through the recovery database unchanged.
"""

from enum import StrEnum


class ErrorType(StrEnum):
    """Classification of a failure captured by the RecoveryManager.

    Stored in the error log (recovery_errors.error_type).
    """

    DATABASE_ERROR = "database_error"
    PROCESSING_ERROR = "processing_error"
    TIMEOUT_ERROR = "timeout_error"
    MEMORY_ERROR = "memory_error"
    VALIDATION_ERROR = "validation_error"
    NETWORK_ERROR = "network_error"
    SYSTEM_ERROR = "system_error"


class ErrorSeverity(StrEnum):
    """Severity of a recorded error.

    Stored in the error log (recovery_errors.severity).
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal for comparisons (LOW=0 ... CRITICAL=3)."""
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = (ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)


class StoreFailureKind(StrEnum):
    """How the store classified a failed attempt.

    Computed once when the attempt fails. Everything except PERMANENT
    is retried by the ResilientStore.
    """

    TIMEOUT = "timeout"
    LOCK_CONTENTION = "lock_contention"
    TRANSIENT_IO = "transient_io"
    READ_ONLY = "read_only"
    PERMANENT = "permanent"

    @property
    def is_transient(self) -> bool:
        return self is not StoreFailureKind.PERMANENT


class ScorerBackend(StrEnum):
    """Available downstream scorer implementations."""

    STANDARD = "standard"
    LIGHTWEIGHT = "lightweight"


class RunStatus(StrEnum):
    """Terminal status of a corpus build."""

    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


class RunPhase(StrEnum):
    """Pipeline phase recorded in checkpoint processing stats."""

    INITIALIZATION = "initialization"
    LOADING = "loading"
    GROUPING = "grouping"
    CORPUS_BUILDING = "corpus-building"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABORTED = "aborted"
