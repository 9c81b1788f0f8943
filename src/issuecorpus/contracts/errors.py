"""Exceptions and error-record contracts.

Store exceptions carry the operation name and a StoreFailureKind computed
once at capture, so downstream code never re-parses messages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from issuecorpus.contracts.enums import ErrorSeverity, ErrorType, StoreFailureKind

# =============================================================================
# Store Exceptions
# =============================================================================


class StoreError(Exception):
    """Base class for failures surfaced by the ResilientStore.

    Attributes:
        operation: Name of the store operation that failed
        kind: Failure classification of the final attempt
    """

    def __init__(self, operation: str, kind: StoreFailureKind, message: str) -> None:
        self.operation = operation
        self.kind = kind
        super().__init__(message)


class StoreTimeoutError(StoreError):
    """Raised when a store operation does not finish within its deadline.

    Any result that arrives after the deadline is discarded.
    """

    def __init__(self, operation: str, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(
            operation,
            StoreFailureKind.TIMEOUT,
            f"Store operation '{operation}' timed out after {timeout_ms}ms",
        )


class RetryExhaustedError(StoreError):
    """Raised when a transient failure survives every retry attempt.

    Attributes:
        attempts: Total attempts made (initial try included)
        last_error: Exception from the final attempt
    """

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: BaseException,
        kind: StoreFailureKind,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            operation,
            kind,
            f"Store operation '{operation}' failed after {attempts} attempts: {last_error}",
        )


# =============================================================================
# Pipeline Exceptions
# =============================================================================


class SourceValidationError(Exception):
    """Raised when the upstream store is missing required tables."""

    def __init__(self, missing_tables: list[str]) -> None:
        self.missing_tables = missing_tables
        super().__init__(f"Upstream store is missing required tables: {', '.join(missing_tables)}")


class PipelineAbortedError(Exception):
    """Raised when the orchestrator stops a run without a usable result.

    The final checkpoint and recovery report are written before this is
    raised, so ``checkpoint_id`` can be handed to a later resume.
    """

    def __init__(self, reason: str, *, checkpoint_id: int | None, report: str) -> None:
        self.reason = reason
        self.checkpoint_id = checkpoint_id
        self.report = report
        super().__init__(f"Pipeline aborted: {reason}")


# =============================================================================
# Error Records
# =============================================================================


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """Type and severity assigned to a captured failure."""

    error_type: ErrorType
    severity: ErrorSeverity


@dataclass(frozen=True)
class ErrorRecord:
    """One entry in the append-only recovery error log."""

    error_id: str
    timestamp: datetime
    error_type: ErrorType
    severity: ErrorSeverity
    message: str
    process_name: str
    retry_count: int = 0
    record_key: str | None = None
    batch_id: str | None = None
    exception_type: str | None = None
    stack_trace: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.error_id:
            raise ValueError("error_id is required and cannot be empty")
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be non-negative, got {self.retry_count}")
