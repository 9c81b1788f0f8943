# src/issuecorpus/core/recovery/classification.py
"""Error type and severity classification.

Classification happens once, when a failure is captured; the result is
stored on the ErrorRecord. Exception kinds are checked first, message
markers are a best-effort fallback for foreign exceptions.
"""

import sqlite3

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from issuecorpus.contracts.enums import ErrorSeverity, ErrorType, StoreFailureKind
from issuecorpus.contracts.errors import ErrorClassification, SourceValidationError, StoreError, StoreTimeoutError

# Checked in order; first match wins.
_MESSAGE_MARKERS: tuple[tuple[ErrorType, tuple[str, ...]], ...] = (
    (ErrorType.DATABASE_ERROR, ("database", "sqlite")),
    (ErrorType.TIMEOUT_ERROR, ("timeout", "timed out")),
    (ErrorType.MEMORY_ERROR, ("memory", "heap")),
    (ErrorType.VALIDATION_ERROR, ("validation", "invalid")),
    (ErrorType.NETWORK_ERROR, ("network", "connection")),
    (ErrorType.SYSTEM_ERROR, ("system", "enoent", "permission")),
)

_CRITICAL_MARKERS: tuple[str, ...] = ("critical", "fatal", "corrupt")


def classify_error_type(exc: BaseException) -> ErrorType:
    """Assign an ErrorType to an exception."""
    if isinstance(exc, StoreTimeoutError | TimeoutError):
        return ErrorType.TIMEOUT_ERROR
    if isinstance(exc, StoreError):
        return ErrorType.TIMEOUT_ERROR if exc.kind is StoreFailureKind.TIMEOUT else ErrorType.DATABASE_ERROR
    if isinstance(exc, SQLAlchemyError | sqlite3.Error | SourceValidationError):
        return ErrorType.DATABASE_ERROR
    if isinstance(exc, MemoryError):
        return ErrorType.MEMORY_ERROR
    if isinstance(exc, ValidationError | ValueError):
        return ErrorType.VALIDATION_ERROR
    if isinstance(exc, ConnectionError):
        return ErrorType.NETWORK_ERROR
    if isinstance(exc, OSError):
        return ErrorType.SYSTEM_ERROR

    message = str(exc).lower()
    for error_type, markers in _MESSAGE_MARKERS:
        if any(marker in message for marker in markers):
            return error_type
    return ErrorType.PROCESSING_ERROR


def classify_severity(exc: BaseException, error_type: ErrorType, retry_count: int) -> ErrorSeverity:
    """Assign an ErrorSeverity given the type and how often the item was retried."""
    message = str(exc).lower()
    if any(marker in message for marker in _CRITICAL_MARKERS):
        return ErrorSeverity.CRITICAL
    if error_type in (ErrorType.TIMEOUT_ERROR, ErrorType.MEMORY_ERROR) or retry_count > 2:
        return ErrorSeverity.HIGH
    if error_type in (ErrorType.DATABASE_ERROR, ErrorType.NETWORK_ERROR) or retry_count > 1:
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


def classify_error(exc: BaseException, retry_count: int = 0) -> ErrorClassification:
    """Classify a captured failure.

    Args:
        exc: The exception that was raised
        retry_count: Attempts already failed for the same item, this one included

    Returns:
        ErrorClassification with type and severity
    """
    error_type = classify_error_type(exc)
    return ErrorClassification(error_type=error_type, severity=classify_severity(exc, error_type, retry_count))
