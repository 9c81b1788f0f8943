# src/issuecorpus/core/recovery/error_log.py
"""Append-only, size-bounded error log.

Entries are persisted to the recovery state database and mirrored in a
bounded in-memory window so the per-item continue check does not hit the
database. Both are trimmed to the most recent ``error_log_limit`` entries.
"""

import json
import traceback
import uuid
from collections import Counter, deque
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, desc, select

from issuecorpus.contracts.enums import ErrorSeverity, ErrorType
from issuecorpus.contracts.errors import ErrorRecord
from issuecorpus.contracts.results import ErrorAnalysis
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import RecoverySettings
from issuecorpus.core.logging import get_logger
from issuecorpus.core.recovery.classification import classify_error
from issuecorpus.core.recovery.database import RecoveryDB, as_utc
from issuecorpus.core.recovery.schema import recovery_errors_table

logger = get_logger(__name__)

_TOP_MESSAGES = 5
_TOP_RECORDS = 10
_MESSAGE_PREFIX = 100
_RECENT_WINDOW = timedelta(hours=1)


def _json_safe(context: dict[str, Any]) -> str:
    return json.dumps(context, default=str, allow_nan=False)


class ErrorLog:
    """Recovery error log backed by the ``recovery_errors`` table."""

    def __init__(self, db: RecoveryDB, settings: RecoverySettings, *, clock: Clock = DEFAULT_CLOCK) -> None:
        self._db = db
        self._limit = settings.error_log_limit
        self._clock = clock
        self._entries: deque[ErrorRecord] = deque(maxlen=self._limit)
        self._load_tail()

    def _load_tail(self) -> None:
        with self._db.engine.connect() as conn:
            rows = conn.execute(
                select(recovery_errors_table).order_by(desc(recovery_errors_table.c.seq)).limit(self._limit)
            ).fetchall()
        for row in reversed(rows):
            self._entries.append(
                ErrorRecord(
                    error_id=row.error_id,
                    timestamp=as_utc(row.timestamp),
                    error_type=ErrorType(row.error_type),
                    severity=ErrorSeverity(row.severity),
                    message=row.message,
                    process_name=row.process_name,
                    retry_count=row.retry_count,
                    record_key=row.record_key,
                    batch_id=row.batch_id,
                    exception_type=row.exception_type,
                    stack_trace=row.stack_trace,
                    context=json.loads(row.context_json),
                )
            )

    def record_error(
        self,
        exc: BaseException,
        *,
        process_name: str,
        retry_count: int = 0,
        record_key: str | None = None,
        batch_id: str | None = None,
        context: dict[str, Any] | None = None,
        severity: ErrorSeverity | None = None,
    ) -> ErrorRecord:
        """Classify, persist and return an error entry.

        ``severity`` overrides the classified severity. High and critical
        errors are logged at error level immediately.
        """
        classification = classify_error(exc, retry_count)
        entry = ErrorRecord(
            error_id=f"err-{uuid.uuid4().hex}",
            timestamp=self._clock.now(),
            error_type=classification.error_type,
            severity=severity or classification.severity,
            message=str(exc) or type(exc).__name__,
            process_name=process_name,
            retry_count=retry_count,
            record_key=record_key,
            batch_id=batch_id,
            exception_type=type(exc).__name__,
            stack_trace="".join(traceback.format_exception(exc)),
            context=dict(context or {}),
        )

        with self._db.engine.begin() as conn:
            conn.execute(
                recovery_errors_table.insert().values(
                    error_id=entry.error_id,
                    timestamp=entry.timestamp,
                    error_type=entry.error_type.value,
                    severity=entry.severity.value,
                    message=entry.message,
                    process_name=entry.process_name,
                    retry_count=entry.retry_count,
                    record_key=entry.record_key,
                    batch_id=entry.batch_id,
                    exception_type=entry.exception_type,
                    stack_trace=entry.stack_trace,
                    context_json=_json_safe(entry.context),
                )
            )
            cutoff = conn.execute(
                select(recovery_errors_table.c.seq)
                .order_by(desc(recovery_errors_table.c.seq))
                .limit(1)
                .offset(self._limit - 1)
            ).scalar()
            if cutoff is not None:
                conn.execute(delete(recovery_errors_table).where(recovery_errors_table.c.seq < cutoff))

        self._entries.append(entry)

        if entry.severity.rank >= ErrorSeverity.HIGH.rank:
            logger.error(
                "Recorded error",
                error_id=entry.error_id,
                error_type=entry.error_type.value,
                severity=entry.severity.value,
                process_name=process_name,
                record_key=record_key,
                batch_id=batch_id,
                retry_count=retry_count,
                error=entry.message,
            )
        else:
            logger.debug(
                "Recorded error",
                error_id=entry.error_id,
                error_type=entry.error_type.value,
                severity=entry.severity.value,
                record_key=record_key,
            )
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ErrorRecord]:
        return iter(self._entries)

    def recent(self, process_name: str, window: timedelta, *, not_before: datetime | None = None) -> list[ErrorRecord]:
        """Errors of ``process_name`` newer than ``window`` and ``not_before``."""
        since = self._clock.now() - window
        if not_before is not None and not_before > since:
            since = not_before
        return [e for e in self._entries if e.process_name == process_name and e.timestamp >= since]

    def analyze(self) -> ErrorAnalysis:
        """Aggregate the retained entries."""
        entries = list(self._entries)
        since = self._clock.now() - _RECENT_WINDOW
        messages = Counter(e.message[:_MESSAGE_PREFIX] for e in entries)
        problem_records = Counter(e.record_key for e in entries if e.record_key is not None)
        return ErrorAnalysis(
            total_errors=len(entries),
            by_type=dict(Counter(e.error_type.value for e in entries)),
            by_severity=dict(Counter(e.severity.value for e in entries)),
            recent_errors=sum(1 for e in entries if e.timestamp >= since),
            top_messages=tuple(messages.most_common(_TOP_MESSAGES)),
            problem_records=tuple(problem_records.most_common(_TOP_RECORDS)),
        )

    def clear(self, process_name: str) -> int:
        """Delete every entry of ``process_name``. Returns rows deleted."""
        with self._db.engine.begin() as conn:
            result = conn.execute(delete(recovery_errors_table).where(recovery_errors_table.c.process_name == process_name))
        kept = [e for e in self._entries if e.process_name != process_name]
        self._entries.clear()
        self._entries.extend(kept)
        return result.rowcount
