# src/issuecorpus/core/store/resilient.py
"""ResilientStore: timeout, retry and statistics around every store operation.

Every operation runs as ``operation(deadline)`` inside a tenacity retry
loop:
- each attempt gets its own Deadline and its own connection scope, so no
  lock is held across a backoff sleep;
- a failed attempt is classified once into a StoreFailureKind;
- transient kinds are retried with exponential backoff, PERMANENT errors
  propagate after exactly one attempt;
- retry exhaustion raises RetryExhaustedError.

Writes (``run``, ``exec``, ``transaction``) check the deadline before
committing, so a write whose caller has timed out is rolled back.
"""

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy import Connection, RowMapping, func, select, text
from sqlalchemy.sql import Executable
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from issuecorpus.contracts.enums import StoreFailureKind
from issuecorpus.contracts.errors import RetryExhaustedError, StoreTimeoutError
from issuecorpus.contracts.records import Page, Record
from issuecorpus.contracts.store import HealthReport, StoreStats
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import StoreSettings
from issuecorpus.core.logging import get_logger
from issuecorpus.core.store.database import StoreDatabase
from issuecorpus.core.store.deadline import Deadline, interrupt_on_expiry
from issuecorpus.core.store.failures import CallTrace, classify_store_failure
from issuecorpus.core.store.schema import comments_table, issues_table
from issuecorpus.core.store.stats import StatsCollector

logger = get_logger(__name__)

T = TypeVar("T")

type Statement = str | Executable
type Params = Mapping[str, Any] | None

# Health thresholds
_MAX_TIMEOUT_RATE = 0.10
_MAX_LOCK_CONTENTION_RATE = 0.20
_MAX_ACTIVE_OPERATIONS = 10


def _as_statement(sql: Statement) -> Executable:
    return text(sql) if isinstance(sql, str) else sql


def split_script(script: str) -> list[str]:
    """Split a multi-statement script on ``;``.

    Statement bodies must not contain literal semicolons.
    """
    return [stmt.strip() for stmt in script.split(";") if stmt.strip()]


class ResilientStore:
    """Timeout, retry and statistics wrapper around a StoreDatabase.

    Example:
        store = ResilientStore(StoreDatabase(settings.store.url), settings.store)

        row = store.get("SELECT COUNT(*) AS n FROM issues")
        store.transaction(lambda conn: conn.execute(insert_stmt), "write_terms")
    """

    def __init__(
        self,
        db: StoreDatabase,
        settings: StoreSettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize the store.

        Args:
            db: Database connection manager
            settings: Timeouts and retry policy
            clock: Time source for deadlines and backoff sleeps
        """
        self._db = db
        self._settings = settings
        self._clock = clock
        self._stats = StatsCollector()
        self._active = 0

    @property
    def db(self) -> StoreDatabase:
        return self._db

    # === Core ===

    def execute(
        self,
        operation: Callable[[Deadline], T],
        name: str,
        timeout_ms: int | None = None,
    ) -> T:
        """Run ``operation`` with a deadline, retrying transient failures.

        Args:
            operation: Callable receiving the attempt's Deadline
            name: Operation name for logs, errors and statistics
            timeout_ms: Per-attempt deadline (default query_timeout_ms)

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: If every attempt failed transiently
            Exception: The original error of a PERMANENT failure
        """
        timeout = timeout_ms if timeout_ms is not None else self._settings.query_timeout_ms
        trace = CallTrace(operation=name)
        self._active += 1
        started = self._clock.monotonic()
        try:
            return self._execute_with_retry(operation, name, timeout, trace)
        finally:
            self._active -= 1
            duration_ms = (self._clock.monotonic() - started) * 1000.0
            self._stats.record(trace, duration_ms)
            if duration_ms > self._settings.slow_query_threshold_ms:
                logger.warning("Slow store operation", operation=name, duration_ms=round(duration_ms, 1))

    def _execute_with_retry(
        self,
        operation: Callable[[Deadline], T],
        name: str,
        timeout_ms: int,
        trace: CallTrace,
    ) -> T:
        def is_retryable(_exc: BaseException) -> bool:
            # Kind was stored when the attempt failed
            return trace.last_failure is not None and trace.last_failure.is_transient

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
            logger.warning(
                "Retrying store operation",
                operation=name,
                attempt=retry_state.attempt_number,
                max_attempts=self._settings.retry_attempts,
                failure_kind=str(trace.last_failure),
                delay_seconds=delay,
            )

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._settings.retry_attempts),
                wait=wait_exponential(
                    multiplier=self._settings.retry_delay_seconds,
                    exp_base=self._settings.retry_multiplier,
                    max=self._settings.max_retry_delay_seconds,
                ),
                retry=retry_if_exception(is_retryable),
                sleep=self._clock.sleep,
                before_sleep=before_sleep,
                reraise=False,  # RetryError is converted to RetryExhaustedError below
            ):
                with attempt_state:
                    trace.attempts = attempt_state.retry_state.attempt_number
                    return self._attempt(operation, name, timeout_ms, trace)

        except RetryError as e:
            last_error = e.last_attempt.exception()
            assert last_error is not None, "RetryError without exception is impossible"
            kind = trace.last_failure or StoreFailureKind.PERMANENT
            logger.error(
                "Store operation failed after retries",
                operation=name,
                attempts=trace.attempts,
                failure_kind=str(kind),
                error=str(last_error),
            )
            raise RetryExhaustedError(name, trace.attempts, last_error, kind) from last_error

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def _attempt(
        self,
        operation: Callable[[Deadline], T],
        name: str,
        timeout_ms: int,
        trace: CallTrace,
    ) -> T:
        deadline = Deadline(name, timeout_ms, self._clock)
        try:
            result = operation(deadline)
        except StoreTimeoutError:
            trace.record_failure(StoreFailureKind.TIMEOUT)
            raise
        except Exception as exc:
            if deadline.expired:
                # Interrupted by the progress handler, or failed after expiry
                trace.record_failure(StoreFailureKind.TIMEOUT)
                raise StoreTimeoutError(name, timeout_ms) from exc
            kind = trace.record_failure(classify_store_failure(exc))
            if kind is StoreFailureKind.PERMANENT:
                logger.error("Permanent store failure", operation=name, error=str(exc), error_type=type(exc).__name__)
            raise
        if deadline.expired:
            # Late result is discarded
            trace.record_failure(StoreFailureKind.TIMEOUT)
            raise StoreTimeoutError(name, timeout_ms)
        return result

    @contextmanager
    def _scope(self, deadline: Deadline, *, write: bool) -> Iterator[Connection]:
        """Connection scope for one attempt.

        Write scopes commit on exit only if the deadline has not passed.
        """
        ctx = self._db.engine.begin() if write else self._db.engine.connect()
        with ctx as conn:
            with interrupt_on_expiry(conn, deadline, self._settings.progress_handler_interval):
                yield conn
                if write:
                    deadline.check()

    # === Sugar ===

    def get(self, sql: Statement, params: Params = None, *, name: str = "get") -> RowMapping | None:
        """Return the first row of a query as a mapping, or None."""

        def op(deadline: Deadline) -> RowMapping | None:
            with self._scope(deadline, write=False) as conn:
                return conn.execute(_as_statement(sql), dict(params or {})).mappings().first()

        return self.execute(op, name)

    def all(self, sql: Statement, params: Params = None, *, name: str = "all") -> list[RowMapping]:
        """Return every row of a query as mappings."""

        def op(deadline: Deadline) -> list[RowMapping]:
            with self._scope(deadline, write=False) as conn:
                return list(conn.execute(_as_statement(sql), dict(params or {})).mappings().all())

        return self.execute(op, name)

    def run(self, sql: Statement, params: Params = None, *, name: str = "run") -> int:
        """Execute one write statement in its own transaction.

        Returns:
            Number of affected rows
        """

        def op(deadline: Deadline) -> int:
            with self._scope(deadline, write=True) as conn:
                return conn.execute(_as_statement(sql), dict(params or {})).rowcount

        return self.execute(op, name)

    def exec(self, script: str, *, name: str = "exec") -> None:
        """Execute a multi-statement script atomically.

        Statements are separated by ``;``; statement bodies must not contain
        literal semicolons.
        """
        statements = split_script(script)

        def op(deadline: Deadline) -> None:
            with self._scope(deadline, write=True) as conn:
                for stmt in statements:
                    conn.exec_driver_sql(stmt)

        self.execute(op, name, self._settings.transaction_timeout_ms)

    def transaction(self, fn: Callable[[Connection], T], name: str = "transaction") -> T:
        """Run ``fn(conn)`` inside one transaction under transaction_timeout_ms.

        ``fn`` may be invoked again on a transient failure, so it must not
        have side effects outside the transaction.
        """

        def op(deadline: Deadline) -> T:
            with self._scope(deadline, write=True) as conn:
                return fn(conn)

        return self.execute(op, name, self._settings.transaction_timeout_ms)

    # === Upstream reader ===

    def count_records(self) -> int:
        row = self.get(select(func.count().label("n")).select_from(issues_table), name="count_records")
        return int(row["n"]) if row is not None else 0

    def load_records(self, offset: int, limit: int) -> Page:
        """Read one page of upstream records ordered by key.

        Comments are aggregated per issue. Retry exhaustion degrades to a
        ``retries_exhausted`` page; permanent errors propagate.

        Args:
            offset: Rows to skip
            limit: Maximum rows in the page

        Returns:
            Page whose ``done`` flag is set when fewer than ``limit`` rows came back
        """
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")

        stmt = (
            select(
                issues_table.c.issue_key,
                issues_table.c.title,
                issues_table.c.description,
                issues_table.c.summary,
                issues_table.c.resolution_description,
                issues_table.c.related_url,
                issues_table.c.related_artifacts,
                issues_table.c.related_pages,
                func.group_concat(comments_table.c.body, " ").label("comments"),
            )
            .select_from(issues_table.outerjoin(comments_table, comments_table.c.issue_key == issues_table.c.issue_key))
            .group_by(issues_table.c.issue_key)
            .order_by(issues_table.c.issue_key)
            .limit(limit)
            .offset(offset)
        )
        try:
            rows = self.all(stmt, name="load_records")
        except RetryExhaustedError as e:
            logger.error("Record page unavailable after retries", offset=offset, limit=limit, attempts=e.attempts)
            return Page(records=(), offset=offset, retries_exhausted=True, error=str(e))

        records: list[Record] = []
        invalid = 0
        for position, row in enumerate(rows, start=offset):
            if not row["issue_key"]:
                invalid += 1
                logger.warning("Skipping upstream row without issue_key", offset=position, title=row["title"])
                continue
            records.append(Record.from_row(row))
        return Page(records=tuple(records), offset=offset, done=len(rows) < limit, invalid_rows=invalid)

    # === Observability ===

    def stats(self) -> StoreStats:
        return self._stats.snapshot()

    def reset_stats(self) -> None:
        self._stats.reset()

    def active_operations(self) -> int:
        return self._active

    def check_health(self) -> HealthReport:
        """Probe connectivity and evaluate the accumulated statistics.

        Unhealthy when the probe fails or the timeout rate exceeds 10%.
        High lock contention, slow average latency and too many active
        operations are reported as issues without failing the check.
        """
        issues: list[str] = []
        healthy = True

        def probe(deadline: Deadline) -> None:
            with self._scope(deadline, write=False) as conn:
                conn.execute(text("SELECT 1"))

        try:
            self.execute(probe, "health_check", self._settings.health_check_timeout_ms)
        except Exception as e:
            healthy = False
            issues.append(f"Connectivity check failed: {e}")

        snapshot = self._stats.snapshot()
        if snapshot.timeout_rate > _MAX_TIMEOUT_RATE:
            healthy = False
            issues.append(f"High timeout rate: {snapshot.timeout_rate:.1%}")
        if snapshot.lock_contention_rate > _MAX_LOCK_CONTENTION_RATE:
            issues.append(f"High lock contention rate: {snapshot.lock_contention_rate:.1%}")
        if snapshot.average_duration_ms > self._settings.slow_query_threshold_ms:
            issues.append(f"Slow average query time: {snapshot.average_duration_ms:.1f}ms")
        if self._active > _MAX_ACTIVE_OPERATIONS:
            issues.append(f"High number of active operations: {self._active}")

        if issues:
            logger.warning("Store health issues", healthy=healthy, issues=issues)
        return HealthReport(healthy=healthy, issues=tuple(issues))

    def close(self) -> None:
        self._db.close()
