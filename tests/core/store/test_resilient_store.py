# tests/core/store/test_resilient_store.py
"""Tests for ResilientStore timeout, retry and statistics behaviour."""

import sqlite3

import pytest
from sqlalchemy import func, insert, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from issuecorpus.contracts import RetryExhaustedError, StoreFailureKind, StoreTimeoutError
from issuecorpus.core.clock import MockClock
from issuecorpus.core.config import StoreSettings
from issuecorpus.core.store import Deadline, ResilientStore, StoreDatabase
from issuecorpus.core.store.schema import document_terms_table, issues_table


def _locked() -> OperationalError:
    return OperationalError("UPDATE issues", {}, sqlite3.OperationalError("database is locked"))


class TestRetry:
    """Transient failures are retried with exponential backoff."""

    def test_succeeds_after_transient_failures(self, store: ResilientStore, clock: MockClock) -> None:
        calls = 0

        def flaky(deadline: Deadline) -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise _locked()
            return "ok"

        assert store.execute(flaky, "flaky") == "ok"
        assert calls == 3
        # 1.0 * 2**0, 1.0 * 2**1
        assert clock.sleeps == [1.0, 2.0]

    def test_backoff_capped_at_max_delay(self, store_db: StoreDatabase, clock: MockClock) -> None:
        settings = StoreSettings(url="sqlite://", retry_attempts=5, retry_delay_seconds=1.0, max_retry_delay_seconds=3.0)
        store = ResilientStore(store_db, settings, clock=clock)

        def always_locked(deadline: Deadline) -> None:
            raise _locked()

        with pytest.raises(RetryExhaustedError):
            store.execute(always_locked, "locked")

        assert clock.sleeps == [1.0, 2.0, 3.0, 3.0]

    def test_exhaustion_raises_retry_exhausted(self, store: ResilientStore, clock: MockClock) -> None:
        def always_locked(deadline: Deadline) -> None:
            raise _locked()

        with pytest.raises(RetryExhaustedError) as exc_info:
            store.execute(always_locked, "write_terms")

        error = exc_info.value
        assert error.operation == "write_terms"
        assert error.attempts == 3
        assert error.kind is StoreFailureKind.LOCK_CONTENTION
        assert isinstance(error.last_error, OperationalError)
        assert len(clock.sleeps) == 2

    def test_permanent_error_not_retried(self, store: ResilientStore, clock: MockClock) -> None:
        calls = 0

        def broken(deadline: Deadline) -> None:
            nonlocal calls
            calls += 1
            raise ValueError("programming error")

        with pytest.raises(ValueError, match="programming error"):
            store.execute(broken, "broken")

        assert calls == 1
        assert clock.sleeps == []

    def test_constraint_violation_propagates_unchanged(self, store: ResilientStore) -> None:
        store.run(insert(issues_table).values(issue_key="A-1"))

        with pytest.raises(IntegrityError):
            store.run(insert(issues_table).values(issue_key="A-1"))


class TestTimeout:
    """Deadlines bound every attempt."""

    def test_late_result_is_discarded(self, store_db: StoreDatabase, clock: MockClock) -> None:
        settings = StoreSettings(url="sqlite://", query_timeout_ms=100, retry_attempts=1)
        store = ResilientStore(store_db, settings, clock=clock)

        def slow(deadline: Deadline) -> str:
            clock.advance(0.2)
            return "too late"

        with pytest.raises(RetryExhaustedError) as exc_info:
            store.execute(slow, "slow")

        assert exc_info.value.kind is StoreFailureKind.TIMEOUT
        assert isinstance(exc_info.value.last_error, StoreTimeoutError)

    def test_timeout_is_retried(self, store: ResilientStore, clock: MockClock) -> None:
        calls = 0

        def slow_then_fast(deadline: Deadline) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                clock.advance(31)
            return "ok"

        assert store.execute(slow_then_fast, "query") == "ok"
        assert calls == 2
        assert store.stats().timeout_calls == 1

    def test_explicit_timeout_overrides_default(self, store: ResilientStore, clock: MockClock) -> None:
        seen: list[int] = []

        def op(deadline: Deadline) -> None:
            seen.append(deadline.timeout_ms)

        store.execute(op, "custom", timeout_ms=250)

        assert seen == [250]

    def test_expired_write_is_rolled_back(self, store: ResilientStore, store_db: StoreDatabase, clock: MockClock) -> None:
        def write_then_stall(conn: object) -> None:
            conn.execute(insert(issues_table).values(issue_key="LATE-1"))  # type: ignore[attr-defined]
            clock.advance(61)

        with pytest.raises(RetryExhaustedError):
            store.transaction(write_then_stall, "late_write")

        with store_db.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(issues_table)).scalar()
        assert count == 0


class TestSugar:
    """get/all/run/exec/transaction."""

    def test_get_and_all(self, store: ResilientStore) -> None:
        store.run(insert(issues_table).values(issue_key="A-1", title="one"))
        store.run("INSERT INTO issues (issue_key, title) VALUES (:k, :t)", {"k": "A-2", "t": "two"})

        row = store.get("SELECT title FROM issues WHERE issue_key = :k", {"k": "A-2"})
        rows = store.all(select(issues_table.c.issue_key).order_by(issues_table.c.issue_key))

        assert row is not None and row["title"] == "two"
        assert [r["issue_key"] for r in rows] == ["A-1", "A-2"]
        assert store.get("SELECT title FROM issues WHERE issue_key = 'missing'") is None

    def test_run_returns_rowcount(self, store: ResilientStore) -> None:
        store.run(insert(issues_table).values(issue_key="A-1"))
        store.run(insert(issues_table).values(issue_key="A-2"))

        assert store.run("UPDATE issues SET title = 'x'") == 2

    def test_exec_runs_script_atomically(self, store: ResilientStore) -> None:
        store.exec(
            """
            INSERT INTO issues (issue_key) VALUES ('S-1');
            INSERT INTO issues (issue_key) VALUES ('S-2');
            """
        )
        assert store.count_records() == 2

        with pytest.raises(IntegrityError):
            store.exec("INSERT INTO issues (issue_key) VALUES ('S-3'); INSERT INTO issues (issue_key) VALUES ('S-1')")

        assert store.count_records() == 2

    def test_transaction_rolls_back_on_error(self, store: ResilientStore) -> None:
        def half_done(conn: object) -> None:
            conn.execute(  # type: ignore[attr-defined]
                insert(document_terms_table).values(issue_key="A", term="crash", term_frequency=1.0, batch_index=1)
            )
            raise RuntimeError("worker blew up")

        with pytest.raises(RuntimeError):
            store.transaction(half_done, "half_done")

        assert store.get(select(func.count().label("n")).select_from(document_terms_table))["n"] == 0  # type: ignore[index]

    def test_transaction_returns_value(self, store: ResilientStore) -> None:
        result = store.transaction(lambda conn: conn.execute(text("SELECT 41 + 1")).scalar(), "answer")

        assert result == 42


class TestStats:
    def test_counts_calls_retries_and_contention(self, store: ResilientStore) -> None:
        calls = 0

        def flaky(deadline: Deadline) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise _locked()

        store.execute(flaky, "flaky")
        store.execute(lambda d: None, "plain")

        stats = store.stats()
        assert stats.total_calls == 2
        assert stats.retried_calls == 1
        assert stats.lock_contentions == 1
        assert stats.total_retry_attempts == 1
        assert stats.retry_rate == 0.5

    def test_reset(self, store: ResilientStore) -> None:
        store.execute(lambda d: None, "plain")
        store.reset_stats()

        assert store.stats().total_calls == 0

    def test_active_operations_tracked(self, store: ResilientStore) -> None:
        observed: list[int] = []

        store.execute(lambda d: observed.append(store.active_operations()), "probe")

        assert observed == [1]
        assert store.active_operations() == 0


class TestHealth:
    def test_healthy_store(self, store: ResilientStore) -> None:
        report = store.check_health()

        assert report.healthy
        assert report.issues == ()

    def test_high_timeout_rate_is_unhealthy(self, store_db: StoreDatabase, clock: MockClock) -> None:
        store = ResilientStore(store_db, StoreSettings(url="sqlite://", query_timeout_ms=10, retry_attempts=1), clock=clock)

        def slow(deadline: Deadline) -> None:
            clock.advance(1)

        with pytest.raises(RetryExhaustedError):
            store.execute(slow, "slow")

        report = store.check_health()

        assert not report.healthy
        assert any("timeout rate" in issue for issue in report.issues)

    def test_closed_database_fails_probe(self, store: ResilientStore, store_db: StoreDatabase) -> None:
        store_db.close()

        report = store.check_health()

        assert not report.healthy
        assert any("Connectivity" in issue for issue in report.issues)


class TestLoadRecords:
    """Paginated upstream reads."""

    def test_pages_in_key_order_with_comments(self, store: ResilientStore, seed_issues) -> None:  # type: ignore[no-untyped-def]
        seed_issues(
            [
                {"issue_key": "B-1", "title": "second", "comments": ["c1", "c2"]},
                {"issue_key": "A-1", "title": "first"},
                {"issue_key": "C-1", "title": "third", "resolution_description": "fixed"},
            ]
        )

        first = store.load_records(0, 2)
        second = store.load_records(2, 2)

        assert [r.key for r in first.records] == ["A-1", "B-1"]
        assert not first.done
        assert first.records[1].comments is not None
        assert sorted(first.records[1].comments.split()) == ["c1", "c2"]
        assert first.records[0].comments is None
        assert [r.key for r in second.records] == ["C-1"]
        assert second.done
        assert second.records[0].resolution == "fixed"

    def test_rows_without_key_are_dropped_but_keep_their_offset(self, store: ResilientStore, seed_issues) -> None:  # type: ignore[no-untyped-def]
        seed_issues([{"issue_key": ""}, {"issue_key": "A-1"}, {"issue_key": "B-1"}])

        first = store.load_records(0, 2)
        second = store.load_records(first.next_offset, 2)

        assert [r.key for r in first.records] == ["A-1"]
        assert first.invalid_rows == 1
        assert not first.done
        assert first.next_offset == 2
        assert [r.key for r in second.records] == ["B-1"]
        assert second.invalid_rows == 0
        assert second.done

    def test_empty_page_is_done(self, store: ResilientStore) -> None:
        page = store.load_records(0, 10)

        assert page.records == ()
        assert page.done
        assert not page.retries_exhausted

    def test_exhausted_reads_return_flagged_page(
        self, store: ResilientStore, monkeypatch: pytest.MonkeyPatch, clock: MockClock
    ) -> None:
        def locked_all(*args: object, **kwargs: object) -> None:
            raise RetryExhaustedError("load_records", 3, _locked(), StoreFailureKind.LOCK_CONTENTION)

        monkeypatch.setattr(store, "all", locked_all)

        page = store.load_records(20, 10)

        assert page.retries_exhausted
        assert not page.done
        assert page.offset == 20
        assert page.error is not None and "load_records" in page.error

    def test_invalid_arguments(self, store: ResilientStore) -> None:
        with pytest.raises(ValueError):
            store.load_records(0, 0)
        with pytest.raises(ValueError):
            store.load_records(-1, 10)
