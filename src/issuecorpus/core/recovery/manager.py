# src/issuecorpus/core/recovery/manager.py
"""RecoveryManager: error log, checkpoints and the per-item retry loop.

Facade over ErrorLog and CheckpointManager that decides whether a run may
keep going:
- should_continue_processing() inspects a rolling error window;
- process_batch() retries each item with exponential backoff, skips or
  fails items that exhaust their retries, and reports whether the batch
  failure rate allows the run to continue.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, TypeVar

from issuecorpus.contracts.checkpoint import Checkpoint, ContinueDecision, ProgressSnapshot
from issuecorpus.contracts.enums import ErrorSeverity, ErrorType
from issuecorpus.contracts.errors import ErrorRecord
from issuecorpus.contracts.results import BatchItemError, BatchResult, ErrorAnalysis
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import RecoverySettings
from issuecorpus.core.logging import get_logger
from issuecorpus.core.recovery.checkpoints import CheckpointManager
from issuecorpus.core.recovery.database import RecoveryDB
from issuecorpus.core.recovery.error_log import ErrorLog
from issuecorpus.core.recovery.report import render_recovery_report

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _item_key(item: object) -> str | None:
    """Best-effort record key of a batch item for the error log."""
    key = getattr(item, "key", None)
    return key if isinstance(key, str) else None


class RecoveryManager:
    """Error recovery and checkpointing for long-running corpus builds.

    Example:
        recovery = RecoveryManager(RecoveryDB(settings.recovery.state_url), settings.recovery)

        result = recovery.process_batch(records, write_terms, batch_id="batch-3", process_name="corpus-build")
        if not result.can_continue:
            ...  # halt the run
    """

    def __init__(
        self,
        db: RecoveryDB,
        settings: RecoverySettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize with the recovery state database.

        Args:
            db: Storage for checkpoints and the error log
            settings: Retry, abort and degradation policy
            clock: Time source for timestamps, windows and backoff sleeps
        """
        self._db = db
        self._settings = settings
        self._clock = clock
        self._errors = ErrorLog(db, settings, clock=clock)
        self._checkpoints = CheckpointManager(db, settings, clock=clock)
        self._session_start: datetime | None = None

    @property
    def settings(self) -> RecoverySettings:
        return self._settings

    @property
    def checkpoints(self) -> CheckpointManager:
        return self._checkpoints

    def start_session(self) -> None:
        """Ignore errors recorded before now in continue decisions.

        Errors of earlier runs stay in the log and in reports.
        """
        self._session_start = self._clock.now()

    # === Errors ===

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
        """Classify and append an error to the log."""
        return self._errors.record_error(
            exc,
            process_name=process_name,
            retry_count=retry_count,
            record_key=record_key,
            batch_id=batch_id,
            context=context,
            severity=severity,
        )

    def should_continue_processing(self, process_name: str) -> ContinueDecision:
        """Decide from the rolling error window whether processing may go on.

        Stops on any critical error, on more than max_errors_before_abort
        errors, or on more than memory_error_limit memory errors.
        """
        recent = self._errors.recent(
            process_name,
            timedelta(seconds=self._settings.error_window_seconds),
            not_before=self._session_start,
        )

        critical = sum(1 for e in recent if e.severity is ErrorSeverity.CRITICAL)
        if critical:
            return ContinueDecision(
                can_continue=False,
                reason=f"Critical errors detected: {critical}",
                recent_errors=len(recent),
            )
        if len(recent) > self._settings.max_errors_before_abort:
            return ContinueDecision(
                can_continue=False,
                reason=f"Too many errors in window: {len(recent)} > {self._settings.max_errors_before_abort}",
                recent_errors=len(recent),
            )
        memory = sum(1 for e in recent if e.error_type is ErrorType.MEMORY_ERROR)
        if memory > self._settings.memory_error_limit:
            return ContinueDecision(
                can_continue=False,
                reason=f"Too many memory errors: {memory}",
                recent_errors=len(recent),
            )
        return ContinueDecision(can_continue=True, recent_errors=len(recent))

    # === Checkpoints ===

    def create_checkpoint(self, process_name: str, progress: ProgressSnapshot) -> Checkpoint:
        checkpoint = self._checkpoints.create_checkpoint(process_name, progress)
        logger.info(
            "Checkpoint created",
            checkpoint_id=checkpoint.checkpoint_id,
            process_name=process_name,
            processed=checkpoint.processed_records,
            total=checkpoint.total_records,
            current_batch=checkpoint.current_batch,
            can_resume=checkpoint.can_resume,
        )
        return checkpoint

    def get_latest_checkpoint(self, process_name: str) -> Checkpoint | None:
        return self._checkpoints.get_latest_checkpoint(process_name)

    def resume_from_checkpoint(self, checkpoint_id: int) -> Checkpoint | None:
        """Return the checkpoint if it exists and is resumable, else None."""
        checkpoint = self._checkpoints.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            logger.warning("Checkpoint not found", checkpoint_id=checkpoint_id)
            return None
        if not checkpoint.can_resume:
            logger.warning(
                "Checkpoint is not resumable",
                checkpoint_id=checkpoint_id,
                processed=checkpoint.processed_records,
                failed=checkpoint.failed_records,
            )
            return None
        logger.info(
            "Resuming from checkpoint",
            checkpoint_id=checkpoint_id,
            process_name=checkpoint.process_name,
            current_batch=checkpoint.current_batch,
            processed=checkpoint.processed_records,
        )
        return checkpoint

    # === Batches ===

    def process_batch(
        self,
        items: Sequence[T],
        worker: Callable[[T, int], R],
        batch_id: str,
        process_name: str,
    ) -> BatchResult:
        """Run ``worker(item, index)`` over ``items`` with per-item retry.

        The continue check runs before every attempt; when it says stop, the
        batch ends early with partial results and ``can_continue=False``.
        An item whose retries are exhausted is skipped when
        skip_corrupted_records is set, otherwise counted as failed.

        Args:
            items: Batch items in processing order
            worker: Callable invoked per attempt
            batch_id: Identifier recorded with every error
            process_name: Error-log and continue-check key

        Returns:
            BatchResult with counters, worker results and final item errors
        """
        results: list[R] = []
        errors: list[BatchItemError] = []
        successful = failed = skipped = 0
        stop_reason: str | None = None

        for index, item in enumerate(items):
            retry_count = 0
            last_entry: ErrorRecord | None = None
            succeeded = False

            while retry_count <= self._settings.max_retries:
                decision = self.should_continue_processing(process_name)
                if not decision.can_continue:
                    stop_reason = decision.reason
                    break
                try:
                    results.append(worker(item, index))
                except Exception as exc:
                    retry_count += 1
                    last_entry = self.record_error(
                        exc,
                        process_name=process_name,
                        retry_count=retry_count,
                        record_key=_item_key(item),
                        batch_id=batch_id,
                        context={"item_index": index},
                    )
                    if retry_count <= self._settings.max_retries:
                        delay = self._settings.retry_delay_seconds * 2 ** (retry_count - 1)
                        logger.warning(
                            "Retrying batch item",
                            batch_id=batch_id,
                            item_index=index,
                            attempt=retry_count,
                            max_retries=self._settings.max_retries,
                            delay_seconds=delay,
                            error=str(exc),
                        )
                        self._clock.sleep(delay)
                else:
                    successful += 1
                    succeeded = True
                    break

            if stop_reason is not None:
                logger.warning(
                    "Batch stopped early",
                    batch_id=batch_id,
                    item_index=index,
                    reason=stop_reason,
                    successful=successful,
                )
                break

            if not succeeded:
                assert last_entry is not None, "Exhausted retries without a recorded error"
                is_skipped = self._settings.skip_corrupted_records
                if is_skipped:
                    skipped += 1
                else:
                    failed += 1
                errors.append(
                    BatchItemError(index=index, message=last_entry.message, error_id=last_entry.error_id, skipped=is_skipped)
                )
                logger.error(
                    "Batch item exhausted retries",
                    batch_id=batch_id,
                    item_index=index,
                    record_key=last_entry.record_key,
                    skipped=is_skipped,
                )

        total = len(items)
        attempted = successful + failed + skipped
        if stop_reason is not None:
            can_continue = False
        else:
            failure_rate = failed / total if total else 0.0
            can_continue = failure_rate <= self._settings.graceful_degradation_threshold

        logger.info(
            "Batch processed",
            batch_id=batch_id,
            total=total,
            successful=successful,
            failed=failed,
            skipped=skipped,
            can_continue=can_continue,
        )
        return BatchResult(
            batch_id=batch_id,
            total=total,
            attempted=attempted,
            successful=successful,
            failed=failed,
            skipped=skipped,
            can_continue=can_continue,
            results=tuple(results),
            errors=tuple(errors),
            stop_reason=stop_reason,
        )

    # === Reporting ===

    def get_error_analysis(self) -> ErrorAnalysis:
        return self._errors.analyze()

    def generate_recovery_report(self, process_name: str | None = None) -> str:
        checkpoint_count = len(self._checkpoints.get_checkpoints(process_name))
        return render_recovery_report(self.get_error_analysis(), checkpoint_count)

    def close(self) -> None:
        self._db.close()

    def reset(self, process_name: str) -> None:
        """Drop checkpoints and errors of a process before a fresh run."""
        deleted_checkpoints = self._checkpoints.delete_checkpoints(process_name)
        deleted_errors = self._errors.clear(process_name)
        logger.info(
            "Recovery state reset",
            process_name=process_name,
            checkpoints=deleted_checkpoints,
            errors=deleted_errors,
        )
