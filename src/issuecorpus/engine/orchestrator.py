# src/issuecorpus/engine/orchestrator.py
"""CorpusPipeline: drives a corpus build from upstream records to keywords.

Phases, in order:
1. Validate the upstream tables and count records
2. Resume from the latest checkpoint or reset the output tables
3. Load records page by page
4. Group related records
5. Pack groups into batches and score them with per-item retry
6. Finalize corpus statistics and keywords

Every store access goes through the ResilientStore, every batch through
RecoveryManager.process_batch. A halted run either degrades (partial
results) or aborts with a final checkpoint and the recovery report.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, NoReturn

from sqlalchemy import Connection

from issuecorpus.contracts.checkpoint import Checkpoint, ProgressSnapshot
from issuecorpus.contracts.enums import ErrorSeverity, RunPhase, RunStatus
from issuecorpus.contracts.errors import PipelineAbortedError, SourceValidationError
from issuecorpus.contracts.grouping import GroupingResult
from issuecorpus.contracts.records import Batch, Record
from issuecorpus.contracts.results import BatchResult, RunResult
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import CorpusSettings
from issuecorpus.core.grouping import GroupingEngine
from issuecorpus.core.logging import get_logger, run_context
from issuecorpus.core.recovery import RecoveryDB, RecoveryManager
from issuecorpus.core.store import ResilientStore, StoreDatabase
from issuecorpus.core.store.deadline import Deadline
from issuecorpus.engine.batching import pack_batches
from issuecorpus.engine.corpus import CorpusWriter
from issuecorpus.engine.scoring import Scorer, create_scorer

logger = get_logger(__name__)


@dataclass
class _RunProgress:
    """Mutable counters of the run in flight."""

    phase: RunPhase = RunPhase.INITIALIZATION
    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    skipped_records: int = 0
    current_batch: int = 0
    batches_processed: int = 0
    last_processed_key: str | None = None
    grouping_degraded: bool = False
    degraded_reason: str | None = None
    resumed_from: int | None = None
    last_checkpoint_id: int | None = None
    grouping_stats: dict[str, Any] | None = None
    invalid_records: int = 0
    # Counts of a batch that stopped early; it is re-scored on resume
    partial_batch: dict[str, int] | None = None

    def degrade(self, reason: str) -> None:
        """Record the first degradation reason; later ones are appended."""
        self.degraded_reason = reason if self.degraded_reason is None else f"{self.degraded_reason}; {reason}"

    def apply(self, batch: Batch, result: BatchResult, empty_records: int) -> None:
        counts = {
            "processed": result.attempted + empty_records,
            "successful": result.successful,
            "failed": result.failed,
            "skipped": result.skipped + empty_records,
        }
        self.processed_records += counts["processed"]
        self.successful_records += counts["successful"]
        self.failed_records += counts["failed"]
        self.skipped_records += counts["skipped"]
        self.batches_processed += 1
        if result.stopped_early:
            self.partial_batch = {"index": batch.index, **counts}
        else:
            self.partial_batch = None
            self.current_batch = batch.index
            self.last_processed_key = batch.records[-1].key

    def restore(self, checkpoint: Checkpoint) -> None:
        """Take over a checkpoint's counters, minus its partial batch."""
        partial = checkpoint.processing_stats.get("partial_batch") or {}
        self.resumed_from = checkpoint.checkpoint_id
        self.processed_records = checkpoint.processed_records - partial.get("processed", 0)
        self.successful_records = checkpoint.successful_records - partial.get("successful", 0)
        self.failed_records = checkpoint.failed_records - partial.get("failed", 0)
        self.skipped_records = checkpoint.skipped_records - partial.get("skipped", 0)
        self.current_batch = checkpoint.current_batch
        self.last_processed_key = checkpoint.last_processed_key


class CorpusPipeline:
    """Runs a fault-tolerant corpus build.

    Example:
        settings = load_settings(Path("settings.yaml"))
        with CorpusPipeline.from_settings(settings) as pipeline:
            result = pipeline.run(resume=True)
    """

    def __init__(
        self,
        settings: CorpusSettings,
        *,
        store: ResilientStore,
        recovery: RecoveryManager,
        grouping: GroupingEngine | None = None,
        scorer: Scorer | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize with collaborators.

        Args:
            settings: Full corpus settings
            store: Resilient access to the upstream and output tables
            recovery: Error log, checkpoints and per-item retry
            grouping: Grouping engine (default: built from settings)
            scorer: Scorer backend (default: settings.scorer.backend)
            clock: Time source for grouping time boxes
        """
        self._settings = settings
        self._store = store
        self._recovery = recovery
        self._grouping = grouping or GroupingEngine(settings.safeguards, settings.relations, clock=clock)
        self._scorer = scorer or create_scorer(settings.scorer.backend, settings.scorer)
        self._writer = CorpusWriter(store, settings.scorer)
        self._process_name = settings.pipeline.process_name

    @classmethod
    def from_settings(cls, settings: CorpusSettings, *, clock: Clock = DEFAULT_CLOCK) -> "CorpusPipeline":
        """Build the pipeline and its databases from settings alone."""
        store_db = StoreDatabase(
            settings.store.url,
            busy_timeout_ms=settings.store.busy_timeout_ms,
            echo=settings.store.echo,
        )
        recovery_db = RecoveryDB(settings.recovery.state_url, busy_timeout_ms=settings.store.busy_timeout_ms)
        return cls(
            settings,
            store=ResilientStore(store_db, settings.store, clock=clock),
            recovery=RecoveryManager(recovery_db, settings.recovery, clock=clock),
            clock=clock,
        )

    @property
    def writer(self) -> CorpusWriter:
        return self._writer

    def close(self) -> None:
        self._store.close()
        self._recovery.close()

    def __enter__(self) -> "CorpusPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # === Run ===

    def run(self, resume: bool = False) -> RunResult:
        """Execute a corpus build.

        Args:
            resume: Continue from the latest resumable checkpoint if one exists

        Returns:
            RunResult with status COMPLETED or DEGRADED

        Raises:
            PipelineAbortedError: If the run halted and could not degrade
            SourceValidationError: If the upstream tables are missing
            Exception: Any unexpected failure, after it was recorded and checkpointed
        """
        with run_context(self._process_name, resume=resume):
            return self._run(resume)

    def _run(self, resume: bool) -> RunResult:
        progress = _RunProgress()
        try:
            return self._execute_run(progress, resume)
        except PipelineAbortedError:
            raise
        except Exception as e:
            self._recovery.record_error(
                e,
                process_name=self._process_name,
                severity=ErrorSeverity.CRITICAL,
                context={"phase": progress.phase.value, "current_batch": progress.current_batch},
            )
            failed_phase = progress.phase
            progress.phase = RunPhase.ABORTED
            checkpoint = self._checkpoint(progress, failed_phase=failed_phase)
            report = self._recovery.generate_recovery_report(self._process_name)
            logger.error(
                "Corpus build failed",
                phase=failed_phase.value,
                checkpoint_id=checkpoint.checkpoint_id,
                processed=progress.processed_records,
                error=str(e),
            )
            logger.info(report)
            raise

    def _execute_run(self, progress: _RunProgress, resume: bool) -> RunResult:
        self._recovery.start_session()
        logger.info("Corpus build started")

        self._validate_source()
        progress.total_records = self._store.count_records()

        skip_through = self._resume_or_reset(progress, resume)

        progress.phase = RunPhase.LOADING
        records = self._load_records(progress)

        progress.phase = RunPhase.GROUPING
        grouping = self._grouping.group(records)
        progress.grouping_stats = grouping.stats.to_dict()
        if grouping.degraded:
            progress.grouping_degraded = True
            progress.degrade(f"grouping fell back to singletons: {grouping.fallback_reason}")
            logger.warning(
                "Grouping degraded",
                reason=grouping.fallback_reason,
                records=grouping.record_count,
            )

        progress.phase = RunPhase.CORPUS_BUILDING
        self._build_corpus(progress, records, grouping, skip_through)

        progress.phase = RunPhase.FINALIZING
        corpus_terms = self._finalize(progress)

        progress.phase = RunPhase.COMPLETED
        checkpoint = self._checkpoint(progress)
        report = self._recovery.generate_recovery_report(self._process_name)
        store_stats = self._store.stats()
        status = RunStatus.DEGRADED if progress.degraded_reason is not None else RunStatus.COMPLETED

        logger.info(
            "Corpus build finished",
            status=status.value,
            processed=progress.processed_records,
            successful=progress.successful_records,
            failed=progress.failed_records,
            skipped=progress.skipped_records,
            batches=progress.batches_processed,
            corpus_terms=corpus_terms,
            degraded_reason=progress.degraded_reason,
        )
        logger.info("Store statistics", **store_stats.to_dict())
        logger.info(report)

        return RunResult(
            status=status,
            total_records=progress.total_records,
            processed_records=progress.processed_records,
            successful_records=progress.successful_records,
            failed_records=progress.failed_records,
            skipped_records=progress.skipped_records,
            batches_processed=progress.batches_processed,
            grouping_degraded=progress.grouping_degraded,
            keywords_written=self._writer.count_keywords(),
            terms_written=self._writer.count_document_terms(),
            last_checkpoint_id=checkpoint.checkpoint_id,
            report=report,
            resumed_from=progress.resumed_from,
            degraded_reason=progress.degraded_reason,
        )

    # === Phases ===

    def _validate_source(self) -> None:
        def inspect_tables(deadline: Deadline) -> list[str]:
            return self._store.db.missing_source_tables()

        missing = self._store.execute(inspect_tables, "validate_source")
        if missing:
            raise SourceValidationError(missing)
        self._writer.ensure_tables()

    def _resume_or_reset(self, progress: _RunProgress, resume: bool) -> int:
        """Restore counters from a checkpoint or start clean.

        Returns:
            Index of the last batch that needs no re-scoring (0 for a fresh run)
        """
        if resume:
            latest = self._recovery.get_latest_checkpoint(self._process_name)
            checkpoint = self._recovery.resume_from_checkpoint(latest.checkpoint_id) if latest is not None else None
            if checkpoint is not None:
                progress.restore(checkpoint)
                return checkpoint.current_batch
            logger.info("No resumable checkpoint, starting fresh")

        self._writer.reset()
        return 0

    def _load_records(self, progress: _RunProgress) -> list[Record]:
        chunk_size = self._settings.pipeline.load_chunk_size
        records: list[Record] = []
        offset = 0
        while True:
            page = self._store.load_records(offset, chunk_size)
            if page.retries_exhausted:
                reason = f"record loading stopped at offset {offset}: {page.error}"
                if records and self._settings.recovery.enable_partial_results:
                    progress.degrade(reason)
                    logger.warning("Continuing with partially loaded records", loaded=len(records), reason=reason)
                    break
                self._abort(progress, reason)
            records.extend(page.records)
            progress.invalid_records += page.invalid_rows
            offset = page.next_offset
            if page.done:
                break

        logger.info(
            "Records loaded",
            loaded=len(records),
            expected=progress.total_records,
            invalid=progress.invalid_records,
        )
        return records

    def _build_corpus(
        self,
        progress: _RunProgress,
        records: Sequence[Record],
        grouping: GroupingResult,
        skip_through: int,
    ) -> None:
        records_by_key = {record.key: record for record in records}
        interval = self._settings.recovery.checkpoint_interval

        for batch in pack_batches(grouping.groups, records_by_key, self._settings.pipeline.batch_size):
            if batch.index <= skip_through:
                continue

            result, empty = self._score_batch(batch)
            progress.apply(batch, result, empty)

            if batch.index % interval == 0:
                self._checkpoint(progress)

            if not result.can_continue:
                reason = result.stop_reason or (
                    f"batch {batch.index} failure rate {result.failure_rate:.1%} exceeds "
                    f"{self._settings.recovery.graceful_degradation_threshold:.1%}"
                )
                if self._settings.recovery.enable_partial_results and progress.successful_records > 0:
                    progress.degrade(f"processing halted: {reason}")
                    logger.warning("Processing halted, keeping partial results", batch_index=batch.index, reason=reason)
                    self._checkpoint(progress)
                    return
                self._abort(progress, reason)

    def _score_batch(self, batch: Batch) -> tuple[BatchResult, int]:
        """Analyze and persist one batch. Returns the result and the empty-record count."""
        content = [record for record in batch.records if record.text.strip()]
        empty = len(batch.records) - len(content)
        if empty:
            logger.debug("Skipping records without content", batch_index=batch.index, skipped=empty)

        def write_terms(record: Record, index: int) -> int:
            terms = self._scorer.analyze(record)

            def persist(conn: Connection) -> int:
                return CorpusWriter.write_document(conn, record.key, terms, batch.index)

            return self._store.transaction(persist, "write_document_terms")

        result = self._recovery.process_batch(
            content,
            write_terms,
            batch_id=f"batch-{batch.index}",
            process_name=self._process_name,
        )
        return result, empty

    def _finalize(self, progress: _RunProgress) -> int:
        """Write corpus statistics and keywords. Returns the corpus term count."""
        stats = self._writer.compute_corpus_stats(self._scorer)

        def persist_stats(conn: Connection) -> int:
            return CorpusWriter.write_corpus_stats(conn, stats)

        self._store.transaction(persist_stats, "write_corpus_stats")

        idf_by_term = {s.keyword: s.idf_score for s in stats}
        top_n = self._settings.pipeline.top_keywords
        chunks = list(self._writer.iter_document_keys(self._settings.pipeline.keyword_chunk_size))

        def write_chunk(keys: list[str], index: int) -> int:
            ranked = self._writer.rank_documents(keys, self._scorer, idf_by_term, top_n)

            def persist(conn: Connection) -> int:
                return CorpusWriter.write_keywords(conn, ranked)

            return self._store.transaction(persist, "write_keywords")

        result = self._recovery.process_batch(
            chunks,
            write_chunk,
            batch_id="keywords",
            process_name=self._process_name,
        )
        if result.failed or result.skipped or result.stopped_early:
            progress.degrade(
                f"keywords incomplete: {result.successful}/{result.total} chunks written"
                + (f" ({result.stop_reason})" if result.stop_reason else "")
            )
            logger.warning(
                "Keyword generation incomplete",
                chunks=result.total,
                written=result.successful,
                failed=result.failed,
                skipped=result.skipped,
            )
        return len(stats)

    # === Checkpoints ===

    def _checkpoint(self, progress: _RunProgress, *, failed_phase: RunPhase | None = None) -> Checkpoint:
        processing_stats: dict[str, Any] = {
            "phase": progress.phase.value,
            "batches_processed": progress.batches_processed,
            "grouping_degraded": progress.grouping_degraded,
            "store": self._store.stats().to_dict(),
        }
        if progress.grouping_stats is not None:
            processing_stats["grouping"] = progress.grouping_stats
        if progress.degraded_reason is not None:
            processing_stats["degraded_reason"] = progress.degraded_reason
        if progress.invalid_records:
            processing_stats["invalid_records"] = progress.invalid_records
        if progress.partial_batch is not None:
            processing_stats["partial_batch"] = progress.partial_batch
        if failed_phase is not None:
            processing_stats["failed_phase"] = failed_phase.value

        checkpoint = self._recovery.create_checkpoint(
            self._process_name,
            ProgressSnapshot(
                total_records=progress.total_records,
                processed_records=progress.processed_records,
                successful_records=progress.successful_records,
                failed_records=progress.failed_records,
                skipped_records=progress.skipped_records,
                current_batch=progress.current_batch,
                last_processed_key=progress.last_processed_key,
                processing_stats=processing_stats,
            ),
        )
        progress.last_checkpoint_id = checkpoint.checkpoint_id
        return checkpoint

    def _abort(self, progress: _RunProgress, reason: str) -> NoReturn:
        """Write the final checkpoint and raise PipelineAbortedError."""
        failed_phase = progress.phase
        progress.phase = RunPhase.ABORTED
        checkpoint = self._checkpoint(progress, failed_phase=failed_phase)
        report = self._recovery.generate_recovery_report(self._process_name)
        logger.error(
            "Corpus build aborted",
            phase=failed_phase.value,
            reason=reason,
            checkpoint_id=checkpoint.checkpoint_id,
            processed=progress.processed_records,
            failed=progress.failed_records,
        )
        logger.info(report)
        raise PipelineAbortedError(reason, checkpoint_id=checkpoint.checkpoint_id, report=report)
