# src/issuecorpus/core/recovery/checkpoints.py
"""CheckpointManager for creating and loading progress checkpoints."""

import json
from typing import Any

from sqlalchemy import Row, asc, delete, desc, select

from issuecorpus.contracts.checkpoint import Checkpoint, ProgressSnapshot
from issuecorpus.core.clock import DEFAULT_CLOCK, Clock
from issuecorpus.core.config import RecoverySettings
from issuecorpus.core.recovery.database import RecoveryDB, as_utc
from issuecorpus.core.recovery.schema import recovery_checkpoints_table


def _row_to_checkpoint(row: Row[Any]) -> Checkpoint:
    return Checkpoint(
        checkpoint_id=row.checkpoint_id,
        process_name=row.process_name,
        created_at=as_utc(row.created_at),
        total_records=row.total_records,
        processed_records=row.processed_records,
        successful_records=row.successful_records,
        failed_records=row.failed_records,
        skipped_records=row.skipped_records,
        current_batch=row.current_batch,
        can_resume=row.can_resume,
        last_processed_key=row.last_processed_key,
        processing_stats=json.loads(row.processing_stats_json),
    )


class CheckpointManager:
    """Manages checkpoint creation and retrieval.

    Checkpoints capture run progress at batch boundaries, enabling resume
    after a crash or an abort. Each checkpoint records the counters, the
    last completed batch index and the last processed record key, plus a
    free-form JSON stats payload.
    """

    def __init__(self, db: RecoveryDB, settings: RecoverySettings, *, clock: Clock = DEFAULT_CLOCK) -> None:
        """Initialize with the recovery database.

        Args:
            db: RecoveryDB instance for storage
            settings: Supplies the abort threshold for can_resume
            clock: Source of created_at timestamps
        """
        self._db = db
        self._settings = settings
        self._clock = clock

    def create_checkpoint(self, process_name: str, progress: ProgressSnapshot) -> Checkpoint:
        """Persist a progress snapshot.

        ``can_resume`` is true when at least one record was processed and
        the failure count is below ``max_errors_before_abort``.

        Args:
            process_name: Checkpoint key
            progress: Counters and stats to persist

        Returns:
            The created Checkpoint
        """
        created_at = self._clock.now()
        can_resume = progress.processed_records > 0 and progress.failed_records < self._settings.max_errors_before_abort
        # allow_nan=False rejects NaN/Infinity in stats payloads
        stats_json = json.dumps(progress.processing_stats, default=str, allow_nan=False)

        with self._db.engine.begin() as conn:
            result = conn.execute(
                recovery_checkpoints_table.insert().values(
                    process_name=process_name,
                    created_at=created_at,
                    total_records=progress.total_records,
                    processed_records=progress.processed_records,
                    successful_records=progress.successful_records,
                    failed_records=progress.failed_records,
                    skipped_records=progress.skipped_records,
                    current_batch=progress.current_batch,
                    last_processed_key=progress.last_processed_key,
                    processing_stats_json=stats_json,
                    can_resume=can_resume,
                )
            )
            checkpoint_id = result.inserted_primary_key[0]

        return Checkpoint(
            checkpoint_id=checkpoint_id,
            process_name=process_name,
            created_at=created_at,
            total_records=progress.total_records,
            processed_records=progress.processed_records,
            successful_records=progress.successful_records,
            failed_records=progress.failed_records,
            skipped_records=progress.skipped_records,
            current_batch=progress.current_batch,
            can_resume=can_resume,
            last_processed_key=progress.last_processed_key,
            processing_stats=json.loads(stats_json),
        )

    def get_latest_checkpoint(self, process_name: str) -> Checkpoint | None:
        """Get the most recent checkpoint for a process, or None."""
        with self._db.engine.connect() as conn:
            row = conn.execute(
                select(recovery_checkpoints_table)
                .where(recovery_checkpoints_table.c.process_name == process_name)
                .order_by(desc(recovery_checkpoints_table.c.checkpoint_id))
                .limit(1)
            ).fetchone()
        return _row_to_checkpoint(row) if row is not None else None

    def get_checkpoint(self, checkpoint_id: int) -> Checkpoint | None:
        with self._db.engine.connect() as conn:
            row = conn.execute(
                select(recovery_checkpoints_table).where(recovery_checkpoints_table.c.checkpoint_id == checkpoint_id)
            ).fetchone()
        return _row_to_checkpoint(row) if row is not None else None

    def get_checkpoints(self, process_name: str | None = None) -> list[Checkpoint]:
        """Get checkpoints ordered by sequence, optionally for one process."""
        stmt = select(recovery_checkpoints_table).order_by(asc(recovery_checkpoints_table.c.checkpoint_id))
        if process_name is not None:
            stmt = stmt.where(recovery_checkpoints_table.c.process_name == process_name)
        with self._db.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_checkpoint(r) for r in rows]

    def delete_checkpoints(self, process_name: str) -> int:
        """Delete all checkpoints of a process.

        Returns:
            Number of checkpoints deleted
        """
        with self._db.engine.begin() as conn:
            result = conn.execute(
                delete(recovery_checkpoints_table).where(recovery_checkpoints_table.c.process_name == process_name)
            )
        return result.rowcount
