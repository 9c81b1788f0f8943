# src/issuecorpus/core/recovery/schema.py
"""SQLAlchemy table definitions for the recovery state database.

Checkpoints and the error log live in their own database so that a
corrupted or locked issue store never takes recovery state down with it.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

recovery_metadata = MetaData()

recovery_checkpoints_table = Table(
    "recovery_checkpoints",
    recovery_metadata,
    # Monotonic sequence doubles as the checkpoint id
    Column("checkpoint_id", Integer, primary_key=True, autoincrement=True),
    Column("process_name", String(128), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("total_records", Integer, nullable=False),
    Column("processed_records", Integer, nullable=False),
    Column("successful_records", Integer, nullable=False),
    Column("failed_records", Integer, nullable=False),
    Column("skipped_records", Integer, nullable=False),
    Column("current_batch", Integer, nullable=False),
    Column("last_processed_key", String(64)),
    Column("processing_stats_json", Text, nullable=False),
    Column("can_resume", Boolean, nullable=False),
)

Index(
    "ix_recovery_checkpoints_process",
    recovery_checkpoints_table.c.process_name,
    recovery_checkpoints_table.c.created_at,
)

recovery_errors_table = Table(
    "recovery_errors",
    recovery_metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("error_id", String(64), nullable=False, unique=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("error_type", String(32), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("message", Text, nullable=False),
    Column("process_name", String(128), nullable=False),
    Column("retry_count", Integer, nullable=False),
    Column("record_key", String(64)),
    Column("batch_id", String(64)),
    Column("exception_type", String(128)),
    Column("stack_trace", Text),
    Column("context_json", Text, nullable=False),
)

Index(
    "ix_recovery_errors_process_time",
    recovery_errors_table.c.process_name,
    recovery_errors_table.c.timestamp,
)
