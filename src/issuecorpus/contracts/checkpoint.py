"""Checkpoint and resume domain contracts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Progress counters handed to the CheckpointManager.

    ``processing_stats`` is free-form but must be JSON serializable; the
    orchestrator stores its phase, grouping stats and store stats there.
    """

    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    skipped_records: int = 0
    current_batch: int = 0
    last_processed_key: str | None = None
    processing_stats: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Checkpoint:
    """Persisted progress snapshot for one process.

    Immutable once written. ``checkpoint_id`` is a monotonic sequence
    assigned by the recovery database.
    """

    checkpoint_id: int
    process_name: str
    created_at: datetime
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    current_batch: int
    can_resume: bool
    last_processed_key: str | None = None
    processing_stats: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.process_name:
            raise ValueError("process_name is required and cannot be empty")
        if self.processed_records < 0 or self.current_batch < 0:
            raise ValueError("Checkpoint counters must be non-negative")

    @property
    def phase(self) -> str | None:
        phase = self.processing_stats.get("phase")
        return str(phase) if phase is not None else None


@dataclass(frozen=True, slots=True)
class ContinueDecision:
    """Answer of RecoveryManager.should_continue_processing().

    ``reason`` is set exactly when processing must stop.
    """

    can_continue: bool
    reason: str | None = None
    recent_errors: int = 0

    def __post_init__(self) -> None:
        if self.can_continue and self.reason is not None:
            raise ValueError("can_continue=True should not have a reason")
        if not self.can_continue and self.reason is None:
            raise ValueError("can_continue=False must have a reason explaining why")

    def __bool__(self) -> bool:
        return self.can_continue
