# tests/core/recovery/test_checkpoints.py
"""Tests for CheckpointManager persistence and resumability."""

import math

import pytest

from issuecorpus.contracts import ProgressSnapshot
from issuecorpus.core.clock import MockClock
from issuecorpus.core.config import RecoverySettings
from issuecorpus.core.recovery import CheckpointManager, RecoveryDB


@pytest.fixture
def manager(recovery_db: RecoveryDB, recovery_settings: RecoverySettings, clock: MockClock) -> CheckpointManager:
    return CheckpointManager(recovery_db, recovery_settings, clock=clock)


def _progress(**overrides: object) -> ProgressSnapshot:
    values: dict[str, object] = {
        "total_records": 10,
        "processed_records": 6,
        "successful_records": 5,
        "failed_records": 1,
        "skipped_records": 0,
        "current_batch": 2,
        "last_processed_key": "ISS-6",
        "processing_stats": {"phase": "corpus-building", "batches_processed": 2},
    }
    values.update(overrides)
    return ProgressSnapshot(**values)  # type: ignore[arg-type]


class TestCreateCheckpoint:
    def test_round_trip(self, manager: CheckpointManager, clock: MockClock) -> None:
        created = manager.create_checkpoint("corpus-build", _progress())

        loaded = manager.get_checkpoint(created.checkpoint_id)

        assert loaded == created
        assert loaded is not None
        assert loaded.created_at == clock.now()
        assert loaded.phase == "corpus-building"
        assert loaded.can_resume

    def test_nothing_processed_is_not_resumable(self, manager: CheckpointManager) -> None:
        checkpoint = manager.create_checkpoint("p", _progress(processed_records=0, successful_records=0, failed_records=0))

        assert not checkpoint.can_resume

    def test_too_many_failures_is_not_resumable(self, manager: CheckpointManager, recovery_settings: RecoverySettings) -> None:
        checkpoint = manager.create_checkpoint("p", _progress(failed_records=recovery_settings.max_errors_before_abort))

        assert not checkpoint.can_resume

    def test_nan_in_stats_is_rejected(self, manager: CheckpointManager) -> None:
        with pytest.raises(ValueError):
            manager.create_checkpoint("p", _progress(processing_stats={"ratio": math.nan}))

        assert manager.get_latest_checkpoint("p") is None


class TestLookup:
    def test_latest_is_highest_sequence(self, manager: CheckpointManager, clock: MockClock) -> None:
        manager.create_checkpoint("p", _progress(current_batch=1))
        clock.advance(5)
        newest = manager.create_checkpoint("p", _progress(current_batch=2))
        manager.create_checkpoint("q", _progress(current_batch=9))

        latest = manager.get_latest_checkpoint("p")

        assert latest is not None
        assert latest.checkpoint_id == newest.checkpoint_id
        assert latest.current_batch == 2

    def test_unknown_process_and_id(self, manager: CheckpointManager) -> None:
        assert manager.get_latest_checkpoint("missing") is None
        assert manager.get_checkpoint(12345) is None

    def test_listing_and_deleting(self, manager: CheckpointManager) -> None:
        first = manager.create_checkpoint("p", _progress())
        second = manager.create_checkpoint("p", _progress())
        manager.create_checkpoint("q", _progress())

        assert [c.checkpoint_id for c in manager.get_checkpoints("p")] == [first.checkpoint_id, second.checkpoint_id]
        assert len(manager.get_checkpoints()) == 3
        assert manager.delete_checkpoints("p") == 2
        assert manager.get_checkpoints("p") == []
