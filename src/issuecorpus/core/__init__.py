# src/issuecorpus/core/__init__.py
"""Core infrastructure: configuration, logging, store, grouping and recovery."""

from issuecorpus.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from issuecorpus.core.config import (
    CorpusSettings,
    LoggingSettings,
    PipelineSettings,
    RecoverySettings,
    RelationSettings,
    SafeguardSettings,
    ScorerSettings,
    StoreSettings,
    load_settings,
)
from issuecorpus.core.grouping import GroupingEngine
from issuecorpus.core.logging import configure_from_settings, configure_logging, get_logger, run_context
from issuecorpus.core.recovery import RecoveryDB, RecoveryManager
from issuecorpus.core.store import ResilientStore, StoreDatabase

__all__ = [
    "DEFAULT_CLOCK",
    "Clock",
    "CorpusSettings",
    "GroupingEngine",
    "LoggingSettings",
    "MockClock",
    "PipelineSettings",
    "RecoveryDB",
    "RecoveryManager",
    "RecoverySettings",
    "RelationSettings",
    "ResilientStore",
    "SafeguardSettings",
    "ScorerSettings",
    "StoreDatabase",
    "StoreSettings",
    "SystemClock",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "load_settings",
    "run_context",
]
