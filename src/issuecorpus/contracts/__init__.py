"""Shared contracts for issuecorpus.

This package contains the domain types that cross subsystem boundaries:
records and batches, grouping results, checkpoints, error records, store
statistics and run results. Everything here is import-safe: no module
depends on core/ or engine/.
"""

from issuecorpus.contracts.checkpoint import Checkpoint, ContinueDecision, ProgressSnapshot
from issuecorpus.contracts.enums import (
    ErrorSeverity,
    ErrorType,
    RunPhase,
    RunStatus,
    ScorerBackend,
    StoreFailureKind,
)
from issuecorpus.contracts.errors import (
    ErrorClassification,
    ErrorRecord,
    PipelineAbortedError,
    RetryExhaustedError,
    SourceValidationError,
    StoreError,
    StoreTimeoutError,
)
from issuecorpus.contracts.grouping import GroupingResult, GroupingStats
from issuecorpus.contracts.records import RELATION_FIELDS, Batch, Group, Page, Record
from issuecorpus.contracts.results import (
    BatchItemError,
    BatchResult,
    CorpusTermStats,
    ErrorAnalysis,
    KeywordScore,
    RunResult,
    TermVector,
)
from issuecorpus.contracts.store import HealthReport, StoreStats

__all__ = [
    "RELATION_FIELDS",
    "Batch",
    "BatchItemError",
    "BatchResult",
    "Checkpoint",
    "ContinueDecision",
    "CorpusTermStats",
    "ErrorAnalysis",
    "ErrorClassification",
    "ErrorRecord",
    "ErrorSeverity",
    "ErrorType",
    "Group",
    "GroupingResult",
    "GroupingStats",
    "HealthReport",
    "KeywordScore",
    "Page",
    "PipelineAbortedError",
    "ProgressSnapshot",
    "Record",
    "RetryExhaustedError",
    "RunPhase",
    "RunResult",
    "RunStatus",
    "ScorerBackend",
    "SourceValidationError",
    "StoreError",
    "StoreFailureKind",
    "StoreStats",
    "StoreTimeoutError",
    "TermVector",
]
