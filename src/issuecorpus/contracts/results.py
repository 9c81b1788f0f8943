"""Operation outcome and result contracts."""

from dataclasses import dataclass, field
from typing import Any

from issuecorpus.contracts.enums import RunStatus

# Term -> frequency for one document, as produced by a Scorer.
type TermVector = dict[str, float]


@dataclass(frozen=True, slots=True)
class KeywordScore:
    """One ranked keyword for a document."""

    keyword: str
    tfidf_score: float
    tf_score: float
    idf_score: float


@dataclass(frozen=True, slots=True)
class CorpusTermStats:
    """Document frequency and IDF of one corpus term."""

    keyword: str
    document_frequency: int
    total_documents: int
    idf_score: float


@dataclass(frozen=True, slots=True)
class BatchItemError:
    """Final failure of one item after its retries were used up."""

    index: int
    message: str
    error_id: str
    skipped: bool


@dataclass(frozen=True)
class BatchResult:
    """Outcome of RecoveryManager.process_batch().

    ``attempted`` can be lower than ``total`` when processing stopped early;
    in that case ``can_continue`` is False and ``stop_reason`` says why.
    ``results`` holds the worker return values of successful items in order.
    """

    batch_id: str
    total: int
    attempted: int
    successful: int
    failed: int
    skipped: int
    can_continue: bool
    results: tuple[Any, ...] = ()
    errors: tuple[BatchItemError, ...] = ()
    stop_reason: str | None = None

    def __post_init__(self) -> None:
        if self.successful + self.failed + self.skipped != self.attempted:
            raise ValueError(
                f"successful + failed + skipped ({self.successful + self.failed + self.skipped}) "
                f"must equal attempted ({self.attempted})"
            )
        if self.attempted > self.total:
            raise ValueError(f"attempted ({self.attempted}) cannot exceed total ({self.total})")

    @property
    def stopped_early(self) -> bool:
        return self.attempted < self.total

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0


@dataclass(frozen=True, slots=True)
class ErrorAnalysis:
    """Aggregated view over the recovery error log."""

    total_errors: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    recent_errors: int = 0
    top_messages: tuple[tuple[str, int], ...] = ()
    problem_records: tuple[tuple[str, int], ...] = ()


@dataclass(frozen=True)
class RunResult:
    """Summary of a CorpusPipeline run."""

    status: RunStatus
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    batches_processed: int
    grouping_degraded: bool
    keywords_written: int
    terms_written: int
    last_checkpoint_id: int | None
    report: str
    resumed_from: int | None = None
    degraded_reason: str | None = None

    def __post_init__(self) -> None:
        if self.status == RunStatus.DEGRADED and self.degraded_reason is None:
            raise ValueError("A degraded run must carry a degraded_reason")
