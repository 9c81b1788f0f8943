# src/issuecorpus/core/config.py
"""
Configuration schema and loading for issuecorpus runs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and threaded through
constructors explicitly.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from issuecorpus.contracts.enums import ScorerBackend

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class StoreSettings(BaseModel):
    """ResilientStore configuration: timeouts, retry policy and SQLite pragmas."""

    model_config = {"frozen": True}

    # NOTE: Using str instead of Path - Path mangles DSNs like "sqlite:///./x.db"
    url: str = Field(
        default="sqlite:///./data/issues.db",
        description="Full SQLAlchemy URL of the issue store",
    )
    query_timeout_ms: int = Field(default=30_000, gt=0, description="Deadline for a single query")
    transaction_timeout_ms: int = Field(default=60_000, gt=0, description="Deadline for a transaction")
    retry_attempts: int = Field(default=3, gt=0, description="Total attempts for transient failures")
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Backoff before the first retry")
    retry_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff base")
    max_retry_delay_seconds: float = Field(default=10.0, gt=0, description="Backoff ceiling")
    busy_timeout_ms: int = Field(default=30_000, ge=0, description="SQLite busy_timeout pragma")
    slow_query_threshold_ms: float = Field(default=1_000.0, gt=0, description="Average latency above which health reports an issue")
    health_check_timeout_ms: int = Field(default=5_000, gt=0, description="Deadline for the health probe")
    progress_handler_interval: int = Field(
        default=1_000,
        gt=0,
        description="SQLite VM instructions between deadline checks inside a running statement",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")

    @model_validator(mode="after")
    def validate_timeouts(self) -> "StoreSettings":
        if self.transaction_timeout_ms < self.query_timeout_ms:
            raise ValueError("transaction_timeout_ms must be >= query_timeout_ms")
        return self


class SafeguardSettings(BaseModel):
    """Bounds on the connected-component search.

    Every bound is independently tunable. Hitting any of them is lossy
    (groups get cut short) but never corrupts the partition.
    """

    model_config = {"frozen": True}

    max_iterations: int = Field(default=500_000, gt=0, description="Stack pops per component")
    max_group_size: int = Field(default=50_000, gt=0, description="Members per component")
    max_stack_size: int = Field(default=10_000, gt=1, description="Pending keys per component")
    max_component_seconds: float = Field(default=180.0, gt=0, description="Wall-clock box per component")
    max_total_seconds: float = Field(default=300.0, gt=0, description="Wall-clock box for the whole pass")
    cycle_detection: bool = Field(default=True, description="Never push a key already on the stack")
    preemptive_skip_factor: float = Field(
        default=2.0,
        gt=0,
        description="Seed becomes a singleton when its value fan-out exceeds max_group_size * factor",
    )
    time_check_interval: int = Field(default=256, gt=0, description="Iterations between clock reads")


class RelationSettings(BaseModel):
    """Sanitization bounds for relation field values."""

    model_config = {"frozen": True}

    max_field_length: int = Field(default=50_000, gt=0, description="Raw field is truncated to this length")
    max_values_per_field: int = Field(default=1_000, gt=0, description="Values kept per field")
    min_value_length: int = Field(default=1, gt=0, description="Shorter values are dropped")
    max_value_length: int = Field(default=2_000, gt=0, description="Longer values are truncated")

    @model_validator(mode="after")
    def validate_lengths(self) -> "RelationSettings":
        if self.min_value_length > self.max_value_length:
            raise ValueError("min_value_length must be <= max_value_length")
        return self


class RecoverySettings(BaseModel):
    """Error recovery, checkpointing and graceful degradation."""

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, ge=0, description="Retries per batch item after the first attempt")
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Base delay of the per-item backoff")
    skip_corrupted_records: bool = Field(default=True, description="Skip items that exhaust their retries")
    enable_partial_results: bool = Field(default=True, description="Finish a halted run with what succeeded")
    checkpoint_interval: int = Field(default=5, gt=0, description="Batches between checkpoints")
    max_errors_before_abort: int = Field(default=100, gt=0, description="Errors per window before stopping")
    graceful_degradation_threshold: float = Field(
        default=0.1,
        gt=0,
        le=1.0,
        description="Batch failure ratio above which processing stops",
    )
    error_window_seconds: float = Field(default=300.0, gt=0, description="Window of should_continue_processing")
    memory_error_limit: int = Field(default=3, ge=0, description="Memory errors tolerated per window")
    error_log_limit: int = Field(default=1_000, gt=0, description="Entries kept in the error log")
    state_url: str = Field(
        default="sqlite:///./state/recovery.db",
        description="SQLAlchemy URL of the recovery state database",
    )


class ScorerSettings(BaseModel):
    """Downstream TF/IDF scorer configuration."""

    model_config = {"frozen": True}

    backend: ScorerBackend = Field(default=ScorerBackend.STANDARD, description="Scorer implementation")
    min_term_length: int = Field(default=2, gt=0, description="Shorter tokens are dropped")
    max_term_length: int = Field(default=30, gt=0, description="Longer tokens are dropped")
    min_document_frequency: int = Field(default=2, gt=0, le=1_000, description="Corpus terms must appear in this many documents")
    max_document_frequency: float = Field(
        default=0.7,
        gt=0,
        le=1.0,
        description="Corpus terms must appear in at most this ratio of documents",
    )
    max_text_length: int = Field(default=50_000, gt=0, description="Document text is truncated to this length")


class PipelineSettings(BaseModel):
    """Orchestrator configuration."""

    model_config = {"frozen": True}

    process_name: str = Field(default="corpus-build", min_length=1, description="Checkpoint and error-log key")
    batch_size: int = Field(default=1_000, gt=0, description="Target records per batch")
    load_chunk_size: int = Field(default=10_000, gt=0, description="Records per page while loading")
    top_keywords: int = Field(default=15, gt=0, le=100, description="Keywords persisted per document")
    keyword_chunk_size: int = Field(default=1_000, gt=0, description="Documents per keyword write")


class LoggingSettings(BaseModel):
    """structlog configuration."""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Render JSON lines instead of console output")


class CorpusSettings(BaseModel):
    """Top-level issuecorpus configuration.

    This is the single source of truth for a corpus build.
    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    store: StoreSettings = Field(default_factory=StoreSettings)
    safeguards: SafeguardSettings = Field(default_factory=SafeguardSettings)
    relations: RelationSettings = Field(default_factory=RelationSettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    scorer: ScorerSettings = Field(default_factory=ScorerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path) -> CorpusSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (ISSUECORPUS_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: ISSUECORPUS_STORE__URL for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated CorpusSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="ISSUECORPUS",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys (env overrides nested ones too)
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    return CorpusSettings(**raw_config)
