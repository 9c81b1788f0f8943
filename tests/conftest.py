# tests/conftest.py
"""Shared test fixtures.

Every time-dependent component takes a Clock; tests hand it a MockClock so
backoff sleeps, deadlines and error windows are deterministic and no test
ever blocks.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings
from sqlalchemy import insert

from issuecorpus.core.clock import MockClock
from issuecorpus.core.config import CorpusSettings, RecoverySettings, StoreSettings
from issuecorpus.core.recovery import RecoveryDB, RecoveryManager
from issuecorpus.core.store import ResilientStore, StoreDatabase
from issuecorpus.core.store.schema import comments_table, issues_table

type IssueSeeder = Callable[..., None]


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def store_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path}/issues.db"


@pytest.fixture
def state_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path}/state/recovery.db"


@pytest.fixture
def store_settings(store_url: str) -> StoreSettings:
    """Defaults except for the URL: 3 attempts, 1s base delay, doubling."""
    return StoreSettings(url=store_url)


@pytest.fixture
def store_db(store_url: str) -> Iterator[StoreDatabase]:
    """File-backed store with the upstream and corpus tables created."""
    db = StoreDatabase(store_url, busy_timeout_ms=1_000)
    db.ensure_source_tables()
    db.ensure_corpus_tables()
    yield db
    db.close()


@pytest.fixture
def store(store_db: StoreDatabase, store_settings: StoreSettings, clock: MockClock) -> ResilientStore:
    return ResilientStore(store_db, store_settings, clock=clock)


@pytest.fixture
def recovery_db(state_url: str) -> Iterator[RecoveryDB]:
    db = RecoveryDB(state_url, busy_timeout_ms=1_000)
    yield db
    db.close()


@pytest.fixture
def recovery_settings(state_url: str) -> RecoverySettings:
    return RecoverySettings(state_url=state_url, retry_delay_seconds=0.5)


@pytest.fixture
def recovery(recovery_db: RecoveryDB, recovery_settings: RecoverySettings, clock: MockClock) -> RecoveryManager:
    return RecoveryManager(recovery_db, recovery_settings, clock=clock)


@pytest.fixture
def corpus_settings(store_url: str, state_url: str) -> CorpusSettings:
    """Small batches and chunks so multi-batch behaviour shows up on tiny data."""
    return CorpusSettings(
        store={"url": store_url, "retry_attempts": 2, "retry_delay_seconds": 0.1},
        recovery={"state_url": state_url, "retry_delay_seconds": 0.1, "checkpoint_interval": 1},
        scorer={"min_document_frequency": 1, "max_document_frequency": 1.0},
        pipeline={"batch_size": 3, "load_chunk_size": 4, "top_keywords": 3, "keyword_chunk_size": 2},
    )


@pytest.fixture
def seed_issues(store_db: StoreDatabase) -> IssueSeeder:
    """Insert upstream issues (and optional comments) into the store.

    Each issue is a mapping with at least ``issue_key``; a ``comments`` list
    of bodies is split out into the comments table.
    """

    def seed(issues: list[Mapping[str, Any]]) -> None:
        issue_rows: list[dict[str, Any]] = []
        comment_rows: list[dict[str, Any]] = []
        for issue in issues:
            row = {column.name: None for column in issues_table.columns}
            row.update({k: v for k, v in issue.items() if k != "comments"})
            issue_rows.append(row)
            for n, body in enumerate(issue.get("comments", ())):
                comment_rows.append(
                    {
                        "comment_id": f"{issue['issue_key']}-c{n}",
                        "issue_key": issue["issue_key"],
                        "author": "tester",
                        "created_at": "2024-01-01T00:00:00Z",
                        "body": body,
                    }
                )
        with store_db.engine.begin() as conn:
            if issue_rows:
                conn.execute(insert(issues_table), issue_rows)
            if comment_rows:
                conn.execute(insert(comments_table), comment_rows)

    return seed


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
