# tests/core/store/test_store_database.py
"""Tests for StoreDatabase connection management."""

from pathlib import Path

import pytest
from sqlalchemy import inspect, text

from issuecorpus.core.store import StoreDatabase


class TestStoreDatabase:
    def test_sqlite_pragmas_applied(self, tmp_path: Path) -> None:
        with StoreDatabase(f"sqlite:///{tmp_path}/issues.db", busy_timeout_ms=1234) as db:
            with db.engine.connect() as conn:
                assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
                assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
                assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 1234

    def test_missing_source_tables(self, tmp_path: Path) -> None:
        with StoreDatabase(f"sqlite:///{tmp_path}/issues.db") as db:
            assert db.missing_source_tables() == ["issues", "comments"]

            db.ensure_source_tables()

            assert db.missing_source_tables() == []

    def test_ensure_corpus_tables(self, tmp_path: Path) -> None:
        with StoreDatabase(f"sqlite:///{tmp_path}/issues.db") as db:
            db.ensure_corpus_tables()

            tables = set(inspect(db.engine).get_table_names())
        assert {"document_terms", "corpus_stats", "keywords"} <= tables

    def test_in_memory_has_every_table(self) -> None:
        db = StoreDatabase.in_memory()

        assert db.missing_source_tables() == []
        assert "keywords" in inspect(db.engine).get_table_names()
        db.close()

    def test_closed_database_raises(self) -> None:
        db = StoreDatabase.in_memory()
        db.close()

        with pytest.raises(RuntimeError, match="not initialized"):
            _ = db.engine
