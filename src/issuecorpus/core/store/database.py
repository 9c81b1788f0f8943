# src/issuecorpus/core/store/database.py
"""Database connection management for the issue store.

Handles SQLite (the production backend) and any other SQLAlchemy URL.
SQLite connections get WAL, foreign keys and a busy timeout so that lock
contention surfaces as a retryable "database is locked" error instead of
an immediate failure.
"""

from typing import Self

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from issuecorpus.core.store.schema import SOURCE_TABLES, corpus_metadata, source_metadata


class StoreDatabase:
    """Issue store connection manager."""

    def __init__(
        self,
        connection_string: str,
        *,
        busy_timeout_ms: int = 30_000,
        echo: bool = False,
    ) -> None:
        """Initialize database connection.

        Args:
            connection_string: SQLAlchemy connection string
                e.g., "sqlite:///./data/issues.db"
            busy_timeout_ms: SQLite busy_timeout pragma
            echo: Echo SQL statements
        """
        self.connection_string = connection_string
        self._busy_timeout_ms = busy_timeout_ms
        self._engine: Engine | None = create_engine(connection_string, echo=echo)
        if self.is_sqlite:
            StoreDatabase._configure_sqlite(self._engine, busy_timeout_ms)

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.startswith("sqlite")

    @staticmethod
    def _configure_sqlite(engine: Engine, busy_timeout_ms: int) -> None:
        """Configure SQLite engine for reliability.

        Registers a connection event hook that sets:
        - PRAGMA journal_mode=WAL (readers do not block the writer)
        - PRAGMA foreign_keys=ON (referential integrity)
        - PRAGMA busy_timeout (contention tolerance)

        Args:
            engine: SQLAlchemy Engine to configure
            busy_timeout_ms: Milliseconds SQLite waits on a lock before failing
        """

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]  # DBAPI connection typed as object
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.close()

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized")
        return self._engine

    def ensure_source_tables(self) -> None:
        """Create the upstream issues/comments tables if they don't exist.

        The ingestion loader owns these tables; this exists for fresh stores
        and tests.
        """
        source_metadata.create_all(self.engine)

    def ensure_corpus_tables(self) -> None:
        """Create the corpus output tables if they don't exist."""
        corpus_metadata.create_all(self.engine)

    def missing_source_tables(self) -> list[str]:
        """Return the upstream tables that are absent, in declaration order."""
        existing = set(inspect(self.engine).get_table_names())
        return [name for name in SOURCE_TABLES if name not in existing]

    def close(self) -> None:
        """Close database connection."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    @classmethod
    def in_memory(cls) -> Self:
        """Create an in-memory SQLite database for testing.

        A single shared connection backs every checkout so all callers see
        the same database. Source and corpus tables are created.

        Returns:
            StoreDatabase instance with in-memory SQLite
        """
        engine = create_engine(
            "sqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        instance = cls.__new__(cls)
        instance.connection_string = "sqlite:///:memory:"
        instance._busy_timeout_ms = 0
        instance._engine = engine
        source_metadata.create_all(engine)
        corpus_metadata.create_all(engine)
        return instance
