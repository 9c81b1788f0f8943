# src/issuecorpus/core/recovery/database.py
"""Connection management for the recovery state database."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Self

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from issuecorpus.core.recovery.schema import recovery_metadata
from issuecorpus.core.store.database import StoreDatabase


class RecoveryDB:
    """Recovery state database connection manager.

    Tables are created on construction. For file-backed SQLite URLs the
    parent directory is created as well.
    """

    def __init__(self, connection_string: str, *, busy_timeout_ms: int = 5_000) -> None:
        """Initialize database connection.

        Args:
            connection_string: SQLAlchemy connection string
                e.g., "sqlite:///./state/recovery.db"
            busy_timeout_ms: SQLite busy_timeout pragma
        """
        self.connection_string = connection_string
        if connection_string.startswith("sqlite"):
            database = make_url(connection_string).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        self._engine: Engine | None = create_engine(connection_string, echo=False)
        if connection_string.startswith("sqlite"):
            StoreDatabase._configure_sqlite(self._engine, busy_timeout_ms)
        recovery_metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized")
        return self._engine

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
        """Create an in-memory recovery database for testing."""
        engine = create_engine(
            "sqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        recovery_metadata.create_all(engine)
        instance = cls.__new__(cls)
        instance.connection_string = "sqlite:///:memory:"
        instance._engine = engine
        return instance


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime read back from SQLite."""
    # SQLite drops tzinfo for DateTime(timezone=True)
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
