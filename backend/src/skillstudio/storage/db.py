"""Database connection and session management."""

from contextlib import contextmanager
from typing import Any, Generator, Sequence

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from skillstudio.logging_config import get_logger
from skillstudio.settings import settings
from skillstudio.storage.models import Base

logger = get_logger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url

        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            # An in-memory database only exists for the connection that made it
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(
            self.database_url,
            echo=settings.env == "development" and settings.log_level == "DEBUG",
            **engine_kwargs,
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", dialect=self.engine.dialect.name)

    def create_tables(self) -> None:
        """Create all tables in the database."""
        # Make sure every model is registered on the metadata
        import skillstudio.auth.models  # noqa: F401
        import skillstudio.referral.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def insert_ignoring_conflicts(
    session: Session,
    model: type[Base],
    values: dict[str, Any],
    conflict_columns: Sequence[str] | None = None,
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING.

    Callers fetch the surviving row afterwards; a lost race is not an error.

    Args:
        session: Open session (the insert joins its transaction)
        model: Mapped class to insert into
        values: Column values
        conflict_columns: Unique columns to arbitrate on; None means any
            unique constraint

    Returns:
        True if a row was inserted, False if a conflicting row already existed
    """
    dialect = session.get_bind().dialect.name
    insert = _CONFLICT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"Conflict-aware insert not supported for {dialect}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(
        index_elements=list(conflict_columns) if conflict_columns else None,
    )
    result = session.execute(stmt)
    return result.rowcount > 0


# Global database instance
db = Database()
