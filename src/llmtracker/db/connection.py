"""
Database connection management for LLM Tracker.

Provides an explicit ``Database`` handle owning the engine and session
factory, with session context managers and schema initialization. There is
no module-level engine; callers create a ``Database`` and pass it on.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from llmtracker.config import settings
from llmtracker.models.db import Base

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_connection, connection_record):  # pragma: no cover - driver hook
    """Enable foreign keys and WAL for every new SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class Database:
    """
    Owns the SQLAlchemy engine and session factory for one database file.

    Example:
        >>> database = Database("sqlite:////tmp/llm-tracker.db")
        >>> database.init_db()
        >>> with database.session() as session:
        >>>     session.execute(text("SELECT 1"))
        >>> database.dispose()
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = url or settings.database_url
        self._ensure_parent_dir()

        self.engine: Engine = create_engine(
            self.url,
            echo=settings.database_echo if echo is None else echo,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(self.engine, "connect", _set_sqlite_pragmas)

        # expire_on_commit=False so returned rows stay readable after commit
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def _ensure_parent_dir(self) -> None:
        prefix = "sqlite:///"
        if self.url.startswith(prefix) and self.url != "sqlite:///:memory:":
            Path(self.url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)

    def get_session(self) -> Session:
        """
        Get a new database session.

        The caller is responsible for commit/rollback/close.
        """
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for a unit of work.

        Commits on success, rolls back on any exception, always closes.

        Yields:
            Session: A SQLAlchemy session
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """
        Create all tables if they do not exist.

        Note:
            Alembic migrations create the same schema for managed upgrades:
            `alembic upgrade head`
        """
        Base.metadata.create_all(bind=self.engine)
        logger.debug(f"Schema initialized at {self.url}")

    def check_connection(self) -> bool:
        """
        Check if the database connection is working.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()
