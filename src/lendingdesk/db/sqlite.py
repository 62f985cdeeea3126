"""Database connection and session management.

Every session is one transaction: committed when the ``with`` block exits
normally, rolled back when anything inside it raises. On SQLite each
transaction starts with ``BEGIN IMMEDIATE`` so concurrent writers queue on
the database write lock instead of failing to upgrade a read lock.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class Database:
    """Database connection and transaction scope provider."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        url: Optional[str] = None,
        busy_timeout: Optional[float] = None,
    ):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     LENDINGDESK_DB_PATH env var or default location.
            url: Full SQLAlchemy URL. Takes precedence over db_path.
            busy_timeout: Seconds a SQLite connection waits for the write
                          lock before giving up.
        """
        if busy_timeout is None:
            busy_timeout = float(os.environ.get("LENDINGDESK_BUSY_TIMEOUT", "30.0"))

        if url:
            self.db_path = None
            self._is_memory = False
            self.url = url
        else:
            if db_path is None:
                db_path = os.environ.get(
                    "LENDINGDESK_DB_PATH",
                    str(Path.home() / ".lendingdesk" / "lending.db"),
                )
            self.db_path = Path(db_path)
            self._is_memory = str(db_path) == ":memory:"
            self.url = "sqlite:///:memory:" if self._is_memory else f"sqlite:///{self.db_path}"
            if not self._is_memory:
                self._ensure_directory()

        self.is_sqlite = self.url.startswith("sqlite")

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                self.url,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
                poolclass=StaticPool,
            )
        elif self.is_sqlite:
            self.engine = create_engine(
                self.url,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
        else:
            self.engine = create_engine(self.url, echo=False, pool_pre_ping=True)

        if self.is_sqlite:
            _install_sqlite_transaction_hooks(self.engine, wal=not self._is_memory)

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        logger.debug("Database engine created for %s", self.engine.url)

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _install_sqlite_transaction_hooks(engine: Engine, wal: bool) -> None:
    """Take over transaction control from the sqlite3 driver.

    pysqlite defers BEGIN until the first write, which lets two transactions
    read the same counter and then collide on the upgrade to a write lock.
    Emitting BEGIN IMMEDIATE up front makes the write lock part of begin.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # disable pysqlite's own BEGIN handling
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        from ..config import get_config

        config = get_config()
        if db_path is not None:
            _db = Database(db_path, busy_timeout=config.busy_timeout)
        else:
            _db = Database(
                str(config.db_path),
                url=config.database_url,
                busy_timeout=config.busy_timeout,
            )
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    if _db is not None:
        _db.dispose()
    _db = None
