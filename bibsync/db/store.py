"""
Local store initialization and transaction management.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Union

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bibsync.db.models import Base

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class LocalStore:
    """
    Owns the SQLite engine and hands out unit-of-work sessions.

    Every multi-step mutation runs inside one ``transaction()`` block so a
    crash midway never leaves, say, an attachment without its item.
    """

    def __init__(self, db_path: Union[str, Path], echo: bool = False):
        """
        Initialize the local store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
            echo: Log emitted SQL (debugging only)
        """
        self.db_path = str(db_path)

        if self.db_path == MEMORY:
            # One shared connection, otherwise every session sees an empty database
            self.engine = create_engine(
                "sqlite://",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(f"sqlite:///{self.db_path}", echo=echo)

        # Enable foreign key constraints for SQLite
        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=True, expire_on_commit=False, bind=self.engine
        )
        logger.info(f"Initialized LocalStore at {self.db_path}")

    def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Yield a session that commits on success and rolls back on any error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_store(db_path: Union[str, Path]) -> LocalStore:
    """Open the store at ``db_path`` and make sure the schema exists."""
    store = LocalStore(db_path)
    store.create_tables()
    return store
