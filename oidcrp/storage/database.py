"""SQLite database integration for persistent state storage."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from sqlalchemy import Engine, create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from oidcrp.storage.models import Base, StateRecord
from oidcrp.storage.state_store import DEFAULT_PREFIX

logger = logging.getLogger(__name__)

# Default database location
DEFAULT_DB_DIR = Path.home() / ".oidcrp"
DEFAULT_DB_PATH = DEFAULT_DB_DIR / "state.db"

# Environment variable names
ENV_DB_PATH = "OIDCRP_DB_PATH"


def get_database_path() -> Path:
    """Get database path from environment or default.

    Returns:
        Path to the SQLite database file.
    """
    db_path = os.environ.get(ENV_DB_PATH)
    if db_path:
        return Path(db_path)
    return DEFAULT_DB_PATH


def create_database_engine(db_path: Path | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine for a SQLite file.

    Args:
        db_path: Path to the database file. Defaults to configured path.
        echo: Whether to echo SQL statements (for debugging).
    """
    if db_path is None:
        db_path = get_database_path()

    db_path.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(f"sqlite:///{db_path}", echo=echo, pool_pre_ping=True)


class Database:
    """Database manager with a lazily created engine and session factory."""

    def __init__(self, db_path: Path | None = None, echo: bool = False) -> None:
        """Initialize database manager.

        Args:
            db_path: Path to the database file.
            echo: Whether to echo SQL statements.
        """
        self._db_path = db_path or get_database_path()
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._echo = echo

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_database_engine(self._db_path, self._echo)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    def get_session(self) -> Session:
        return self.session_factory()

    def init_db(self) -> None:
        """Create all tables defined in the models."""
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


class DatabaseStateStore:
    """State store persisted in the ``oidc_states`` table.

    Session work runs in a worker thread via :func:`asyncio.to_thread` so the
    event loop is not blocked on SQLite I/O.
    """

    def __init__(self, database: Database, prefix: str = DEFAULT_PREFIX) -> None:
        self._db = database
        self._prefix = prefix
        self._db.init_db()

    @property
    def database(self) -> Database:
        return self._db

    async def set(self, key: str, value: str) -> None:
        logger.debug(f"set('{key}')")
        await asyncio.to_thread(self._set, self._prefix + key, value)

    async def get(self, key: str) -> str | None:
        logger.debug(f"get('{key}')")
        return await asyncio.to_thread(self._get, self._prefix + key)

    async def remove(self, key: str) -> str | None:
        logger.debug(f"remove('{key}')")
        return await asyncio.to_thread(self._remove, self._prefix + key)

    async def get_all_keys(self) -> list[str]:
        keys = await asyncio.to_thread(self._keys)
        return [k[len(self._prefix):] for k in keys]

    def _set(self, key: str, value: str) -> None:
        with self._db.get_session() as session:
            session.merge(StateRecord(key=key, value=value))
            session.commit()

    def _get(self, key: str) -> str | None:
        with self._db.get_session() as session:
            record = session.get(StateRecord, key)
            return record.value if record else None

    def _remove(self, key: str) -> str | None:
        with self._db.get_session() as session:
            record = session.get(StateRecord, key)
            if record is None:
                return None
            value = record.value
            session.delete(record)
            session.commit()
            return value

    def _keys(self) -> list[str]:
        with self._db.get_session() as session:
            return list(
                session.scalars(
                    select(StateRecord.key).where(StateRecord.key.startswith(self._prefix, autoescape=True))
                ).all()
            )
