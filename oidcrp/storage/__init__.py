"""Storage module for oidcrp.

Provides the state store interface, an in-memory store and a SQLite-backed
store for pending signin/signout state.
"""

from oidcrp.storage.database import (
    DEFAULT_DB_PATH,
    ENV_DB_PATH,
    Database,
    DatabaseStateStore,
    create_database_engine,
    get_database_path,
)
from oidcrp.storage.models import Base, StateRecord
from oidcrp.storage.state_store import InMemoryStateStore, StateStore

__all__ = [
    # State stores
    "StateStore",
    "InMemoryStateStore",
    "DatabaseStateStore",
    # Database management
    "Database",
    "create_database_engine",
    "get_database_path",
    # Constants
    "DEFAULT_DB_PATH",
    "ENV_DB_PATH",
    # Models
    "Base",
    "StateRecord",
]
