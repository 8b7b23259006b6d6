"""
Base classes and interfaces for storage implementations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from sqlalchemy import Table, and_, insert, select, update
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class DataError(StorageError):
    """Raised when stored data is inconsistent or cannot be decoded."""
    pass


class StorageBase(ABC):
    """
    Abstract base class for storage backends.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize storage backend with configuration.

        Args:
            config: Configuration dictionary for the storage backend
        """
        self.config = config
        self.is_connected = False

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the storage backend."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection to the storage backend."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """
        Check if the storage backend is healthy and accessible.

        Returns:
            bool: True if healthy, False otherwise
        """
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def key_clause(table: Table, keys: Dict[str, Any]):
    """Build a WHERE clause matching all key columns."""
    return and_(*[table.c[name] == value for name, value in keys.items()])


def upsert(conn: Connection, table: Table, keys: Dict[str, Any], values: Dict[str, Any]) -> None:
    """
    Insert or update a row identified by its key columns.

    Portable across SQLite and PostgreSQL; runs inside the caller's transaction.
    """
    existing = conn.execute(select(*[table.c[k] for k in keys]).where(key_clause(table, keys))).first()
    if existing is None:
        conn.execute(insert(table).values(**keys, **values))
    elif values:
        conn.execute(update(table).where(key_clause(table, keys)).values(**values))


def fetch_one(conn: Connection, table: Table, keys: Dict[str, Any]) -> Optional[Any]:
    return conn.execute(select(table).where(key_clause(table, keys))).mappings().first()
