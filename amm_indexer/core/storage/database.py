"""
SQLAlchemy engine wrapper shared by all stores.

Every write path runs inside `begin()`, so all rows produced by one block
or one job run commit or roll back together.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from ...config.database import DatabaseConfig
from .base import StorageBase, StorageError
from .schema import metadata

logger = logging.getLogger(__name__)


class IndexerDatabase(StorageBase):
    """
    Database holding pools, watched addresses, oracle samples, checkpoints and block history.

    Usage:
        with IndexerDatabase({"url": "sqlite://"}) as db:
            with db.begin() as conn:
                ...
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {"url": "sqlite://"})
        self.engine: Optional[Engine] = None

    @classmethod
    def from_config(cls, db_config: DatabaseConfig) -> "IndexerDatabase":
        return cls({"url": db_config.DATABASE_URL, "engine_kwargs": db_config.get_engine_kwargs()})

    def connect(self) -> None:
        """Create the engine and any missing tables."""
        if self.is_connected:
            return
        url = self.config["url"]
        kwargs = dict(self.config.get("engine_kwargs", {}))
        if url.startswith("sqlite"):
            # Single shared connection so in-memory databases survive across checkouts
            kwargs.pop("pool_size", None)
            kwargs.pop("pool_timeout", None)
            kwargs.setdefault("poolclass", StaticPool)
            kwargs.setdefault("connect_args", {"check_same_thread": False})
        try:
            self.engine = create_engine(url, **kwargs)
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to connect to database: {e}") from e
        self.is_connected = True
        logger.info(f"Database ready: {self.engine.url.render_as_string(hide_password=True)}")

    def disconnect(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.is_connected = False

    def health_check(self) -> bool:
        if not self.is_connected:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Open a transaction; commits on success, rolls back on any exception."""
        if not self.is_connected:
            self.connect()
        with self.engine.begin() as conn:
            yield conn
