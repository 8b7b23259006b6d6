"""
Database configuration for the AMM indexer.
"""

from dataclasses import dataclass
from typing import Any, Dict

from .base import BaseConfig


@dataclass
class DatabaseConfig(BaseConfig):
    """Database connection settings. Any SQLAlchemy URL is accepted."""

    DATABASE_URL: str = BaseConfig.get_env("DATABASE_URL", "sqlite://")
    POOL_SIZE: int = BaseConfig.get_env_int("DB_POOL_SIZE", 10)
    CONNECTION_TIMEOUT: int = BaseConfig.get_env_int("CONNECTION_TIMEOUT", 30)
    ECHO_SQL: bool = BaseConfig.get_env_bool("ECHO_SQL", False)

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def get_engine_kwargs(self) -> Dict[str, Any]:
        """Get keyword arguments for sqlalchemy.create_engine."""
        if self.is_sqlite:
            return {"echo": self.ECHO_SQL}
        return {
            "echo": self.ECHO_SQL,
            "pool_size": self.POOL_SIZE,
            "pool_timeout": self.CONNECTION_TIMEOUT,
            "pool_pre_ping": True,
        }
