"""
Storage layer for the AMM indexer.
"""

from .base import DataError, StorageBase, StorageError
from .database import IndexerDatabase
from .pool_store import PoolStore

__all__ = [
    "DataError",
    "StorageBase",
    "StorageError",
    "IndexerDatabase",
    "PoolStore",
]
