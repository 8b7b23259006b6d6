"""
Reorg detection and recovery.

Recovery finds the highest block whose stored hash still matches the
chain, then rolls every derived table back to it. Ingestion re-derives
everything above the ancestor from the new canonical logs.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.engine import Connection

from ..core.storage import IndexerDatabase, PoolStore
from ..errors import ReorgDepthExceeded
from ..models import BlockHeader
from ..pricing import OraclePriceConverter, VolumeTracker
from ..scheduler.checkpoints import CheckpointStore

logger = logging.getLogger(__name__)

HeaderFetcher = Callable[[int], Awaitable[BlockHeader]]


class ReorgHandler:
    """Common-ancestor search and rollback for one chain."""

    def __init__(
        self,
        chain_id: int,
        db: IndexerDatabase,
        store: PoolStore,
        oracle: OraclePriceConverter,
        volume: VolumeTracker,
        checkpoints: CheckpointStore,
        max_depth: int,
    ):
        self.chain_id = chain_id
        self.db = db
        self.store = store
        self.oracle = oracle
        self.volume = volume
        self.checkpoints = checkpoints
        self.max_depth = max_depth
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def is_fork(self, header: BlockHeader) -> bool:
        """True when `header` does not extend the stored parent."""
        with self.db.begin() as conn:
            parent = self.store.get_block(conn, self.chain_id, header.number - 1)
        return parent is not None and parent.hash != header.parent_hash

    async def find_common_ancestor(self, from_block: int, fetch_header: HeaderFetcher,
                                   floor: Optional[int] = None) -> int:
        """
        Walk back from `from_block` to the highest block whose stored hash
        matches the canonical chain.

        Heights without a stored hash are skipped. Reaching `floor` (the
        block before anything was indexed) makes it the ancestor.

        Raises:
            ReorgDepthExceeded: If no match is found within max_depth blocks
        """
        lowest = from_block - self.max_depth
        for height in range(from_block, lowest - 1, -1):
            if floor is not None and height <= floor:
                return floor
            with self.db.begin() as conn:
                stored = self.store.get_block(conn, self.chain_id, height)
            if stored is None:
                continue
            fresh = await fetch_header(height)
            if fresh.hash == stored.hash:
                return height
            self.logger.debug(f"Block {height} replaced: {stored.hash} -> {fresh.hash}")
        raise ReorgDepthExceeded(self.chain_id, from_block, self.max_depth)

    def rollback(self, conn: Connection, ancestor: int) -> Dict[str, Any]:
        """Undo all state derived above `ancestor` in the caller's transaction."""
        counts = self.store.rollback_to(conn, self.chain_id, ancestor)
        counts["oracle_samples_removed"] = self.oracle.rollback(conn, self.chain_id, ancestor)
        counts["volume_entries_removed"] = self.volume.rollback(conn, self.chain_id, ancestor)
        counts["checkpoints_restored"] = self.checkpoints.rollback(conn, self.chain_id, ancestor)
        self.logger.warning(f"Chain {self.chain_id} rolled back to block {ancestor}: {counts}")
        return counts
