"""
Rolling 24h swap volume per pool.

Each swap is stored as one entry keyed by (pool, block, log index), so
replaying a block overwrites rather than double counts. Reads filter by
the window; entries are only deleted once the block they belong to is
final and they are out of every window a later block can ask for.
"""

import logging

from sqlalchemy import and_, delete, select
from sqlalchemy.engine import Connection

from ..core.storage.base import upsert
from ..core.storage.schema import blocks, volume_entries

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 24 * 60 * 60


class VolumeTracker:
    """Per-pool 24h volume buckets."""

    def __init__(self, window_seconds: int = WINDOW_SECONDS):
        self.window_seconds = window_seconds

    def add(self, conn: Connection, chain_id: int, pool: str, block_number: int,
            log_index: int, timestamp: int, amount_usd: int) -> None:
        upsert(
            conn,
            volume_entries,
            {"chain_id": chain_id, "pool": pool, "block_number": block_number, "log_index": log_index},
            {"timestamp": timestamp, "amount_usd": str(amount_usd)},
        )

    def rolling_volume(self, conn: Connection, chain_id: int, pool: str, now_timestamp: int) -> int:
        """Sum of swaps in (now - window, now]."""
        cutoff = now_timestamp - self.window_seconds
        rows = conn.execute(select(volume_entries.c.amount_usd).where(and_(
            volume_entries.c.chain_id == chain_id,
            volume_entries.c.pool == pool,
            volume_entries.c.timestamp > cutoff,
            volume_entries.c.timestamp <= now_timestamp,
        )))
        return sum(int(row.amount_usd) for row in rows)

    def prune(self, conn: Connection, chain_id: int, finalized_block: int) -> int:
        """
        Evict finalized entries older than the window of the finalized block.

        The finalized timestamp is taken from the latest stored block at or
        below `finalized_block`, so it never overstates how far the window
        has moved. Returns the number of entries deleted.
        """
        finalized_timestamp = conn.execute(
            select(blocks.c.timestamp)
            .where(and_(blocks.c.chain_id == chain_id, blocks.c.number <= finalized_block))
            .order_by(blocks.c.number.desc())
            .limit(1)
        ).scalar()
        if finalized_timestamp is None:
            return 0
        evicted = conn.execute(delete(volume_entries).where(and_(
            volume_entries.c.chain_id == chain_id,
            volume_entries.c.block_number <= finalized_block,
            volume_entries.c.timestamp <= finalized_timestamp - self.window_seconds,
        ))).rowcount
        if evicted:
            logger.debug(f"Evicted {evicted} volume entries at or below block {finalized_block}")
        return evicted

    def rollback(self, conn: Connection, chain_id: int, ancestor: int) -> int:
        return conn.execute(delete(volume_entries).where(and_(
            volume_entries.c.chain_id == chain_id,
            volume_entries.c.block_number > ancestor,
        ))).rowcount
