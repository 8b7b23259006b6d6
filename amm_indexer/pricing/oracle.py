"""
Oracle Price Converter.

Converts native-asset amounts to USD using the latest oracle sample at or
below a block. Rates are WAD-scaled USD per whole native unit; results are
truncated integers in the amount's own unit scale.
"""

import logging
from typing import Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.engine import Connection

from ..core.storage.base import upsert
from ..core.storage.schema import oracle_samples
from ..errors import OracleDataUnavailable
from ..models import WAD, OracleSample

logger = logging.getLogger(__name__)


class OraclePriceConverter:
    """Reads and appends oracle samples, and converts amounts through them."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def record_sample(self, conn: Connection, sample: OracleSample) -> None:
        """Append a sample. Re-recording the same block overwrites it."""
        if sample.rate <= 0:
            raise ValueError(f"Oracle rate must be positive, got {sample.rate}")
        upsert(
            conn,
            oracle_samples,
            {"chain_id": sample.chain_id, "oracle_id": sample.oracle_id, "block_number": sample.block_number},
            {"rate": str(sample.rate), "timestamp": sample.timestamp},
        )

    def latest_sample(
        self,
        conn: Connection,
        chain_id: int,
        oracle_id: str,
        at_block: Optional[int] = None,
    ) -> Optional[OracleSample]:
        """Latest sample with block <= at_block (or overall when at_block is None)."""
        query = select(oracle_samples).where(and_(
            oracle_samples.c.chain_id == chain_id,
            oracle_samples.c.oracle_id == oracle_id,
        ))
        if at_block is not None:
            query = query.where(oracle_samples.c.block_number <= at_block)
        row = conn.execute(query.order_by(oracle_samples.c.block_number.desc()).limit(1)).first()
        if row is None:
            return None
        return OracleSample(
            chain_id=row.chain_id,
            oracle_id=row.oracle_id,
            block_number=row.block_number,
            rate=int(row.rate),
            timestamp=row.timestamp,
        )

    def rate_at(self, conn: Connection, chain_id: int, oracle_id: Optional[str], at_block: int) -> int:
        """
        WAD-scaled USD rate effective at a block.

        Raises:
            OracleDataUnavailable: If no sample exists at or below the block
        """
        if oracle_id is None:
            raise OracleDataUnavailable(chain_id, "none", at_block)
        sample = self.latest_sample(conn, chain_id, oracle_id, at_block)
        if sample is None:
            raise OracleDataUnavailable(chain_id, oracle_id, at_block)
        return sample.rate

    def convert(self, conn: Connection, chain_id: int, oracle_id: Optional[str],
                amount_native: int, at_block: int) -> int:
        """USD value of a native amount at a block, truncated."""
        return amount_native * self.rate_at(conn, chain_id, oracle_id, at_block) // WAD

    def rollback(self, conn: Connection, chain_id: int, ancestor: int) -> int:
        """Drop samples above the common ancestor. Returns the count removed."""
        removed = conn.execute(delete(oracle_samples).where(and_(
            oracle_samples.c.chain_id == chain_id,
            oracle_samples.c.block_number > ancestor,
        ))).rowcount
        if removed:
            self.logger.info(f"Rolled back {removed} oracle samples above block {ancestor} (chain {chain_id})")
        return removed
