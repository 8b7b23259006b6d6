"""
Metric Aggregator.

Derives price, USD liquidity, market cap, 24h volume and graduation state
of a pool from its raw state and the oracle rate effective at a block.

Failure policy:
- Missing oracle data leaves USD fields stale; price still updates.
- A math anomaly, such as an empty base reserve or a price that rounds
  to zero, aborts that pool's refresh only and is logged as degraded.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from sqlalchemy.engine import Connection

from ..errors import OracleDataUnavailable
from ..models import WAD, ConcentratedState, GraduationEvent, Pool, V2State
from .oracle import OraclePriceConverter
from .v3_math import get_sqrt_ratio_at_tick, price_from_sqrt, virtual_reserves
from .volume import VolumeTracker

logger = logging.getLogger(__name__)


class PoolMathError(ValueError):
    """Pool state cannot produce a price."""
    pass


@dataclass
class RefreshResult:
    """
    Outcome of a pool refresh.

    Attributes:
        pool: Pool with derived fields updated (unchanged when degraded)
        graduation: Emitted when this refresh crossed the threshold
        degraded: Reason the refresh was aborted, if it was
        usd_stale: True when oracle data was missing
    """
    pool: Pool
    graduation: Optional[GraduationEvent] = None
    degraded: Optional[str] = None
    usd_stale: bool = False


def effective_sqrt_price(state: ConcentratedState) -> int:
    """sqrtPriceX96, derived from the tick when no price was reported."""
    if state.sqrt_price_x96 > 0:
        return state.sqrt_price_x96
    return get_sqrt_ratio_at_tick(state.tick)


def compute_price(pool: Pool) -> int:
    """
    Quote per base, WAD-scaled.

    Raises:
        PoolMathError: If the pool has no base reserve or the price rounds to zero
    """
    state = pool.state
    if isinstance(state, V2State):
        if pool.reserve_base == 0:
            raise PoolMathError(f"Pool {pool.address} has no base reserve")
        price = pool.reserve_quote * WAD // pool.reserve_base
    else:
        price = price_from_sqrt(effective_sqrt_price(state), pool.base_is_token0)
    if price == 0:
        raise PoolMathError(f"Price of pool {pool.address} rounds to zero")
    return price


def liquidity_amounts(pool: Pool) -> Tuple[int, int]:
    """(base, quote) amounts backing the pool, in raw token units."""
    state = pool.state
    if isinstance(state, V2State):
        return pool.reserve_base, pool.reserve_quote
    amount0, amount1 = virtual_reserves(state.liquidity, effective_sqrt_price(state))
    return (amount0, amount1) if pool.base_is_token0 else (amount1, amount0)


class MetricAggregator:
    """Recomputes derived pool fields after every state change."""

    def __init__(self, oracle: OraclePriceConverter, volume: Optional[VolumeTracker] = None):
        self.oracle = oracle
        self.volume = volume or VolumeTracker()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def record_swap(self, conn: Connection, pool: Pool, quote_amount: int, block_number: int,
                    log_index: int, timestamp: int) -> Optional[int]:
        """Add a swap's USD size to the pool's volume window. Returns the USD amount."""
        try:
            amount_usd = self.oracle.convert(conn, pool.chain_id, pool.oracle_id, quote_amount, block_number)
        except OracleDataUnavailable as e:
            self.logger.debug(f"Swap in {pool.address} not counted: {e}")
            return None
        self.volume.add(conn, pool.chain_id, pool.address, block_number, log_index, timestamp, amount_usd)
        return amount_usd

    def refresh(self, conn: Connection, pool: Pool, at_block: int,
                timestamp: Optional[int] = None) -> RefreshResult:
        """
        Recompute price, liquidity USD, market cap, volume and graduation.

        Args:
            conn: Open transaction
            pool: Pool with up-to-date state
            at_block: Block whose oracle rate applies
            timestamp: Block timestamp for the volume window

        Returns:
            RefreshResult: The updated pool and any graduation event
        """
        if not pool.has_state:
            return RefreshResult(pool=pool)

        try:
            price = compute_price(pool)
            base_amount, quote_amount = liquidity_amounts(pool)
        except (ValueError, ZeroDivisionError) as e:
            self.logger.warning(f"Degraded refresh of {pool.address} at block {at_block}: {e}")
            return RefreshResult(pool=pool, degraded=str(e))

        updated = replace(pool, price=price)
        try:
            rate = self.oracle.rate_at(conn, pool.chain_id, pool.oracle_id, at_block)
        except OracleDataUnavailable as e:
            self.logger.debug(f"USD fields of {pool.address} left stale: {e}")
            return RefreshResult(pool=updated, usd_stale=True)

        liquidity_usd = quote_amount * rate // WAD + (base_amount * price // WAD) * rate // WAD
        updated.liquidity_usd = liquidity_usd
        if updated.total_supply:
            updated.market_cap_usd = updated.total_supply * price // WAD * rate // WAD
        if timestamp is None:
            timestamp = pool.last_updated_timestamp
        if timestamp:
            updated.volume_usd_24h = self.volume.rolling_volume(conn, pool.chain_id, pool.address, timestamp)

        graduation = None
        curve = updated.bonding_curve
        if curve is not None and not curve.graduated:
            graduated = liquidity_usd >= curve.graduation_threshold
            updated.bonding_curve = replace(curve, graduation_balance=liquidity_usd, graduated=graduated)
            if graduated:
                graduation = GraduationEvent(
                    chain_id=pool.chain_id,
                    pool=pool.address,
                    base_token=pool.base_token,
                    block_number=at_block,
                    graduation_balance=liquidity_usd,
                    graduation_threshold=curve.graduation_threshold,
                )
                self.logger.info(
                    f"Pool {pool.address} graduated at block {at_block} "
                    f"(balance {liquidity_usd} >= {curve.graduation_threshold})"
                )
        return RefreshResult(pool=updated, graduation=graduation)

    def refresh_market_cap(self, conn: Connection, pool: Pool, at_block: int) -> Pool:
        """Re-derive market cap only. Raises OracleDataUnavailable without a sample."""
        if not pool.total_supply or not pool.price:
            return pool
        rate = self.oracle.rate_at(conn, pool.chain_id, pool.oracle_id, at_block)
        return replace(pool, market_cap_usd=pool.total_supply * pool.price // WAD * rate // WAD)
