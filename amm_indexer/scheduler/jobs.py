"""
Built-in checkpoint jobs.

- eth_price: samples the Chainlink ETH/USD feed into the oracle table
- pool_metrics: refreshes derived fields of pools touched since the checkpoint
- market_caps: re-derives market caps from the latest oracle sample
"""

import logging
from typing import Any, Dict, List, Optional

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from sqlalchemy.engine import Connection

from ..config.chains import ETH_USD
from ..config.indexer import IndexerSettings
from ..config.protocols import ProtocolConfig
from ..core.storage import PoolStore
from ..errors import OracleDataUnavailable
from ..ingestion.rpc import RpcClient
from ..models import GraduationEvent, OracleSample
from ..pricing import MetricAggregator, OraclePriceConverter
from .base import Job, JobContext, JobError

logger = logging.getLogger(__name__)

ETH_PRICE = "eth_price"
POOL_METRICS = "pool_metrics"
MARKET_CAPS = "market_caps"


def eth_price_job(rpc: RpcClient, oracle: OraclePriceConverter, interval: int,
                  chains: Optional[List[str]] = None,
                  protocols: Optional[ProtocolConfig] = None) -> Job:
    """Sample latestRoundData() at the run's end block and record it as a WAD rate."""
    protocols = protocols or ProtocolConfig()
    selector = function_signature_to_4byte_selector(protocols.CHAINLINK_LATEST_ROUND_DATA)
    scale = 10 ** (18 - protocols.CHAINLINK_DECIMALS)

    async def body(ctx: JobContext) -> Dict[str, Any]:
        feed = ctx.chain.addresses.oracle.chainlink_eth
        if not feed:
            return {"skipped": "no price feed"}

        raw = await rpc.call_contract(ctx.chain.chain_id, feed, selector, b"", ctx.to_block)
        try:
            _, answer, _, updated_at, _ = eth_abi.decode(list(protocols.CHAINLINK_ROUND_DATA_TYPES), raw)
        except (DecodingError, ValueError) as e:
            raise JobError(f"Bad latestRoundData response from {feed}: {e}") from e
        if answer <= 0:
            raise JobError(f"Non-positive answer {answer} from {feed} at block {ctx.to_block}")

        sample = OracleSample(
            chain_id=ctx.chain.chain_id,
            oracle_id=ETH_USD,
            block_number=ctx.to_block,
            rate=answer * scale,
            timestamp=updated_at,
        )
        ctx.stage(lambda conn: oracle.record_sample(conn, sample))
        return {"rate": str(sample.rate), "block": ctx.to_block}

    return Job(
        name=ETH_PRICE,
        interval=interval,
        body=body,
        chains=chains or [],
        start_block=lambda chain: chain.oracle_start_block,
    )


def pool_metrics_job(store: PoolStore, aggregator: MetricAggregator, interval: int,
                     chains: Optional[List[str]] = None) -> Job:
    """
    Refresh every pool whose state changed in (from_block, to_block].

    A refresh can cross a graduation threshold when the oracle rate moved
    since the pool's last event; such graduations are reported in the
    run's output under "graduations".
    """

    async def body(ctx: JobContext) -> Dict[str, Any]:
        def refresh(conn: Connection) -> Dict[str, Any]:
            refreshed, degraded = 0, 0
            graduations: List[GraduationEvent] = []
            for pool in store.pools_touched_since(conn, ctx.chain.chain_id, ctx.from_block):
                result = aggregator.refresh(conn, pool, ctx.to_block)
                if result.degraded:
                    degraded += 1
                    continue
                store.save_pool(conn, result.pool, ctx.to_block)
                refreshed += 1
                if result.graduation is not None:
                    graduations.append(result.graduation)
            return {"refreshed": refreshed, "degraded": degraded, "graduations": graduations}

        ctx.stage(refresh)
        return {}

    return Job(name=POOL_METRICS, interval=interval, body=body, chains=chains or [])


def market_caps_job(store: PoolStore, aggregator: MetricAggregator, interval: int,
                    chains: Optional[List[str]] = None) -> Job:
    """Re-derive market caps of priced pools with a known supply."""

    async def body(ctx: JobContext) -> Dict[str, Any]:
        def rederive(conn: Connection) -> Dict[str, Any]:
            updated, stale = 0, 0
            for pool in store.list_pools(conn, ctx.chain.chain_id):
                if not pool.total_supply or not pool.price:
                    continue
                try:
                    refreshed = aggregator.refresh_market_cap(conn, pool, ctx.to_block)
                except OracleDataUnavailable:
                    stale += 1
                    continue
                if refreshed.market_cap_usd != pool.market_cap_usd:
                    store.save_pool(conn, refreshed, ctx.to_block)
                    updated += 1
            return {"updated": updated, "stale": stale}

        ctx.stage(rederive)
        return {}

    return Job(
        name=MARKET_CAPS,
        interval=interval,
        body=body,
        chains=chains or [],
        start_block=lambda chain: chain.oracle_start_block,
    )


def default_jobs(rpc: RpcClient, store: PoolStore, oracle: OraclePriceConverter,
                 aggregator: MetricAggregator, settings: IndexerSettings) -> List[Job]:
    return [
        eth_price_job(rpc, oracle, settings.ETH_PRICE_INTERVAL),
        pool_metrics_job(store, aggregator, settings.POOL_METRICS_INTERVAL),
        market_caps_job(store, aggregator, settings.MARKET_CAP_INTERVAL),
    ]
