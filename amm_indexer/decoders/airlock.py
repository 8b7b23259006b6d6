"""
Launchpad airlock events and the getAssetData call.

Create announces a new launched asset and the pool (V3) or hook (V4) that
sells it along a bonding curve. Migrate marks the end of the sale, after
which liquidity moves to the migration pool.
"""

import logging
from dataclasses import replace
from typing import Optional, Tuple

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..errors import DecodeAnomaly
from ..models import AssetData, BondingCurve, ConcentratedState, DecodedEvent, Pool, ProtocolVersion
from .base import EventSpec
from .registry import sort_tokens

logger = logging.getLogger(__name__)

_protocols = ProtocolConfig()

CREATE = EventSpec.parse(_protocols.AIRLOCK_CREATE)
MIGRATE = EventSpec.parse(_protocols.AIRLOCK_MIGRATE)


def asset_data_call(asset: str) -> Tuple[bytes, bytes]:
    """Selector and encoded arguments of getAssetData(asset)."""
    selector = function_signature_to_4byte_selector(_protocols.AIRLOCK_GET_ASSET_DATA)
    return selector, eth_abi.encode(["address"], [asset])


def decode_asset_data(asset: str, return_data: bytes) -> AssetData:
    """
    Decode the 10-field getAssetData tuple.

    Raises:
        DecodeAnomaly: If the return data is not a well-formed tuple
    """
    try:
        values = eth_abi.decode(list(_protocols.AIRLOCK_ASSET_DATA_TYPES), bytes(return_data))
    except (DecodingError, ValueError, TypeError) as e:
        raise DecodeAnomaly(f"getAssetData({asset}): {e}") from e
    if len(values) != 10:
        raise DecodeAnomaly(f"getAssetData({asset}): expected 10 fields, got {len(values)}")

    (numeraire, timelock, governance, liquidity_migrator, pool_initializer,
     pool, migration_pool, num_tokens_to_sell, total_supply, integrator) = values
    return AssetData(
        asset=asset.lower(),
        numeraire=numeraire.lower(),
        timelock=timelock.lower(),
        governance=governance.lower(),
        liquidity_migrator=liquidity_migrator.lower(),
        pool_initializer=pool_initializer.lower(),
        pool=pool.lower(),
        migration_pool=migration_pool.lower(),
        num_tokens_to_sell=num_tokens_to_sell,
        total_supply=total_supply,
        integrator=integrator.lower(),
    )


def attach_curve(chain: ChainConfig, pool: Pool, asset: str, numeraire: str, data: AssetData) -> Pool:
    """Turn a pool into the bonding-curve pool of `asset`, quoted in `numeraire`."""
    curve = BondingCurve(
        tokens_to_sell=data.num_tokens_to_sell,
        total_supply=data.total_supply,
        graduation_threshold=chain.graduation_threshold_usd,
    )
    return replace(
        pool,
        base_token=asset,
        quote_token=numeraire,
        oracle_id=chain.oracle_for(numeraire),
        total_supply=data.total_supply,
        bonding_curve=curve,
    )


def curve_pool(chain: ChainConfig, event: DecodedEvent, data: AssetData,
               existing: Optional[Pool]) -> Pool:
    """
    Bonding-curve pool for a Create event.

    `existing` is the pool already known under `poolOrHook` (V3 pool
    address or V4 hooks). Without one, a V3 pool is assumed at that
    address; its state arrives with Initialize.
    """
    asset, numeraire = event.args["asset"], event.args["numeraire"]
    if existing is None:
        token0, token1 = sort_tokens(asset, numeraire)
        existing = Pool(
            chain_id=chain.chain_id,
            address=event.args["poolOrHook"],
            protocol=ProtocolVersion.V3,
            token0=token0,
            token1=token1,
            base_token=asset,
            quote_token=numeraire,
            state=ConcentratedState(),
            created_block=event.block_number,
            last_updated_block=event.block_number,
        )
    return attach_curve(chain, existing, asset, numeraire, data)


def migrate(pool: Pool) -> Pool:
    """Mark a curve pool graduated. Already-graduated pools are returned unchanged."""
    if pool.bonding_curve is None:
        raise DecodeAnomaly(f"Migrate for pool {pool.address} without a bonding curve")
    if pool.bonding_curve.graduated:
        return pool
    logger.info(f"Pool {pool.address} migrated, closing bonding curve for {pool.base_token}")
    return replace(pool, bonding_curve=replace(pool.bonding_curve, graduated=True))
