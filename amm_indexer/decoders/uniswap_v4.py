"""
Uniswap V4 PoolManager events.

Every V4 pool lives inside the singleton PoolManager, so logs are routed
by the `id` topic rather than the emitting address. Initialize both
creates the pool and sets its starting price.
"""

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..models import ConcentratedState, DecodedEvent, Pool, ProtocolVersion
from .base import EventSpec
from .registry import DecoderRegistry, PoolUpdate, orient_pair
from .uniswap_v3 import apply_liquidity_delta, swap_quote_amount


def pool_key(event: DecodedEvent) -> str:
    return event.args["id"]


def on_swap(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    args = event.args
    state = ConcentratedState(
        liquidity=args["liquidity"],
        sqrt_price_x96=args["sqrtPriceX96"],
        tick=args["tick"],
    )
    return PoolUpdate(
        pool=pool.with_state(state, event.block_number, timestamp),
        swap_quote_amount=swap_quote_amount(pool, args["amount0"], args["amount1"]),
    )


def on_modify_liquidity(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    args = event.args
    updated = apply_liquidity_delta(
        pool, args["tickLower"], args["tickUpper"], args["liquidityDelta"], event.block_number, timestamp
    )
    return PoolUpdate(pool=updated)


def base_token(chain: ChainConfig, event: DecodedEvent) -> str:
    return orient_pair(chain, event.args["currency0"], event.args["currency1"])[0]


def build_pool(chain: ChainConfig, event: DecodedEvent, pool_id: str) -> Pool:
    """Pool record for an Initialize event, keyed by pool id."""
    args = event.args
    token0, token1 = args["currency0"], args["currency1"]
    base, quote = orient_pair(chain, token0, token1)
    return Pool(
        chain_id=chain.chain_id,
        address=pool_id,
        protocol=ProtocolVersion.V4,
        token0=token0,
        token1=token1,
        base_token=base,
        quote_token=quote,
        state=ConcentratedState(liquidity=0, sqrt_price_x96=args["sqrtPriceX96"], tick=args["tick"]),
        created_block=event.block_number,
        oracle_id=chain.oracle_for(quote),
        hooks=args["hooks"],
        last_updated_block=event.block_number,
    )


def register(registry: DecoderRegistry, protocols: ProtocolConfig) -> None:
    registry.register(ProtocolVersion.V4, EventSpec.parse(protocols.UNISWAP_V4_SWAP), on_swap)
    registry.register(
        ProtocolVersion.V4, EventSpec.parse(protocols.UNISWAP_V4_MODIFY_LIQUIDITY), on_modify_liquidity
    )
