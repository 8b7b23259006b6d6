"""
Uniswap V3 pool events.

Swap carries the post-trade price, tick and active liquidity. Mint and
Burn only move active liquidity when the position straddles the current
tick (tickLower <= tick < tickUpper).
"""

from dataclasses import replace

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..errors import DecodeAnomaly
from ..models import ConcentratedState, DecodedEvent, Pool, ProtocolVersion
from .base import EventSpec
from .registry import DecoderRegistry, PoolUpdate, orient_pair


def concentrated_state(pool: Pool) -> ConcentratedState:
    if not isinstance(pool.state, ConcentratedState):
        raise DecodeAnomaly(f"Pool {pool.address} is not a concentrated-liquidity pool")
    return pool.state


def apply_liquidity_delta(pool: Pool, tick_lower: int, tick_upper: int, delta: int,
                          block_number: int, timestamp: int) -> Pool:
    """Shift active liquidity if the range covers the current tick."""
    state = concentrated_state(pool)
    if not tick_lower <= state.tick < tick_upper:
        return pool
    liquidity = state.liquidity + delta
    if liquidity < 0:
        raise DecodeAnomaly(
            f"Pool {pool.address}: liquidity underflow ({state.liquidity} + {delta}) "
            f"at block {block_number}"
        )
    return pool.with_state(replace(state, liquidity=liquidity), block_number, timestamp)


def swap_quote_amount(pool: Pool, amount0: int, amount1: int) -> int:
    """Absolute quote-side amount of a signed swap delta pair."""
    return abs(amount1) if pool.base_is_token0 else abs(amount0)


def on_initialize(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    state = concentrated_state(pool)
    state = ConcentratedState(
        liquidity=state.liquidity,
        sqrt_price_x96=event.args["sqrtPriceX96"],
        tick=event.args["tick"],
    )
    return PoolUpdate(pool=pool.with_state(state, event.block_number, timestamp))


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


def on_mint(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    args = event.args
    updated = apply_liquidity_delta(
        pool, args["tickLower"], args["tickUpper"], args["amount"], event.block_number, timestamp
    )
    return PoolUpdate(pool=updated)


def on_burn(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    args = event.args
    updated = apply_liquidity_delta(
        pool, args["tickLower"], args["tickUpper"], -args["amount"], event.block_number, timestamp
    )
    return PoolUpdate(pool=updated)


def base_token(chain: ChainConfig, event: DecodedEvent) -> str:
    return orient_pair(chain, event.args["token0"], event.args["token1"])[0]


def build_pool(chain: ChainConfig, event: DecodedEvent, address: str) -> Pool:
    """Pool record for a PoolCreated event. Price arrives with Initialize."""
    token0, token1 = event.args["token0"], event.args["token1"]
    base, quote = orient_pair(chain, token0, token1)
    return Pool(
        chain_id=chain.chain_id,
        address=address,
        protocol=ProtocolVersion.V3,
        token0=token0,
        token1=token1,
        base_token=base,
        quote_token=quote,
        state=ConcentratedState(),
        created_block=event.block_number,
        oracle_id=chain.oracle_for(quote),
        last_updated_block=event.block_number,
    )


def register(registry: DecoderRegistry, protocols: ProtocolConfig) -> None:
    registry.register(ProtocolVersion.V3, EventSpec.parse(protocols.UNISWAP_V3_INITIALIZE), on_initialize)
    registry.register(ProtocolVersion.V3, EventSpec.parse(protocols.UNISWAP_V3_SWAP), on_swap)
    registry.register(ProtocolVersion.V3, EventSpec.parse(protocols.UNISWAP_V3_MINT), on_mint)
    registry.register(ProtocolVersion.V3, EventSpec.parse(protocols.UNISWAP_V3_BURN), on_burn)
