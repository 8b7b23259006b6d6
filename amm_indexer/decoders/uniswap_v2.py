"""
Uniswap V2 pair events.

Sync carries the full reserves after every state change, so it is the only
event that touches pool state. Swap contributes volume only.
"""

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..models import DecodedEvent, Pool, ProtocolVersion, V2State, empty_state
from .base import EventSpec
from .registry import DecoderRegistry, PoolUpdate, orient_pair


def on_sync(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    state = V2State(reserve0=event.args["reserve0"], reserve1=event.args["reserve1"])
    return PoolUpdate(pool=pool.with_state(state, event.block_number, timestamp))


def on_swap(pool: Pool, event: DecodedEvent, timestamp: int) -> PoolUpdate:
    """Quote-side trade size is whatever moved in or out on the quote token."""
    args = event.args
    if pool.base_is_token0:
        quote_amount = args["amount1In"] + args["amount1Out"]
    else:
        quote_amount = args["amount0In"] + args["amount0Out"]
    return PoolUpdate(pool=pool, swap_quote_amount=quote_amount)


def base_token(chain: ChainConfig, event: DecodedEvent) -> str:
    return orient_pair(chain, event.args["token0"], event.args["token1"])[0]


def build_pair(chain: ChainConfig, event: DecodedEvent, address: str) -> Pool:
    """Pool record for a PairCreated event."""
    token0, token1 = event.args["token0"], event.args["token1"]
    base, quote = orient_pair(chain, token0, token1)
    return Pool(
        chain_id=chain.chain_id,
        address=address,
        protocol=ProtocolVersion.V2,
        token0=token0,
        token1=token1,
        base_token=base,
        quote_token=quote,
        state=empty_state(ProtocolVersion.V2),
        created_block=event.block_number,
        oracle_id=chain.oracle_for(quote),
        last_updated_block=event.block_number,
    )


def register(registry: DecoderRegistry, protocols: ProtocolConfig) -> None:
    registry.register(ProtocolVersion.V2, EventSpec.parse(protocols.UNISWAP_V2_SYNC), on_sync)
    registry.register(ProtocolVersion.V2, EventSpec.parse(protocols.UNISWAP_V2_SWAP), on_swap)
