"""
Test helpers: an in-process chain implementing RpcClient, plus builders
for chain configs, settings and protocol logs.

    chain = FakeChain()
    chain.mine(100, [pair_created(), sync(1_000_000, 10)])
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

import eth_abi
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from .config.chains import (
    ETH_USD,
    ZERO_ADDRESS,
    ChainAddresses,
    ChainConfig,
    OracleAddresses,
    SharedAddresses,
)
from .config.indexer import IndexerSettings
from .config.protocols import ProtocolConfig
from .decoders.base import EventSpec, normalize_hex
from .errors import DecodeAnomaly, TransientRpcError
from .ingestion.rpc import RpcClient
from .models import WAD, BlockHeader

CHAIN_ID = 31337
START_BLOCK = 100
GENESIS_TIMESTAMP = 1_700_000_000

V2_FACTORY = "0x" + "f2" * 20
V3_FACTORY = "0x" + "f3" * 20
POOL_MANAGER = "0x" + "f4" * 20
AIRLOCK = "0x" + "a1" * 20
PRICE_FEED = "0x" + "fe" * 20
WETH = "0x" + "ee" * 20
TOKEN = "0x" + "11" * 20
OTHER_TOKEN = "0x" + "22" * 20
PAIR = "0x" + "b2" * 20
OTHER_PAIR = "0x" + "c2" * 20
POOL = "0x" + "b3" * 20
HOOKS = "0x" + "d4" * 20
POOL_ID = "0x" + "44" * 32

ETH_RATE = 2000 * WAD
GRADUATION_THRESHOLD = 50_000 * WAD

PROTOCOLS = ProtocolConfig()

LogSpec = Tuple[str, str, Dict[str, Any]]


def block_hash(number: int, fork: str = "a") -> str:
    return normalize_hex(Web3.keccak(text=f"{fork}:{number}"))


def block_timestamp(number: int) -> int:
    return GENESIS_TIMESTAMP + number * 12


class FakeChain(RpcClient):
    """
    Scriptable chain for one chain id.

    Blocks are added with `mine`; different `fork` tags give different
    hashes at the same height. Setting `failures` makes the next N calls
    raise TransientRpcError. Calls nothing was registered for with `on_call`
    revert.
    """

    def __init__(self, chain_id: int = CHAIN_ID):
        self.chain_id = chain_id
        self.blocks: Dict[int, BlockHeader] = {}
        self.logs: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        self.contracts: Dict[Tuple[str, bytes], Callable[[bytes, int], bytes]] = {}
        self.failures = 0
        self.calls: List[Tuple[str, Any]] = []

    @property
    def head(self) -> int:
        return max(self.blocks) if self.blocks else 0

    def mine(self, number: int, logs: Sequence[LogSpec] = (), fork: str = "a") -> BlockHeader:
        """Add block `number` with logs given as (signature, address, values)."""
        parent = self.blocks.get(number - 1)
        header = BlockHeader(
            number=number,
            hash=block_hash(number, fork),
            parent_hash=parent.hash if parent else "0x" + "00" * 32,
            timestamp=block_timestamp(number),
        )
        self.blocks[number] = header
        self.logs[number] = [
            EventSpec.parse(signature).encode_log(address, values, number, index, header.hash)
            for index, (signature, address, values) in enumerate(logs)
        ]
        return header

    def mine_empty(self, first: int, last: int, fork: str = "a") -> None:
        for number in range(first, last + 1):
            self.mine(number, fork=fork)

    def drop_from(self, number: int) -> None:
        """Forget blocks >= number, as a reorg does."""
        for height in [h for h in self.blocks if h >= number]:
            del self.blocks[height]
            self.logs.pop(height, None)

    def on_call(self, address: str, signature: str, handler: Callable[[bytes, int], bytes]) -> None:
        self.contracts[(address.lower(), function_signature_to_4byte_selector(signature))] = handler

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _maybe_fail(self, method: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise TransientRpcError(f"connection reset during {method}", method)

    async def get_logs(self, chain_id, from_block, to_block, addresses):
        self._maybe_fail("get_logs")
        self.calls.append(("get_logs", (from_block, to_block, tuple(addresses))))
        wanted = {a.lower() for a in addresses}
        return [
            log
            for number in range(from_block, to_block + 1)
            for log in self.logs.get(number, [])
            if log["address"].lower() in wanted
        ]

    async def get_block_header(self, chain_id, number):
        self._maybe_fail("get_block_header")
        self.calls.append(("get_block_header", number))
        return self.blocks[number]

    async def call_contract(self, chain_id, address, selector, args, at_block):
        self._maybe_fail("call_contract")
        self.calls.append(("call_contract", (address, at_block)))
        handler = self.contracts.get((address.lower(), bytes(selector)))
        if handler is None:
            raise DecodeAnomaly(f"Call to {address} reverted at block {at_block}: no such function")
        return handler(bytes(args), at_block)

    async def get_block_number(self, chain_id):
        self._maybe_fail("get_block_number")
        return self.head


class MultiChain(RpcClient):
    """Routes calls to one FakeChain per chain id."""

    def __init__(self, *chains: FakeChain):
        self.chains = {c.chain_id: c for c in chains}

    async def get_logs(self, chain_id, from_block, to_block, addresses):
        return await self.chains[chain_id].get_logs(chain_id, from_block, to_block, addresses)

    async def get_block_header(self, chain_id, number):
        return await self.chains[chain_id].get_block_header(chain_id, number)

    async def call_contract(self, chain_id, address, selector, args, at_block):
        return await self.chains[chain_id].call_contract(chain_id, address, selector, args, at_block)

    async def get_block_number(self, chain_id):
        return await self.chains[chain_id].get_block_number(chain_id)


def make_chain(chain_id: int = CHAIN_ID, name: str = "testnet",
               threshold: int = GRADUATION_THRESHOLD) -> ChainConfig:
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        start_block=START_BLOCK,
        v3_start_block=START_BLOCK,
        v4_start_block=START_BLOCK,
        oracle_start_block=START_BLOCK,
        rpc_source="TEST_RPC_URL",
        addresses=ChainAddresses(
            shared=SharedAddresses(airlock=AIRLOCK, weth=WETH),
            oracle=OracleAddresses(chainlink_eth=PRICE_FEED, weth=WETH),
            v2_factory=V2_FACTORY,
            v3_factory=V3_FACTORY,
            v4_pool_manager=POOL_MANAGER,
        ),
        quote_oracles={WETH: ETH_USD, ZERO_ADDRESS: ETH_USD},
        graduation_threshold_usd=threshold,
    )


def make_settings(**overrides: Any) -> IndexerSettings:
    """Fast settings: no trailing distance, no retry delay, short job intervals."""
    values: Dict[str, Any] = dict(
        ENVIRONMENT="test",
        BLOCKS_PER_BATCH=10,
        TRAILING_DISTANCE=0,
        MAX_REORG_DEPTH=8,
        POLL_INTERVAL_SECONDS=0.01,
        MAX_CONSECUTIVE_FAILURES=3,
        RETRY_BASE_DELAY=0.0,
        RETRY_MAX_DELAY=0.0,
        ETH_PRICE_INTERVAL=5,
        POOL_METRICS_INTERVAL=5,
        MARKET_CAP_INTERVAL=5,
    )
    values.update(overrides)
    return IndexerSettings(**values)


def make_log(spec: LogSpec, block_number: int = START_BLOCK, log_index: int = 0,
             fork: str = "a") -> Dict[str, Any]:
    """Raw log dict for a (signature, address, values) tuple."""
    signature, address, values = spec
    return EventSpec.parse(signature).encode_log(
        address, values, block_number, log_index, block_hash(block_number, fork)
    )


def asset_data_response(num_tokens_to_sell: int = 900_000_000 * WAD,
                        total_supply: int = 1_000_000_000 * WAD, pool: str = POOL) -> bytes:
    """Encoded getAssetData return tuple."""
    return eth_abi.encode(list(PROTOCOLS.AIRLOCK_ASSET_DATA_TYPES), [
        WETH,
        "0x" + "01" * 20,
        "0x" + "02" * 20,
        "0x" + "03" * 20,
        "0x" + "04" * 20,
        pool,
        "0x" + "05" * 20,
        num_tokens_to_sell,
        total_supply,
        "0x" + "06" * 20,
    ])


def total_supply_response(supply: int) -> bytes:
    return eth_abi.encode(list(PROTOCOLS.ERC20_UINT_TYPES), [supply])


def round_data_response(answer: int, updated_at: int = GENESIS_TIMESTAMP) -> bytes:
    """Encoded latestRoundData return tuple."""
    return eth_abi.encode(list(PROTOCOLS.CHAINLINK_ROUND_DATA_TYPES), [1, answer, updated_at, updated_at, 1])


# Log builders, (signature, emitter, values)

def pair_created(token0: str = TOKEN, token1: str = WETH, pair: str = PAIR) -> LogSpec:
    return PROTOCOLS.UNISWAP_V2_PAIR_CREATED, V2_FACTORY, {
        "token0": token0, "token1": token1, "pair": pair, "pairIndex": 1,
    }


def sync(reserve0: int, reserve1: int, pair: str = PAIR) -> LogSpec:
    return PROTOCOLS.UNISWAP_V2_SYNC, pair, {"reserve0": reserve0, "reserve1": reserve1}


def v2_swap(amount0_in: int, amount1_in: int, amount0_out: int, amount1_out: int,
            pair: str = PAIR) -> LogSpec:
    return PROTOCOLS.UNISWAP_V2_SWAP, pair, {
        "sender": "0x" + "aa" * 20,
        "amount0In": amount0_in,
        "amount1In": amount1_in,
        "amount0Out": amount0_out,
        "amount1Out": amount1_out,
        "to": "0x" + "bb" * 20,
    }


def pool_created(token0: str = TOKEN, token1: str = WETH, pool: str = POOL) -> LogSpec:
    return PROTOCOLS.UNISWAP_V3_POOL_CREATED, V3_FACTORY, {
        "token0": token0, "token1": token1, "fee": 3000, "tickSpacing": 60, "pool": pool,
    }


def v3_initialize(sqrt_price_x96: int, tick: int, pool: str = POOL) -> LogSpec:
    return PROTOCOLS.UNISWAP_V3_INITIALIZE, pool, {"sqrtPriceX96": sqrt_price_x96, "tick": tick}


def v3_mint(tick_lower: int, tick_upper: int, amount: int, pool: str = POOL) -> LogSpec:
    return PROTOCOLS.UNISWAP_V3_MINT, pool, {
        "sender": "0x" + "aa" * 20,
        "owner": "0x" + "aa" * 20,
        "tickLower": tick_lower,
        "tickUpper": tick_upper,
        "amount": amount,
        "amount0": 0,
        "amount1": 0,
    }


def v3_burn(tick_lower: int, tick_upper: int, amount: int, pool: str = POOL) -> LogSpec:
    return PROTOCOLS.UNISWAP_V3_BURN, pool, {
        "owner": "0x" + "aa" * 20,
        "tickLower": tick_lower,
        "tickUpper": tick_upper,
        "amount": amount,
        "amount0": 0,
        "amount1": 0,
    }


def v3_swap(amount0: int, amount1: int, sqrt_price_x96: int, liquidity: int, tick: int,
            pool: str = POOL) -> LogSpec:
    return PROTOCOLS.UNISWAP_V3_SWAP, pool, {
        "sender": "0x" + "aa" * 20,
        "recipient": "0x" + "bb" * 20,
        "amount0": amount0,
        "amount1": amount1,
        "sqrtPriceX96": sqrt_price_x96,
        "liquidity": liquidity,
        "tick": tick,
    }


def v4_initialize(sqrt_price_x96: int, tick: int, pool_id: str = POOL_ID, currency0: str = ZERO_ADDRESS,
                  currency1: str = TOKEN, hooks: str = HOOKS) -> LogSpec:
    return PROTOCOLS.UNISWAP_V4_INITIALIZE, POOL_MANAGER, {
        "id": pool_id,
        "currency0": currency0,
        "currency1": currency1,
        "fee": 3000,
        "tickSpacing": 60,
        "hooks": hooks,
        "sqrtPriceX96": sqrt_price_x96,
        "tick": tick,
    }


def v4_swap(amount0: int, amount1: int, sqrt_price_x96: int, liquidity: int, tick: int,
            pool_id: str = POOL_ID) -> LogSpec:
    return PROTOCOLS.UNISWAP_V4_SWAP, POOL_MANAGER, {
        "id": pool_id,
        "sender": "0x" + "aa" * 20,
        "amount0": amount0,
        "amount1": amount1,
        "sqrtPriceX96": sqrt_price_x96,
        "liquidity": liquidity,
        "tick": tick,
        "fee": 3000,
    }


def v4_modify_liquidity(tick_lower: int, tick_upper: int, delta: int, pool_id: str = POOL_ID) -> LogSpec:
    return PROTOCOLS.UNISWAP_V4_MODIFY_LIQUIDITY, POOL_MANAGER, {
        "id": pool_id,
        "sender": "0x" + "aa" * 20,
        "tickLower": tick_lower,
        "tickUpper": tick_upper,
        "liquidityDelta": delta,
        "salt": "0x" + "00" * 32,
    }


def airlock_create(asset: str = TOKEN, numeraire: str = WETH, pool_or_hook: str = POOL) -> LogSpec:
    return PROTOCOLS.AIRLOCK_CREATE, AIRLOCK, {
        "asset": asset,
        "numeraire": numeraire,
        "initializer": "0x" + "04" * 20,
        "poolOrHook": pool_or_hook,
    }


def airlock_migrate(asset: str = TOKEN, pool: str = "0x" + "05" * 20) -> LogSpec:
    return PROTOCOLS.AIRLOCK_MIGRATE, AIRLOCK, {"asset": asset, "pool": pool}
