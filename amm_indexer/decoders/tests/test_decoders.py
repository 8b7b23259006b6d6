"""
Tests for event schemas, the decoder registry and per-protocol handlers.
"""

import pytest
from hexbytes import HexBytes

from ...errors import DecodeAnomaly
from ...models import BondingCurve, ConcentratedState, Pool, ProtocolVersion, V2State
from ...testing import (
    PAIR,
    POOL,
    POOL_ID,
    PROTOCOLS,
    TOKEN,
    WETH,
    airlock_create,
    asset_data_response,
    make_chain,
    make_log,
    pair_created,
    pool_created,
    sync,
    total_supply_response,
    v2_swap,
    v3_burn,
    v3_mint,
    v3_swap,
    v4_initialize,
    v4_modify_liquidity,
)
from .. import airlock, erc20, uniswap_v2, uniswap_v3, uniswap_v4
from ..base import EventSpec, log_sort_key, log_topic0
from ..registry import DecoderRegistry, build_default_registry, orient_pair, sort_tokens


def decode(spec):
    return EventSpec.parse(spec[0]).decode(make_log(spec, block_number=120, log_index=3))


def v2_pool(base_is_token0: bool = True) -> Pool:
    token0, token1 = (TOKEN, WETH) if base_is_token0 else (WETH, TOKEN)
    return Pool(
        chain_id=1, address=PAIR, protocol=ProtocolVersion.V2, token0=token0, token1=token1,
        base_token=TOKEN, quote_token=WETH, state=V2State(), created_block=100,
    )


def v3_pool(tick: int = 0, liquidity: int = 1000) -> Pool:
    return Pool(
        chain_id=1, address=POOL, protocol=ProtocolVersion.V3, token0=TOKEN, token1=WETH,
        base_token=TOKEN, quote_token=WETH,
        state=ConcentratedState(liquidity=liquidity, sqrt_price_x96=2**96, tick=tick),
        created_block=100,
    )


class TestEventSpec:
    """Signature parsing and log decoding."""

    def test_parse_signature(self):
        spec = EventSpec.parse(PROTOCOLS.UNISWAP_V2_PAIR_CREATED)
        assert spec.name == "PairCreated"
        assert spec.input_names == ["token0", "token1", "pair", "pairIndex"]
        assert [i.indexed for i in spec.inputs] == [True, True, False, False]
        assert spec.canonical == "PairCreated(address,address,address,uint256)"

    @pytest.mark.parametrize("signature,topic0", [
        (PROTOCOLS.UNISWAP_V2_SYNC, "0x1c411e9a96e071241c2f21f7726b17ae89e3cab4c78be50e062b03a9fffbbad1"),
        (PROTOCOLS.UNISWAP_V2_SWAP, "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"),
        (PROTOCOLS.UNISWAP_V2_PAIR_CREATED, "0x0d3648bd0f6ba80134a33ba9275ac585d9d315f0ad8355cddefde31afa28d0e9"),
        (PROTOCOLS.UNISWAP_V3_POOL_CREATED, "0x783cca1c0412dd0d695e784568c96da2e9c22ff989357a2e8b1d9b2b4e6b7118"),
        (PROTOCOLS.UNISWAP_V3_SWAP, "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"),
    ])
    def test_topic_hashes(self, signature, topic0):
        """Topic hashes match the deployed contracts' events."""
        assert EventSpec.parse(signature).topic0 == topic0

    def test_malformed_signature(self):
        with pytest.raises(ValueError):
            EventSpec.parse("Sync uint112 reserve0")

    def test_decode_log(self):
        """Indexed inputs come from topics, the rest from data."""
        event = decode(pair_created())
        assert event.name == "PairCreated"
        assert event.args == {"token0": TOKEN, "token1": WETH, "pair": PAIR, "pairIndex": 1}
        assert event.block_number == 120
        assert event.log_index == 3

    def test_decode_signed_indexed_ticks(self):
        event = decode(v3_mint(-120, 60, 500))
        assert event.args["tickLower"] == -120
        assert event.args["tickUpper"] == 60

    def test_topic_mismatch(self):
        log = make_log(sync(1, 2))
        with pytest.raises(DecodeAnomaly, match="topic0"):
            EventSpec.parse(PROTOCOLS.UNISWAP_V2_SWAP).decode(log)

    def test_missing_indexed_topic(self):
        log = make_log(pair_created())
        log["topics"] = log["topics"][:2]
        with pytest.raises(DecodeAnomaly, match="indexed topics"):
            EventSpec.parse(PROTOCOLS.UNISWAP_V2_PAIR_CREATED).decode(log)

    def test_truncated_data(self):
        log = make_log(sync(1, 2))
        log["data"] = HexBytes(bytes(log["data"])[:40])
        with pytest.raises(DecodeAnomaly):
            EventSpec.parse(PROTOCOLS.UNISWAP_V2_SYNC).decode(log)

    def test_log_helpers(self):
        log = make_log(sync(1, 2), block_number=7, log_index=4)
        assert log_sort_key(log) == (7, 4)
        assert log_topic0(log) == EventSpec.parse(PROTOCOLS.UNISWAP_V2_SYNC).topic0
        assert log_topic0({"topics": []}) == ""


class TestRegistry:
    """Handler lookup and pair orientation."""

    def test_default_registry(self):
        registry = build_default_registry(PROTOCOLS)
        assert len(registry) == 8
        sync_topic = EventSpec.parse(PROTOCOLS.UNISWAP_V2_SYNC).topic0
        spec, handler = registry.lookup(ProtocolVersion.V2, sync_topic)
        assert spec.name == "Sync"
        assert handler is uniswap_v2.on_sync
        assert registry.lookup(ProtocolVersion.V3, sync_topic) is None

    def test_duplicate_registration(self):
        registry = DecoderRegistry()
        spec = EventSpec.parse(PROTOCOLS.UNISWAP_V2_SYNC)
        registry.register(ProtocolVersion.V2, spec, uniswap_v2.on_sync)
        with pytest.raises(ValueError, match="Duplicate"):
            registry.register(ProtocolVersion.V2, spec, uniswap_v2.on_sync)

    def test_orient_pair(self):
        """The oracle-valued token is the quote, otherwise token1."""
        chain = make_chain()
        assert orient_pair(chain, TOKEN, WETH) == (TOKEN, WETH)
        assert orient_pair(chain, WETH, TOKEN) == (TOKEN, WETH)
        other = "0x" + "33" * 20
        assert orient_pair(chain, TOKEN, other) == (TOKEN, other)

    def test_sort_tokens(self):
        assert sort_tokens(WETH, TOKEN) == (TOKEN, WETH)
        assert sort_tokens("0x" + "EE" * 20, TOKEN) == (TOKEN, WETH)


class TestUniswapV2:

    def test_sync_replaces_reserves(self):
        update = uniswap_v2.on_sync(v2_pool(), decode(sync(1_000_000, 10)), 1234)
        assert update.pool.state == V2State(1_000_000, 10)
        assert update.pool.last_updated_block == 120
        assert update.pool.last_updated_timestamp == 1234
        assert update.swap_quote_amount is None

    def test_swap_quote_amount_base_token0(self):
        """Quote is token1: buys pay amount1In, sells receive amount1Out."""
        update = uniswap_v2.on_swap(v2_pool(True), decode(v2_swap(0, 7, 500, 0)), 0)
        assert update.swap_quote_amount == 7
        assert update.pool.state == V2State()

    def test_swap_quote_amount_base_token1(self):
        update = uniswap_v2.on_swap(v2_pool(False), decode(v2_swap(0, 500, 9, 0)), 0)
        assert update.swap_quote_amount == 9

    def test_build_pair(self):
        pool = uniswap_v2.build_pair(make_chain(), decode(pair_created()), PAIR)
        assert pool.base_token == TOKEN
        assert pool.quote_token == WETH
        assert pool.oracle_id == "eth_usd"
        assert pool.created_block == 120
        assert not pool.has_state


class TestUniswapV3:

    def test_mint_in_range(self):
        """A position straddling the current tick adds active liquidity."""
        update = uniswap_v3.on_mint(v3_pool(tick=0), decode(v3_mint(-60, 60, 500)), 0)
        assert update.pool.state.liquidity == 1500

    def test_mint_out_of_range(self):
        """A position above the current tick leaves active liquidity alone."""
        pool = v3_pool(tick=0)
        update = uniswap_v3.on_mint(pool, decode(v3_mint(60, 120, 500)), 0)
        assert update.pool.state.liquidity == 1000

    def test_range_bounds(self):
        """tickLower is inclusive, tickUpper exclusive."""
        at_lower = uniswap_v3.apply_liquidity_delta(v3_pool(tick=60), 60, 120, 10, 1, 0)
        at_upper = uniswap_v3.apply_liquidity_delta(v3_pool(tick=120), 60, 120, 10, 1, 0)
        assert at_lower.state.liquidity == 1010
        assert at_upper.state.liquidity == 1000

    def test_burn(self):
        update = uniswap_v3.on_burn(v3_pool(tick=0), decode(v3_burn(-60, 60, 400)), 0)
        assert update.pool.state.liquidity == 600

    def test_burn_underflow(self):
        with pytest.raises(DecodeAnomaly, match="underflow"):
            uniswap_v3.on_burn(v3_pool(tick=0), decode(v3_burn(-60, 60, 5000)), 0)

    def test_swap(self):
        update = uniswap_v3.on_swap(v3_pool(), decode(v3_swap(-100, 25, 2**97, 777, 6931)), 0)
        assert update.pool.state == ConcentratedState(liquidity=777, sqrt_price_x96=2**97, tick=6931)
        assert update.swap_quote_amount == 25

    def test_build_pool(self):
        pool = uniswap_v3.build_pool(make_chain(), decode(pool_created()), POOL)
        assert pool.protocol is ProtocolVersion.V3
        assert pool.state == ConcentratedState()
        assert not pool.has_state


class TestUniswapV4:

    def test_build_pool_from_initialize(self):
        """Initialize carries currencies, hooks and the starting price."""
        event = decode(v4_initialize(2**96, 0))
        pool = uniswap_v4.build_pool(make_chain(), event, uniswap_v4.pool_key(event))
        assert pool.address == POOL_ID
        assert pool.base_token == TOKEN
        assert pool.quote_token == "0x" + "00" * 20
        assert pool.hooks == "0x" + "d4" * 20
        assert pool.state.sqrt_price_x96 == 2**96
        assert pool.has_state

    def test_modify_liquidity(self):
        event = decode(v4_initialize(2**96, 0))
        pool = uniswap_v4.build_pool(make_chain(), event, POOL_ID)
        added = uniswap_v4.on_modify_liquidity(pool, decode(v4_modify_liquidity(-60, 60, 900)), 0).pool
        removed = uniswap_v4.on_modify_liquidity(added, decode(v4_modify_liquidity(-60, 60, -400)), 0).pool
        assert added.state.liquidity == 900
        assert removed.state.liquidity == 500


class TestAirlock:

    def test_asset_data_call(self):
        selector, args = airlock.asset_data_call(TOKEN)
        assert len(selector) == 4
        assert args[-20:] == bytes.fromhex("11" * 20)

    def test_decode_asset_data(self):
        data = airlock.decode_asset_data(TOKEN, asset_data_response(num_tokens_to_sell=5, total_supply=9))
        assert data.asset == TOKEN
        assert data.numeraire == WETH
        assert data.pool == POOL
        assert data.num_tokens_to_sell == 5
        assert data.total_supply == 9

    def test_decode_asset_data_malformed(self):
        with pytest.raises(DecodeAnomaly):
            airlock.decode_asset_data(TOKEN, b"\x00" * 31)

    def test_curve_pool_without_existing_pool(self):
        """Create for an unknown pool assumes a V3 pool at poolOrHook."""
        chain = make_chain()
        data = airlock.decode_asset_data(TOKEN, asset_data_response(total_supply=1000))
        pool = airlock.curve_pool(chain, decode(airlock_create()), data, None)
        assert pool.address == POOL
        assert pool.protocol is ProtocolVersion.V3
        assert (pool.token0, pool.token1) == (TOKEN, WETH)
        assert pool.total_supply == 1000
        assert pool.bonding_curve.graduation_threshold == chain.graduation_threshold_usd
        assert not pool.is_graduated

    def test_migrate(self):
        pool = v3_pool()
        pool.bonding_curve = BondingCurve(tokens_to_sell=1, total_supply=2, graduation_threshold=3)
        migrated = airlock.migrate(pool)
        assert migrated.is_graduated
        assert airlock.migrate(migrated) is migrated

    def test_migrate_without_curve(self):
        with pytest.raises(DecodeAnomaly):
            airlock.migrate(v3_pool())


class TestERC20:

    def test_total_supply_call(self):
        selector, args = erc20.total_supply_call()
        assert selector == bytes.fromhex("18160ddd")
        assert args == b""

    def test_decode_total_supply(self):
        assert erc20.decode_total_supply(TOKEN, total_supply_response(10**27)) == 10**27

    def test_decode_total_supply_malformed(self):
        with pytest.raises(DecodeAnomaly, match="totalSupply"):
            erc20.decode_total_supply(TOKEN, b"\x00" * 31)

    def test_base_token_of_creation_events(self):
        """The supply is read for the non-quote side of the new pool."""
        chain = make_chain()
        assert uniswap_v2.base_token(chain, decode(pair_created(token0=WETH, token1=TOKEN))) == TOKEN
        assert uniswap_v3.base_token(chain, decode(pool_created())) == TOKEN
        assert uniswap_v4.base_token(chain, decode(v4_initialize(2**96, 0))) == TOKEN
