"""
Tests for the per-chain ingestion pipeline.

Every scenario runs against an in-process FakeChain and an in-memory
database, so blocks, forks and RPC failures are fully scripted.
"""

import asyncio

import pytest
from sqlalchemy import select

from ...config.chains import ETH_USD
from ...core.storage import IndexerDatabase, PoolStore
from ...core.storage.schema import oracle_samples
from ...errors import ChainHalted, ReorgDepthExceeded
from ...models import WAD, OracleSample, V2State
from ...pricing import MetricAggregator, OraclePriceConverter, VolumeTracker
from ...pricing.v3_math import Q96
from ...resolver import AddressResolver
from ...scheduler import ETH_PRICE, CheckpointScheduler, GraduationListener, Job, eth_price_job, pool_metrics_job
from ...testing import (
    AIRLOCK,
    CHAIN_ID,
    ETH_RATE,
    OTHER_PAIR,
    OTHER_TOKEN,
    PAIR,
    POOL,
    POOL_ID,
    PRICE_FEED,
    PROTOCOLS,
    TOKEN,
    FakeChain,
    airlock_create,
    airlock_migrate,
    asset_data_response,
    block_hash,
    block_timestamp,
    make_chain,
    make_settings,
    pair_created,
    pool_created,
    round_data_response,
    sync,
    total_supply_response,
    v2_swap,
    v3_initialize,
    v3_mint,
    v3_swap,
    v4_initialize,
    v4_modify_liquidity,
    v4_swap,
)
from ..pipeline import ChainIngestionPipeline, PipelineState


def build_pipeline(db, rpc, settings=None, scheduler=None, chain=None, volume=None):
    chain = chain or make_chain()
    store = PoolStore()
    resolver = AddressResolver(store, [chain])
    resolver.register_chain_defaults(chain, PROTOCOLS)
    aggregator = MetricAggregator(OraclePriceConverter(), volume or VolumeTracker())
    return ChainIngestionPipeline(
        chain=chain,
        db=db,
        rpc=rpc,
        resolver=resolver,
        aggregator=aggregator,
        settings=settings or make_settings(),
        store=store,
        scheduler=scheduler,
    )


async def run_to_head(pipeline, max_steps=100):
    for _ in range(max_steps):
        if not await pipeline.step():
            return
    raise AssertionError("pipeline did not reach head")


def fresh_db(rate_block=100):
    db = IndexerDatabase({"url": "sqlite://"})
    db.connect()
    with db.begin() as conn:
        OraclePriceConverter().record_sample(
            conn, OracleSample(CHAIN_ID, ETH_USD, rate_block, ETH_RATE, block_timestamp(rate_block))
        )
    return db


def pools(db, chain_id=CHAIN_ID):
    with db.begin() as conn:
        return [p.to_dict() for p in PoolStore().list_pools(conn, chain_id)]


def get_pool(pipeline, address):
    with pipeline.db.begin() as conn:
        return pipeline.store.get_pool(conn, CHAIN_ID, address)


class RecordingListener(GraduationListener):
    def __init__(self):
        self.events = []

    async def on_graduation(self, event):
        self.events.append(event)


class FailingListener(GraduationListener):
    async def on_graduation(self, event):
        raise RuntimeError("webhook down")


class TestCatchUp:
    """Batch ingestion up to head."""

    @pytest.mark.asyncio
    async def test_v2_pair_end_to_end(self, db, fake_chain, record_rate):
        """A pair created and synced in the same block is priced in that block."""
        record_rate()
        fake_chain.on_call(TOKEN, PROTOCOLS.ERC20_TOTAL_SUPPLY, lambda args, block: total_supply_response(2_000_000))
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        pool = get_pool(pipeline, PAIR)
        assert pool.state == V2State(1_000_000, 10)
        assert pool.price == 10 * WAD // 1_000_000
        assert pool.liquidity_usd == 40_000
        assert pool.total_supply == 2_000_000
        assert pool.market_cap_usd == 2_000_000 * pool.price // WAD * ETH_RATE // WAD == 40_000
        assert ("call_contract", (TOKEN, 100)) in fake_chain.calls
        assert pool.last_updated_block == 100
        assert pipeline.cursor == 100
        assert pipeline.state is PipelineState.LIVE

        # The pair's own logs were fetched once it was discovered
        fetched = [args[2] for name, args in fake_chain.calls if name == "get_logs"]
        assert any(PAIR in addresses for addresses in fetched)

    @pytest.mark.asyncio
    async def test_swap_volume(self, db, fake_chain, record_rate):
        record_rate()
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        fake_chain.mine(101, [sync(999_000, 13), v2_swap(0, 3, 1_000, 0)])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        assert get_pool(pipeline, PAIR).volume_usd_24h == 6_000

    @pytest.mark.asyncio
    async def test_v3_pool_discovered_mid_batch(self, db, fake_chain, record_rate):
        """Logs of a pool created inside the batch are applied in order."""
        record_rate()
        fake_chain.mine(100, [pool_created(), v3_initialize(Q96, 0), v3_mint(-60, 60, 10 * WAD)])
        fake_chain.mine_empty(101, 102)
        fake_chain.mine(103, [v3_swap(-1_000, WAD, Q96, 10 * WAD, 0)])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        pool = get_pool(pipeline, POOL)
        assert pool.state.liquidity == 10 * WAD
        assert pool.price == WAD
        assert pool.liquidity_usd == 40_000 * WAD
        assert pool.volume_usd_24h == 2_000 * WAD
        assert pool.last_updated_block == 103

    @pytest.mark.asyncio
    async def test_v4_pool_routed_by_id(self, db, fake_chain, record_rate):
        record_rate()
        fake_chain.mine(100, [
            v4_initialize(Q96, 0),
            v4_modify_liquidity(-60, 60, 5 * WAD),
            v4_swap(WAD, -1_000, Q96, 5 * WAD, 0),
        ])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        pool = get_pool(pipeline, POOL_ID)
        assert pool.base_token == TOKEN
        assert pool.state.liquidity == 5 * WAD
        assert pool.liquidity_usd == 20_000 * WAD
        assert pool.volume_usd_24h == 2_000 * WAD

    @pytest.mark.asyncio
    async def test_malformed_log_is_skipped(self, db, fake_chain, record_rate):
        """A log that does not decode is dropped; the rest of the block applies."""
        record_rate()
        fake_chain.mine(100, [pair_created(), sync(1, 1), sync(1_000_000, 10)])
        fake_chain.logs[100][1]["data"] = fake_chain.logs[100][1]["data"][:20]
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        assert get_pool(pipeline, PAIR).state == V2State(1_000_000, 10)
        assert pipeline.cursor == 100

    @pytest.mark.asyncio
    async def test_missing_oracle_keeps_ingesting(self, db, fake_chain):
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        pool = get_pool(pipeline, PAIR)
        assert pool.price == 10 * WAD // 1_000_000
        assert pool.liquidity_usd == 0

    @pytest.mark.asyncio
    async def test_reverting_total_supply_leaves_market_cap_unset(self, db, fake_chain, record_rate):
        """A base token without totalSupply() is still indexed, just without a market cap."""
        record_rate()
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        pool = get_pool(pipeline, PAIR)
        assert ("call_contract", (TOKEN, 100)) in fake_chain.calls
        assert pool.total_supply == 0
        assert pool.market_cap_usd == 0
        assert pool.liquidity_usd == 40_000

    @pytest.mark.asyncio
    async def test_trailing_distance(self, db, fake_chain):
        """Catch-up stops short of head by the trailing distance."""
        fake_chain.mine(100, [pair_created()])
        fake_chain.mine_empty(101, 120)
        pipeline = build_pipeline(db, fake_chain, settings=make_settings(TRAILING_DISTANCE=5, BLOCKS_PER_BATCH=100))

        assert await pipeline.step()
        assert pipeline.cursor == 115
        assert pipeline.state is PipelineState.CATCHING_UP

        # Within the trailing distance the pipeline goes live, one block per step
        assert await pipeline.step()
        assert pipeline.state is PipelineState.LIVE
        assert pipeline.cursor == 116


class TestReplay:
    """Deterministic state regardless of batching or restarts."""

    @staticmethod
    def mine_history(chain: FakeChain):
        chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        chain.mine(101, [sync(990_000, 11), v2_swap(0, 1, 10_000, 0)])
        chain.mine_empty(102, 103)
        chain.mine(104, [sync(1_010_000, 9), v2_swap(20_000, 0, 0, 2)])
        chain.mine(105, [sync(1_000_000, 10)])

    @pytest.mark.asyncio
    async def test_batch_size_does_not_matter(self):
        results = []
        for batch in (1, 3, 100):
            chain = FakeChain()
            self.mine_history(chain)
            db = fresh_db()
            await run_to_head(build_pipeline(db, chain, settings=make_settings(BLOCKS_PER_BATCH=batch)))
            results.append(pools(db))
        assert results[0] == results[1] == results[2]
        assert results[0][0]["volume_usd_24h"] == str(1 * 2000 + 2 * 2000)

    @pytest.mark.asyncio
    async def test_restart_resumes_from_cursor(self):
        """A new pipeline on the same database continues where the last stopped."""
        chain = FakeChain()
        self.mine_history(chain)
        db = fresh_db()
        first = build_pipeline(db, chain, settings=make_settings(BLOCKS_PER_BATCH=2))
        await first.step()
        assert first.cursor == 101

        second = build_pipeline(db, chain, settings=make_settings(BLOCKS_PER_BATCH=2))
        assert second.load_cursor() == 101
        await run_to_head(second)

        reference = FakeChain()
        self.mine_history(reference)
        reference_db = fresh_db()
        await run_to_head(build_pipeline(reference_db, reference))
        assert pools(db) == pools(reference_db)


class TestReorg:
    """Live-mode fork detection and recovery."""

    @pytest.mark.asyncio
    async def test_reorg_matches_fresh_ingestion(self, db, fake_chain, record_rate):
        """A -> B -> C replaced by A -> B' -> C' -> D' ends as if B' was always canonical."""
        record_rate()
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        fake_chain.mine(101, [sync(1_000_000, 20)])
        fake_chain.mine(102, [sync(1_000_000, 30)])
        pipeline = build_pipeline(db, fake_chain)
        await run_to_head(pipeline)
        assert get_pool(pipeline, PAIR).state == V2State(1_000_000, 30)

        fake_chain.drop_from(101)
        fake_chain.mine(101, [sync(1_000_000, 21)], fork="b")
        fake_chain.mine(102, [sync(1_000_000, 31)], fork="b")
        fake_chain.mine(103, [sync(1_000_000, 41), v2_swap(0, 5, 100, 0)], fork="b")

        await run_to_head(pipeline)

        assert pipeline.cursor == 103
        assert pipeline.state is PipelineState.LIVE
        with db.begin() as conn:
            assert pipeline.store.get_block(conn, CHAIN_ID, 102).hash == block_hash(102, "b")

        reference = FakeChain()
        reference.mine(100, [pair_created(), sync(1_000_000, 10)])
        reference.mine(101, [sync(1_000_000, 21)], fork="b")
        reference.mine(102, [sync(1_000_000, 31)], fork="b")
        reference.mine(103, [sync(1_000_000, 41), v2_swap(0, 5, 100, 0)], fork="b")
        reference_db = fresh_db()
        await run_to_head(build_pipeline(reference_db, reference))

        assert pools(db) == pools(reference_db)

    @pytest.mark.asyncio
    async def test_reorg_replay_keeps_volume_window(self, db, fake_chain, record_rate):
        """A swap that aged out on the abandoned branch is still counted when replaying the new one."""
        record_rate()
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        fake_chain.mine(101, [sync(999_999, 11), v2_swap(0, 1, 1, 0)])
        fake_chain.mine_empty(102, 105)
        # 60s after block 101, so the swap is outside this block's window
        fake_chain.mine(106, [sync(1_000_000, 10)])
        pipeline = build_pipeline(db, fake_chain, volume=VolumeTracker(window_seconds=60))
        await run_to_head(pipeline)
        assert get_pool(pipeline, PAIR).volume_usd_24h == 0

        fake_chain.drop_from(104)
        fake_chain.mine(104, [sync(1_000_000, 12)], fork="b")
        fake_chain.mine_empty(105, 107, fork="b")
        await run_to_head(pipeline)

        assert pipeline.cursor == 107
        assert get_pool(pipeline, PAIR).volume_usd_24h == 2_000

        reference = FakeChain()
        reference.mine(100, [pair_created(), sync(1_000_000, 10)])
        reference.mine(101, [sync(999_999, 11), v2_swap(0, 1, 1, 0)])
        reference.mine_empty(102, 103)
        reference.mine(104, [sync(1_000_000, 12)], fork="b")
        reference.mine_empty(105, 107, fork="b")
        reference_db = fresh_db()
        await run_to_head(build_pipeline(reference_db, reference, volume=VolumeTracker(window_seconds=60)))

        assert pools(db) == pools(reference_db)

    @pytest.mark.asyncio
    async def test_orphaned_pool_removed(self, db, fake_chain):
        """A pool created only on the abandoned branch disappears."""
        fake_chain.mine(100, [pair_created()])
        fake_chain.mine(101, [pair_created(token0=OTHER_TOKEN, pair=OTHER_PAIR)])
        pipeline = build_pipeline(db, fake_chain)
        await run_to_head(pipeline)

        fake_chain.drop_from(101)
        fake_chain.mine_empty(101, 102, fork="b")
        await run_to_head(pipeline)

        assert get_pool(pipeline, OTHER_PAIR) is None
        with db.begin() as conn:
            assert OTHER_PAIR not in pipeline.resolver.watch_set(conn, CHAIN_ID)

    @pytest.mark.asyncio
    async def test_reorg_deeper_than_limit_halts(self, db, fake_chain):
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        for number in range(101, 106):
            fake_chain.mine(number, [sync(1_000_000, number)])
        pipeline = build_pipeline(db, fake_chain, settings=make_settings(MAX_REORG_DEPTH=2))
        await run_to_head(pipeline)

        fake_chain.drop_from(101)
        for number in range(101, 107):
            fake_chain.mine(number, [sync(1_000_000, number + 1000)], fork="b")

        with pytest.raises(ReorgDepthExceeded):
            await pipeline.step()
        assert pipeline.state is PipelineState.HALTED
        assert pipeline.cursor == 105
        with pytest.raises(ChainHalted):
            await pipeline.step()


class TestFailures:
    """RPC failure handling."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, db, fake_chain):
        fake_chain.mine(100, [pair_created()])
        fake_chain.failures = 2
        pipeline = build_pipeline(db, fake_chain)

        await run_to_head(pipeline)

        assert pipeline.cursor == 100

    @pytest.mark.asyncio
    async def test_exhausted_retries_halt_chain(self, db, fake_chain):
        fake_chain.mine(100, [pair_created()])
        fake_chain.failures = 1_000
        pipeline = build_pipeline(db, fake_chain)

        with pytest.raises(ChainHalted):
            await pipeline.step()

        assert pipeline.state is PipelineState.HALTED
        assert "get_block_number" in pipeline.halt_reason
        with db.begin() as conn:
            assert pipeline.store.get_cursor(conn, CHAIN_ID) is None

    @pytest.mark.asyncio
    async def test_run_returns_when_halted(self, db, fake_chain):
        fake_chain.mine(100, [pair_created()])
        fake_chain.failures = 1_000
        pipeline = build_pipeline(db, fake_chain)

        await asyncio.wait_for(pipeline.run(), timeout=5)

        assert pipeline.state is PipelineState.HALTED

    @pytest.mark.asyncio
    async def test_stop(self, db, fake_chain):
        fake_chain.mine(100, [pair_created()])
        pipeline = build_pipeline(db, fake_chain)
        task = asyncio.create_task(pipeline.run())
        for _ in range(100):
            if pipeline.state is PipelineState.LIVE:
                break
            await asyncio.sleep(0.01)

        pipeline.stop()
        await asyncio.wait_for(task, timeout=5)

        assert pipeline.stopped
        assert pipeline.cursor == 100


class TestLaunchpad:
    """Airlock Create, bonding curves and Migrate."""

    @pytest.mark.asyncio
    async def test_create_and_migrate(self, db, fake_chain, record_rate):
        record_rate()
        fake_chain.on_call(AIRLOCK, PROTOCOLS.AIRLOCK_GET_ASSET_DATA, lambda args, block: asset_data_response())
        fake_chain.mine(100, [pool_created(), airlock_create(), v3_initialize(Q96, 0)])
        fake_chain.mine(101, [airlock_migrate()])
        fake_chain.mine(102, [v3_swap(-1, 1, 2 * Q96, 0, 13863)])
        pipeline = build_pipeline(db, fake_chain, settings=make_settings(BLOCKS_PER_BATCH=1))
        listener = RecordingListener()
        pipeline.add_graduation_listener(FailingListener())
        pipeline.add_graduation_listener(listener)

        await pipeline.step()

        pool = get_pool(pipeline, POOL)
        assert pool.bonding_curve is not None
        assert not pool.is_graduated
        assert pool.total_supply == 1_000_000_000 * WAD
        assert pool.price == WAD
        assert ("call_contract", (AIRLOCK, 100)) in fake_chain.calls
        with db.begin() as conn:
            assert pipeline.store.get_asset_data(conn, CHAIN_ID, TOKEN).pool == POOL

        await pipeline.step()

        assert len(listener.events) == 1
        event = listener.events[0]
        assert event.pool == POOL
        assert event.base_token == TOKEN
        assert event.block_number == 101
        assert get_pool(pipeline, POOL).is_graduated
        with db.begin() as conn:
            assert not pipeline.store.get_watched_address(conn, CHAIN_ID, POOL).active

        # Swaps after migration are no longer followed
        await run_to_head(pipeline)
        assert pipeline.cursor == 102
        assert get_pool(pipeline, POOL).price == WAD
        assert len(listener.events) == 1

    @pytest.mark.asyncio
    async def test_graduation_threshold_crossed(self, db, fake_chain, record_rate):
        """Liquidity reaching the threshold graduates the curve exactly once."""
        record_rate()
        fake_chain.on_call(AIRLOCK, PROTOCOLS.AIRLOCK_GET_ASSET_DATA, lambda args, block: asset_data_response())
        fake_chain.mine(100, [pool_created(), airlock_create(), v3_initialize(Q96, 0)])
        fake_chain.mine(101, [v3_mint(-60, 60, 20 * WAD)])
        fake_chain.mine(102, [v3_mint(-60, 60, 1 * WAD)])
        pipeline = build_pipeline(db, fake_chain)
        listener = RecordingListener()
        pipeline.add_graduation_listener(listener)

        await run_to_head(pipeline)

        assert [e.block_number for e in listener.events] == [101]
        assert listener.events[0].graduation_balance == 80_000 * WAD
        assert get_pool(pipeline, POOL).is_graduated

    @pytest.mark.asyncio
    async def test_graduation_from_periodic_refresh(self, db, fake_chain, record_rate):
        """A rate rise that lifts a curve over the threshold graduates it in the pool_metrics run."""
        record_rate(100, ETH_RATE)
        record_rate(104, 5000 * WAD)
        fake_chain.on_call(AIRLOCK, PROTOCOLS.AIRLOCK_GET_ASSET_DATA, lambda args, block: asset_data_response())
        fake_chain.mine(100, [pool_created(), airlock_create(), v3_initialize(Q96, 0)])
        fake_chain.mine(101, [v3_mint(-60, 60, 10 * WAD)])
        fake_chain.mine_empty(102, 106)
        chain = make_chain()
        scheduler = CheckpointScheduler(db, [chain])
        pipeline = build_pipeline(db, fake_chain, scheduler=scheduler, chain=chain)
        scheduler.add_job(pool_metrics_job(pipeline.store, pipeline.aggregator, interval=5))
        listener = RecordingListener()
        pipeline.add_graduation_listener(listener)

        await run_to_head(pipeline)

        assert len(listener.events) == 1
        event = listener.events[0]
        assert event.pool == POOL
        assert event.block_number == 105
        assert event.graduation_balance == 100_000 * WAD
        assert get_pool(pipeline, POOL).is_graduated


class TestScheduling:
    """Jobs run from the pipeline at their due blocks."""

    @pytest.mark.asyncio
    async def test_due_blocks_applied_without_logs(self, db, fake_chain):
        ranges = []

        async def recorder(ctx):
            ranges.append((ctx.from_block, ctx.to_block))

        chain = make_chain()
        scheduler = CheckpointScheduler(db, [chain])
        scheduler.add_job(Job(name="recorder", interval=5, body=recorder))
        fake_chain.mine(100, [pair_created()])
        fake_chain.mine_empty(101, 112)
        pipeline = build_pipeline(db, fake_chain, settings=make_settings(BLOCKS_PER_BATCH=20),
                                  scheduler=scheduler, chain=chain)

        await run_to_head(pipeline)

        assert ranges == [(99, 100), (100, 105), (105, 110)]
        assert fake_chain.count("get_block_header") == 4

    @pytest.mark.asyncio
    async def test_reorg_rewinds_checkpoints(self, db, fake_chain):
        ranges = []

        async def recorder(ctx):
            ranges.append((ctx.from_block, ctx.to_block))

        chain = make_chain()
        scheduler = CheckpointScheduler(db, [chain])
        scheduler.add_job(Job(name="recorder", interval=2, body=recorder))
        fake_chain.mine(100, [pair_created()])
        fake_chain.mine_empty(101, 102)
        pipeline = build_pipeline(db, fake_chain, scheduler=scheduler, chain=chain)
        await run_to_head(pipeline)
        assert ranges == [(99, 100), (100, 102)]

        fake_chain.drop_from(101)
        fake_chain.mine_empty(101, 103, fork="b")
        await run_to_head(pipeline)

        assert ranges[2:] == [(100, 102)]
        with db.begin() as conn:
            assert scheduler.checkpoints.get(conn, "recorder", CHAIN_ID).last_processed_block == 102

    @staticmethod
    async def ingest_with_eth_price(db, chain_rpc):
        chain = make_chain()
        scheduler = CheckpointScheduler(db, [chain])
        pipeline = build_pipeline(db, chain_rpc, settings=make_settings(BLOCKS_PER_BATCH=1),
                                  scheduler=scheduler, chain=chain)
        scheduler.add_job(eth_price_job(chain_rpc, pipeline.oracle, interval=5))
        await run_to_head(pipeline)
        return pipeline

    @staticmethod
    def sample_blocks(db):
        with db.begin() as conn:
            rows = conn.execute(select(oracle_samples).order_by(oracle_samples.c.block_number))
            return [(row.block_number, row.rate) for row in rows]

    @pytest.mark.asyncio
    async def test_reorg_off_interval_keeps_job_cadence(self, db, fake_chain):
        """An ancestor between due blocks resumes from the last canonical run, not from the ancestor."""
        def feed(args, block):
            return round_data_response((2000 + block) * 10**8)

        fake_chain.on_call(PRICE_FEED, PROTOCOLS.CHAINLINK_LATEST_ROUND_DATA, feed)
        fake_chain.mine(100, [pair_created(), sync(1_000_000, 10)])
        fake_chain.mine_empty(101, 112)
        pipeline = await self.ingest_with_eth_price(db, fake_chain)
        assert [block for block, _ in self.sample_blocks(db)] == [100, 105, 110]

        fake_chain.drop_from(108)
        fake_chain.mine_empty(108, 113, fork="b")
        await run_to_head(pipeline)

        assert pipeline.cursor == 113
        with db.begin() as conn:
            assert pipeline.store.get_block(conn, CHAIN_ID, 107).hash == block_hash(107)
            assert pipeline.scheduler.checkpoints.runs(conn, ETH_PRICE, CHAIN_ID) == [100, 105, 110]

        reference = FakeChain()
        reference.on_call(PRICE_FEED, PROTOCOLS.CHAINLINK_LATEST_ROUND_DATA, feed)
        reference.mine(100, [pair_created(), sync(1_000_000, 10)])
        reference.mine_empty(101, 107)
        reference.mine_empty(108, 113, fork="b")
        reference_db = IndexerDatabase({"url": "sqlite://"})
        reference_db.connect()
        await self.ingest_with_eth_price(reference_db, reference)

        assert self.sample_blocks(db) == self.sample_blocks(reference_db)
        assert pools(db) == pools(reference_db)
