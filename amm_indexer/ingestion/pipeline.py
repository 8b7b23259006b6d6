"""
Per-chain event ingestion pipeline.

State machine:
    CATCHING_UP     pull log batches up to head - trailing distance
    LIVE            one block at a time, checking each parent hash
    REORG_RECOVERY  roll back to the common ancestor, then resume
    HALTED          terminal; needs operator action

Each block is applied in one database transaction together with its header
and the cursor, so a crash resumes from the last fully applied block. RPC
calls happen before the transaction opens; no transaction spans an await.
"""

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from sqlalchemy.engine import Connection

from ..config.chains import ZERO_ADDRESS, ChainConfig
from ..config.indexer import IndexerSettings
from ..core.storage import IndexerDatabase, PoolStore
from ..decoders import airlock, erc20
from ..decoders.base import log_sort_key, log_topic0, normalize_hex
from ..decoders.registry import DecoderRegistry, build_default_registry
from ..errors import ChainHalted, DecodeAnomaly, ReorgDepthExceeded
from ..models import AssetData, BlockHeader, GraduationEvent, Pool, ProtocolVersion
from ..pricing import MetricAggregator, OraclePriceConverter
from ..resolver import AddressResolver
from ..scheduler.base import GraduationListener
from ..scheduler.checkpoints import CheckpointStore
from ..scheduler.scheduler import CheckpointScheduler
from .errors import ErrorHandler, retry_rpc
from .reorg import ReorgHandler
from .rpc import RpcClient

logger = logging.getLogger(__name__)

LogKey = Tuple[int, int]


class PipelineState(Enum):
    CATCHING_UP = "catching_up"
    LIVE = "live"
    REORG_RECOVERY = "reorg_recovery"
    HALTED = "halted"


class ChainIngestionPipeline:
    """
    Ordered log ingestion for one chain.

    Everything mutable here belongs to this chain's task; the database is
    the only shared resource and rows are chain-scoped.
    """

    def __init__(
        self,
        chain: ChainConfig,
        db: IndexerDatabase,
        rpc: RpcClient,
        resolver: AddressResolver,
        aggregator: MetricAggregator,
        settings: IndexerSettings,
        store: Optional[PoolStore] = None,
        registry: Optional[DecoderRegistry] = None,
        scheduler: Optional[CheckpointScheduler] = None,
        checkpoints: Optional[CheckpointStore] = None,
    ):
        self.chain = chain
        self.chain_id = chain.chain_id
        self.db = db
        self.rpc = rpc
        self.resolver = resolver
        self.aggregator = aggregator
        self.oracle: OraclePriceConverter = aggregator.oracle
        self.settings = settings
        self.store = store or resolver.store
        self.registry = registry or build_default_registry()
        self.scheduler = scheduler
        self.reorg = ReorgHandler(
            chain_id=chain.chain_id,
            db=db,
            store=self.store,
            oracle=self.oracle,
            volume=aggregator.volume,
            checkpoints=checkpoints or (scheduler.checkpoints if scheduler else CheckpointStore()),
            max_depth=settings.MAX_REORG_DEPTH,
        )
        self.error_handler = ErrorHandler(settings.RETRY_BASE_DELAY, settings.RETRY_MAX_DELAY)
        self.graduation_listeners: List[GraduationListener] = []

        self.state = PipelineState.CATCHING_UP
        self.cursor: Optional[int] = None
        self.head: Optional[int] = None
        self.halt_reason: Optional[str] = None
        self.floor = chain.earliest_block - 1
        self._last_prune = 0
        self._stop = asyncio.Event()

        self.airlock_address = (chain.addresses.shared.airlock or "").lower()
        self.pool_manager = (chain.addresses.v4_pool_manager or "").lower()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}.{chain.name}")

    def add_graduation_listener(self, listener: GraduationListener) -> None:
        self.graduation_listeners.append(listener)

    # Lifecycle

    def load_cursor(self) -> int:
        with self.db.begin() as conn:
            stored = self.store.get_cursor(conn, self.chain_id)
        self.cursor = stored if stored is not None else self.floor
        return self.cursor

    async def run(self) -> None:
        """Ingest until stopped or halted."""
        self.load_cursor()
        self.logger.info(f"Starting ingestion of {self.chain.name} from block {self.cursor + 1}")
        while not self._stop.is_set():
            try:
                progressed = await self.step()
            except (ChainHalted, ReorgDepthExceeded):
                return
            if not progressed:
                await self._sleep(self.settings.POLL_INTERVAL_SECONDS)
        self.logger.info(f"Stopped ingestion of {self.chain.name} at block {self.cursor}")

    def stop(self) -> None:
        """Request a stop. Takes effect between blocks or batches."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _halt(self, reason: str) -> None:
        self.state = PipelineState.HALTED
        self.halt_reason = reason
        self.logger.error(f"{self.chain.name} halted at block {self.cursor}: {reason}")

    async def step(self) -> bool:
        """
        Advance by one batch (catching up) or one block (live).

        Returns:
            bool: True if any block was applied

        Raises:
            ChainHalted: If RPC failures exhausted retries, or already halted
            ReorgDepthExceeded: If a reorg is deeper than the configured bound
        """
        if self.state is PipelineState.HALTED:
            raise ChainHalted(self.chain_id, self.halt_reason or "halted")
        if self.cursor is None:
            self.load_cursor()
        try:
            self.head = await self._call(self.rpc.get_block_number, self.chain_id)
            if self.state is PipelineState.CATCHING_UP:
                if self.head - self.cursor <= self.settings.TRAILING_DISTANCE:
                    self.state = PipelineState.LIVE
                    self.logger.info(f"{self.chain.name} is live at block {self.cursor} (head {self.head})")
                else:
                    target = self.head - self.settings.TRAILING_DISTANCE
                    to_block = min(self.cursor + self.settings.BLOCKS_PER_BATCH, target)
                    await self._process_range(self.cursor + 1, to_block)
                    return True
            if self.cursor >= self.head:
                return False
            return await self._process_live_block(self.cursor + 1)
        except ReorgDepthExceeded as e:
            self._halt(str(e))
            raise
        except ChainHalted as e:
            self._halt(e.reason)
            raise

    async def _call(self, operation, *args):
        return await retry_rpc(
            operation,
            *args,
            chain_id=self.chain_id,
            handler=self.error_handler,
            max_failures=self.settings.MAX_CONSECUTIVE_FAILURES,
        )

    # Live mode and reorgs

    async def _process_live_block(self, number: int) -> bool:
        header = await self._call(self.rpc.get_block_header, self.chain_id, number)
        if self.reorg.is_fork(header):
            self.logger.warning(
                f"Reorg detected on {self.chain.name}: block {number} parent {header.parent_hash} "
                f"does not match stored block {number - 1}"
            )
            await self.recover(number - 1)
            return True
        await self._process_range(number, number, headers={number: header})
        return True

    async def recover(self, from_block: int) -> int:
        """Roll back to the common ancestor at or below `from_block`. Returns it."""
        previous = self.state
        self.state = PipelineState.REORG_RECOVERY

        async def fetch_header(height: int) -> BlockHeader:
            return await self._call(self.rpc.get_block_header, self.chain_id, height)

        ancestor = await self.reorg.find_common_ancestor(from_block, fetch_header, floor=self.floor)
        with self.db.begin() as conn:
            self.reorg.rollback(conn, ancestor)
        if self.scheduler is not None:
            self.scheduler.reset(self.chain_id)
        self.cursor = ancestor
        self.state = previous
        return ancestor

    # Block application

    async def _process_range(self, from_block: int, to_block: int,
                             headers: Optional[Dict[int, BlockHeader]] = None) -> None:
        """Apply [from_block, to_block] block by block, following new pools as they appear."""
        headers = dict(headers or {})
        with self.db.begin() as conn:
            addresses = self.resolver.watch_set(conn, self.chain_id)
        known: Set[str] = set(addresses)
        logs = await self._call(self.rpc.get_logs, self.chain_id, from_block, to_block, addresses)

        queue: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
        seen: Set[LogKey] = set()
        self._enqueue(queue, seen, logs)

        pending = set(queue) | {to_block}
        self._add_due_block(pending, from_block - 1, to_block)
        while pending:
            number = min(pending)
            pending.discard(number)

            # Pools created in this block may log later in the same block
            new_addresses = self._new_pool_addresses(queue.get(number, []), known)
            while new_addresses:
                known.update(new_addresses)
                extra = await self._call(self.rpc.get_logs, self.chain_id, number, to_block, sorted(new_addresses))
                self._enqueue(queue, seen, extra)
                pending.update(b for b in queue if b > number)
                new_addresses = self._new_pool_addresses(queue.get(number, []), known)

            block_logs = sorted(queue.pop(number, []), key=log_sort_key)
            header = headers.get(number)
            if header is None:
                header = await self._call(self.rpc.get_block_header, self.chain_id, number)
            asset_data = await self._prefetch_asset_data(block_logs, number)
            supplies = await self._prefetch_total_supplies(block_logs, number)
            graduations = self._commit_block(header, block_logs, asset_data, supplies)
            self.cursor = number

            await self._after_commit(number, graduations)
            self._add_due_block(pending, number, to_block)

        self._maybe_prune(to_block)

    def _enqueue(self, queue: Dict[int, List[Mapping[str, Any]]], seen: Set[LogKey],
                 logs: List[Mapping[str, Any]]) -> None:
        for log in logs:
            key = log_sort_key(log)
            if key in seen:
                continue
            seen.add(key)
            queue[key[0]].append(log)

    def _add_due_block(self, pending: Set[int], after_block: int, to_block: int) -> None:
        """Make sure blocks where a job falls due are applied even without logs."""
        if self.scheduler is None:
            return
        due = self.scheduler.next_due_block(self.chain_id, after_block)
        if due is not None and due <= to_block:
            pending.add(due)

    def _new_pool_addresses(self, block_logs: List[Mapping[str, Any]], known: Set[str]) -> Set[str]:
        """Contract addresses created by factory logs of a block and not yet subscribed."""
        found = set()
        for log in block_logs:
            address = self.resolver.created_address(self.chain_id, log)
            if address is not None and address not in known:
                found.add(address)
        return found

    async def _prefetch_total_supplies(self, block_logs: List[Mapping[str, Any]],
                                       number: int) -> Dict[str, int]:
        """totalSupply() of the base token of every pool created in the block, read at that block."""
        found: Dict[str, int] = {}
        for log in block_logs:
            token = self.resolver.supply_token(self.chain_id, log)
            if token is None or token == ZERO_ADDRESS or token in found:
                continue
            selector, args = erc20.total_supply_call()
            try:
                raw = await self._call(self.rpc.call_contract, self.chain_id, token, selector, args, number)
                found[token] = erc20.decode_total_supply(token, raw)
            except DecodeAnomaly as e:
                self.logger.warning(f"No total supply for {token} at block {number}: {e}")
        return found

    async def _prefetch_asset_data(self, block_logs: List[Mapping[str, Any]],
                                   number: int) -> Dict[str, AssetData]:
        """getAssetData for every airlock Create in the block, read at that block."""
        if not self.airlock_address:
            return {}
        found: Dict[str, AssetData] = {}
        for log in block_logs:
            if normalize_hex(log["address"]) != self.airlock_address or log_topic0(log) != airlock.CREATE.topic0:
                continue
            try:
                asset = airlock.CREATE.decode(log).args["asset"]
            except DecodeAnomaly as e:
                self.logger.warning(f"Skipping malformed airlock Create at block {number}: {e}")
                continue
            with self.db.begin() as conn:
                stored = self.store.get_asset_data(conn, self.chain_id, asset)
            if stored is not None:
                found[asset] = stored
                continue
            selector, args = airlock.asset_data_call(asset)
            try:
                raw = await self._call(
                    self.rpc.call_contract, self.chain_id, self.airlock_address, selector, args, number
                )
                found[asset] = airlock.decode_asset_data(asset, raw)
            except DecodeAnomaly as e:
                self.logger.warning(f"No asset data for {asset} at block {number}: {e}")
        return found

    def _commit_block(self, header: BlockHeader, block_logs: List[Mapping[str, Any]],
                      asset_data: Mapping[str, AssetData],
                      supplies: Mapping[str, int]) -> List[GraduationEvent]:
        graduations: List[GraduationEvent] = []
        with self.db.begin() as conn:
            for log in block_logs:
                try:
                    self._dispatch(conn, log, header, asset_data, supplies, graduations)
                except DecodeAnomaly as e:
                    self.logger.warning(
                        f"Dropped log {log_sort_key(log)} from {normalize_hex(log['address'])}: {e}"
                    )
            self.store.record_block(conn, self.chain_id, header)
            self.store.set_cursor(conn, self.chain_id, header.number)
        if block_logs:
            self.logger.debug(f"Applied {len(block_logs)} logs in block {header.number}")
        return graduations

    def _dispatch(self, conn: Connection, log: Mapping[str, Any], header: BlockHeader,
                  asset_data: Mapping[str, AssetData], supplies: Mapping[str, int],
                  graduations: List[GraduationEvent]) -> None:
        """Route one log to exactly one handler; unknown logs are dropped."""
        address = normalize_hex(log["address"])
        topic0 = log_topic0(log)

        if self.resolver.is_factory_log(self.chain_id, log):
            discovery = self.resolver.on_log(conn, self.chain_id, log, asset_data, supplies)
            if discovery is not None:
                self._refresh_and_save(conn, discovery.pool, header, graduations)
            return

        if address == self.airlock_address:
            if topic0 == airlock.MIGRATE.topic0:
                self._apply_migrate(conn, log, graduations)
            return

        if address == self.pool_manager:
            protocol = ProtocolVersion.V4
        else:
            watched = self.store.get_watched_address(conn, self.chain_id, address)
            if watched is None or not watched.active:
                return
            protocol = watched.protocol

        entry = self.registry.lookup(protocol, topic0)
        if entry is None:
            return
        spec, handler = entry
        event = spec.decode(log)
        pool_key = event.args["id"] if protocol is ProtocolVersion.V4 else address
        pool = self.store.get_pool(conn, self.chain_id, pool_key)
        if pool is None:
            return
        if protocol is ProtocolVersion.V4:
            watched = self.store.get_watched_address(conn, self.chain_id, pool_key)
            if watched is not None and not watched.active:
                return

        update = handler(pool, event, header.timestamp)
        if update.swap_quote_amount:
            self.aggregator.record_swap(
                conn, update.pool, update.swap_quote_amount, header.number, event.log_index, header.timestamp
            )
        self._refresh_and_save(conn, update.pool, header, graduations)

    def _refresh_and_save(self, conn: Connection, pool: Pool, header: BlockHeader,
                          graduations: List[GraduationEvent]) -> None:
        result = self.aggregator.refresh(conn, pool, header.number, header.timestamp)
        self.store.save_pool(conn, result.pool, header.number)
        if result.graduation is not None:
            graduations.append(result.graduation)

    def _apply_migrate(self, conn: Connection, log: Mapping[str, Any],
                       graduations: List[GraduationEvent]) -> None:
        event = airlock.MIGRATE.decode(log)
        asset = event.args["asset"]
        pool = self.store.latest_curve_for_base(conn, self.chain_id, asset)
        if pool is None:
            raise DecodeAnomaly(f"Migrate for unknown asset {asset}")

        was_graduated = pool.is_graduated
        pool = airlock.migrate(pool)
        self.store.deactivate_watched_address(conn, self.chain_id, pool.address, event.block_number)
        self.store.save_pool(conn, pool, event.block_number)
        if not was_graduated:
            graduations.append(GraduationEvent(
                chain_id=self.chain_id,
                pool=pool.address,
                base_token=pool.base_token,
                block_number=event.block_number,
                graduation_balance=pool.bonding_curve.graduation_balance,
                graduation_threshold=pool.bonding_curve.graduation_threshold,
            ))

    async def _after_commit(self, number: int, graduations: List[GraduationEvent]) -> None:
        await self._notify(graduations)
        if self.scheduler is not None:
            results = await self.scheduler.on_block(self.chain_id, number)
            await self._notify([event for result in results for event in result.graduations])

    async def _notify(self, graduations: List[GraduationEvent]) -> None:
        for event in graduations:
            for listener in self.graduation_listeners:
                try:
                    await listener.on_graduation(event)
                except Exception as e:
                    self.logger.error(f"Graduation listener failed for pool {event.pool}: {e}")

    def _maybe_prune(self, number: int) -> None:
        """Drop reorg history and stale volume that fell below head - max_reorg_depth."""
        depth = self.settings.MAX_REORG_DEPTH
        if number - self._last_prune < depth:
            return
        finalized = number - depth
        if finalized <= self.floor:
            return
        with self.db.begin() as conn:
            evicted = self.aggregator.volume.prune(conn, self.chain_id, finalized)
            runs = self.reorg.checkpoints.prune(conn, self.chain_id, finalized)
            pruned = self.store.prune_history(conn, self.chain_id, finalized)
        self._last_prune = number
        if pruned or evicted or runs:
            self.logger.debug(
                f"Pruned below block {finalized}: {pruned} pool versions, {evicted} volume entries, "
                f"{runs} job runs"
            )
