"""
Multi-chain runner: one ingestion task per enabled chain.

Chains share only read-only configuration and the database. A chain that
halts or crashes is logged and left stopped; the others keep running.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .config.chains import ChainConfig
from .config.indexer import IndexerSettings
from .config.manager import ConfigManager, get_config
from .core.storage import IndexerDatabase, PoolStore
from .ingestion.pipeline import ChainIngestionPipeline, PipelineState
from .ingestion.rpc import RpcClient, Web3RpcClient
from .pricing import MetricAggregator, OraclePriceConverter, VolumeTracker
from .resolver import AddressResolver
from .scheduler import CheckpointScheduler, GraduationListener, default_jobs

logger = logging.getLogger(__name__)


class IndexerRunner:
    """Wires the components together and supervises the per-chain tasks."""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        rpc: Optional[RpcClient] = None,
        db: Optional[IndexerDatabase] = None,
        chains: Optional[List[ChainConfig]] = None,
        settings: Optional[IndexerSettings] = None,
    ):
        self.config = config or get_config()
        self.settings = settings or self.config.indexer
        self.chains = chains if chains is not None else self.config.chains.enabled_chains
        self.db = db or IndexerDatabase.from_config(self.config.database)
        self.rpc = rpc or Web3RpcClient({
            chain.chain_id: self.config.chains.get_rpc_url(chain.name) for chain in self.chains
        })

        self.store = PoolStore()
        self.oracle = OraclePriceConverter()
        self.aggregator = MetricAggregator(self.oracle, VolumeTracker())
        self.resolver = AddressResolver(self.store, self.chains)
        self.scheduler = CheckpointScheduler(self.db, self.chains)
        self.pipelines: Dict[int, ChainIngestionPipeline] = {}
        self.failures: Dict[int, str] = {}
        self._built = False

    def build(self) -> Dict[int, ChainIngestionPipeline]:
        """Connect storage, register factories and jobs, create pipelines."""
        if self._built:
            return self.pipelines
        if not self.db.is_connected:
            self.db.connect()

        for chain in self.chains:
            self.resolver.register_chain_defaults(chain, self.config.protocols)
        for job in default_jobs(self.rpc, self.store, self.oracle, self.aggregator, self.settings):
            self.scheduler.add_job(job)

        for chain in self.chains:
            self.pipelines[chain.chain_id] = ChainIngestionPipeline(
                chain=chain,
                db=self.db,
                rpc=self.rpc,
                resolver=self.resolver,
                aggregator=self.aggregator,
                settings=self.settings,
                store=self.store,
                scheduler=self.scheduler,
            )
        self._built = True
        logger.info(f"Built pipelines for {', '.join(c.name for c in self.chains)}")
        return self.pipelines

    def add_graduation_listener(self, listener: GraduationListener) -> None:
        for pipeline in self.build().values():
            pipeline.add_graduation_listener(listener)

    async def _supervise(self, pipeline: ChainIngestionPipeline) -> None:
        try:
            await pipeline.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures[pipeline.chain_id] = str(e)
            logger.exception(f"❌ {pipeline.chain.name} ingestion crashed: {e}")
            return
        if pipeline.state is PipelineState.HALTED:
            self.failures[pipeline.chain_id] = pipeline.halt_reason or "halted"

    async def run(self) -> Dict[str, str]:
        """Run every chain until stopped. Returns the final state per chain."""
        pipelines = self.build()
        tasks = [
            asyncio.create_task(self._supervise(p), name=f"ingest-{p.chain.name}")
            for p in pipelines.values()
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return self.status()

    def stop(self) -> None:
        for pipeline in self.pipelines.values():
            pipeline.stop()

    def status(self) -> Dict[str, str]:
        return {p.chain.name: p.state.value for p in self.pipelines.values()}
