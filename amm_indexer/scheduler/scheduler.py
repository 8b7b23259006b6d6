"""
Checkpoint scheduler.

Runs periodic jobs from inside a chain's ingestion task, after each block
commits. A job runs when the chain has moved `interval` blocks past its
checkpoint. A run's staged writes and its checkpoint commit in one
transaction, and only when the body succeeds.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..config.chains import ChainConfig
from ..core.storage import IndexerDatabase
from .base import Job, JobContext, JobError, JobResult, JobStatus
from .checkpoints import CheckpointStore

logger = logging.getLogger(__name__)


class CheckpointScheduler:
    """
    Block-driven job runner.

    KISS: jobs of a chain run sequentially in registration order.
    """

    def __init__(self, db: IndexerDatabase, chains: Iterable[ChainConfig],
                 checkpoints: Optional[CheckpointStore] = None):
        self.db = db
        self.chains: Dict[int, ChainConfig] = {c.chain_id: c for c in chains}
        self.checkpoints = checkpoints or CheckpointStore()
        self.jobs: Dict[str, Job] = {}
        # (job, chain) -> earliest block for the next attempt after a failure
        self._retry_at: Dict[Tuple[str, int], int] = {}

    def add_job(self, job: Job) -> None:
        if job.name in self.jobs:
            raise JobError(f"Duplicate job name: {job.name}")
        self.jobs[job.name] = job
        logger.info(f"Added job: {job.name} (every {job.interval} blocks)")

    def jobs_for(self, chain_id: int) -> List[Job]:
        chain = self.chains[chain_id]
        return [job for job in self.jobs.values() if job.applies_to(chain)]

    def reset(self, chain_id: int) -> None:
        """Forget failure backoff of a chain, e.g. after a rollback."""
        for key in [k for k in self._retry_at if k[1] == chain_id]:
            del self._retry_at[key]

    def next_due_block(self, chain_id: int, after_block: int) -> Optional[int]:
        """Lowest block above `after_block` at which some job of the chain becomes due."""
        chain = self.chains[chain_id]
        candidates = []
        with self.db.begin() as conn:
            for job in self.jobs_for(chain_id):
                checkpoint = self.checkpoints.get(conn, job.name, chain_id)
                if checkpoint is None:
                    due = job.start_block(chain)
                else:
                    due = checkpoint.last_processed_block + job.interval
                due = max(due, self._retry_at.get((job.name, chain_id), due))
                candidates.append(max(due, after_block + 1))
        return min(candidates) if candidates else None

    async def on_block(self, chain_id: int, block_number: int) -> List[JobResult]:
        """Run every due job of the chain over (checkpoint, block_number]."""
        chain = self.chains[chain_id]
        results = []
        for job in self.jobs_for(chain_id):
            if block_number < self._retry_at.get((job.name, chain_id), block_number):
                continue
            start = job.start_block(chain)
            with self.db.begin() as conn:
                checkpoint = self.checkpoints.get(conn, job.name, chain_id)
            last = checkpoint.last_processed_block if checkpoint else None
            if not job.is_due(last, block_number, start):
                continue
            from_block = last if last is not None else start - 1
            results.append(await self._run(job, chain, from_block, block_number))
        return results

    async def _run(self, job: Job, chain: ChainConfig, from_block: int, to_block: int) -> JobResult:
        result = JobResult(
            job_name=job.name,
            chain_id=chain.chain_id,
            status=JobStatus.COMPLETED,
            from_block=from_block,
            to_block=to_block,
            start_time=datetime.utcnow(),
        )
        try:
            ctx = JobContext(chain, from_block, to_block)
            output = dict(await job.body(ctx) or {})
            with self.db.begin() as conn:
                for write in ctx.writes:
                    output.update(write(conn) or {})
                self.checkpoints.set(conn, job.name, chain.chain_id, to_block)
            result.output = output
            self._retry_at.pop((job.name, chain.chain_id), None)
            logger.info(f"✅ {job.name} on {chain.name} covered ({from_block}, {to_block}]")
        except Exception as e:
            # Checkpoint stays put; the whole range is retried one interval later
            result.status = JobStatus.FAILED
            result.error = str(e)
            self._retry_at[(job.name, chain.chain_id)] = to_block + job.interval
            logger.error(f"❌ {job.name} on {chain.name} failed at block {to_block}: {e}")
        result.end_time = datetime.utcnow()
        return result
