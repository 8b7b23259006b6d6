"""
Checkpointed periodic jobs driven by ingested blocks.
"""

from .base import GraduationListener, Job, JobContext, JobError, JobResult, JobStatus
from .checkpoints import CheckpointStore
from .jobs import ETH_PRICE, MARKET_CAPS, POOL_METRICS, default_jobs, eth_price_job, market_caps_job, pool_metrics_job
from .scheduler import CheckpointScheduler

__all__ = [
    "GraduationListener",
    "Job",
    "JobContext",
    "JobError",
    "JobResult",
    "JobStatus",
    "CheckpointStore",
    "CheckpointScheduler",
    "ETH_PRICE",
    "MARKET_CAPS",
    "POOL_METRICS",
    "default_jobs",
    "eth_price_job",
    "market_caps_job",
    "pool_metrics_job",
]
