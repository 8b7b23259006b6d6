"""
Base classes and types for checkpointed periodic jobs.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.engine import Connection

from ..config.chains import ChainConfig
from ..models import GraduationEvent

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Job run status."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobError(Exception):
    """Base exception for job-related errors."""
    pass


JobWrite = Callable[[Connection], Optional[Dict[str, Any]]]


@dataclass
class JobContext:
    """
    Inputs of one job run.

    The run covers blocks (from_block, to_block]. Bodies do their RPC reads
    first and stage database work with `stage`; the scheduler applies staged
    writes and advances the checkpoint in one transaction, so a run commits
    entirely or not at all. Writes must be idempotent over the range.
    """
    chain: ChainConfig
    from_block: int
    to_block: int
    writes: List[JobWrite] = field(default_factory=list)

    def stage(self, write: JobWrite) -> None:
        """Queue `write(conn)`; a returned dict is merged into the run's output."""
        self.writes.append(write)


JobBody = Callable[[JobContext], Awaitable[Optional[Dict[str, Any]]]]


def default_start_block(chain: ChainConfig) -> int:
    return chain.earliest_block


@dataclass
class Job:
    """
    A periodic job run every `interval` blocks per chain.

    Attributes:
        name: Unique job name, also the checkpoint key
        chains: Chain names the job runs on (empty means all)
        interval: Blocks between runs
        body: Async callable doing the work
        start_block: First block the job applies to on a chain
    """
    name: str
    interval: int
    body: JobBody
    chains: List[str] = field(default_factory=list)
    start_block: Callable[[ChainConfig], int] = default_start_block

    def __post_init__(self):
        if self.interval <= 0:
            raise JobError(f"Job {self.name}: interval must be positive")

    def applies_to(self, chain: ChainConfig) -> bool:
        return not self.chains or chain.name in self.chains

    def is_due(self, last_processed: Optional[int], block_number: int, start: int) -> bool:
        """First run at the first block >= start, then every `interval` blocks."""
        if block_number < start:
            return False
        if last_processed is None:
            return True
        return block_number - last_processed >= self.interval


@dataclass
class JobResult:
    """Result of one job run."""
    job_name: str
    chain_id: int
    status: JobStatus
    from_block: int
    to_block: int
    start_time: datetime
    end_time: Optional[datetime] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None

    @property
    def success(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def graduations(self) -> List[GraduationEvent]:
        """Graduations committed by the run, for delivery to listeners."""
        if not self.success or not self.output:
            return []
        return list(self.output.get("graduations", []))


class GraduationListener(ABC):
    """Receives bonding-curve graduations after the block or job run that caused them commits."""

    @abstractmethod
    async def on_graduation(self, event: GraduationEvent) -> None:
        pass
