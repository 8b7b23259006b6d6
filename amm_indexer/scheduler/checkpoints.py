"""
Checkpoint persistence: one row per (job, chain), plus the history of runs.

The history is what makes rollbacks exact: after a reorg a job resumes
from its last run that is still canonical, so its cadence is the same as
if the abandoned blocks had never been seen.
"""

import logging
from typing import List, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.engine import Connection

from ..core.storage.base import fetch_one, upsert
from ..core.storage.schema import checkpoint_runs, checkpoints
from ..models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Progress markers of periodic jobs."""

    def get(self, conn: Connection, job_name: str, chain_id: int) -> Optional[Checkpoint]:
        row = fetch_one(conn, checkpoints, {"job_name": job_name, "chain_id": chain_id})
        if row is None:
            return None
        return Checkpoint(row["job_name"], row["chain_id"], row["last_processed_block"])

    def set(self, conn: Connection, job_name: str, chain_id: int, block_number: int) -> None:
        """
        Advance a checkpoint and record the run.

        Raises:
            ValueError: If the block is below the stored checkpoint
        """
        current = self.get(conn, job_name, chain_id)
        if current is not None and block_number < current.last_processed_block:
            raise ValueError(
                f"Checkpoint {job_name}@{chain_id} cannot move back from "
                f"{current.last_processed_block} to {block_number}"
            )
        upsert(conn, checkpoints, {"job_name": job_name, "chain_id": chain_id},
               {"last_processed_block": block_number})
        upsert(conn, checkpoint_runs,
               {"job_name": job_name, "chain_id": chain_id, "block_number": block_number}, {})

    def list(self, conn: Connection, chain_id: int) -> List[Checkpoint]:
        rows = conn.execute(
            select(checkpoints).where(checkpoints.c.chain_id == chain_id).order_by(checkpoints.c.job_name)
        )
        return [Checkpoint(r.job_name, r.chain_id, r.last_processed_block) for r in rows]

    def runs(self, conn: Connection, job_name: str, chain_id: int) -> List[int]:
        rows = conn.execute(
            select(checkpoint_runs.c.block_number)
            .where(and_(checkpoint_runs.c.job_name == job_name, checkpoint_runs.c.chain_id == chain_id))
            .order_by(checkpoint_runs.c.block_number)
        )
        return [r.block_number for r in rows]

    def rollback(self, conn: Connection, chain_id: int, ancestor: int) -> int:
        """
        Forget runs above `ancestor` and move each affected checkpoint back
        to its latest remaining run. A job with no run left loses its
        checkpoint and starts over from its start block.

        Returns:
            int: Number of checkpoints moved back or removed
        """
        conn.execute(delete(checkpoint_runs).where(and_(
            checkpoint_runs.c.chain_id == chain_id,
            checkpoint_runs.c.block_number > ancestor,
        )))
        affected = conn.execute(
            select(checkpoints.c.job_name).where(and_(
                checkpoints.c.chain_id == chain_id,
                checkpoints.c.last_processed_block > ancestor,
            ))
        ).scalars().all()
        for job_name in affected:
            keys = {"job_name": job_name, "chain_id": chain_id}
            latest = conn.execute(
                select(func.max(checkpoint_runs.c.block_number))
                .where(and_(checkpoint_runs.c.job_name == job_name, checkpoint_runs.c.chain_id == chain_id))
            ).scalar()
            if latest is None:
                conn.execute(delete(checkpoints).where(and_(
                    checkpoints.c.job_name == job_name, checkpoints.c.chain_id == chain_id,
                )))
            else:
                upsert(conn, checkpoints, keys, {"last_processed_block": latest})
            logger.info(f"Checkpoint {job_name}@{chain_id} restored to {latest} after rollback to {ancestor}")
        return len(affected)

    def prune(self, conn: Connection, chain_id: int, finalized_block: int) -> int:
        """Drop run history below the latest run at or below `finalized_block`, per job."""
        latest = conn.execute(
            select(checkpoint_runs.c.job_name, func.max(checkpoint_runs.c.block_number).label("keep"))
            .where(and_(
                checkpoint_runs.c.chain_id == chain_id,
                checkpoint_runs.c.block_number <= finalized_block,
            ))
            .group_by(checkpoint_runs.c.job_name)
        ).all()
        pruned = 0
        for row in latest:
            pruned += conn.execute(delete(checkpoint_runs).where(and_(
                checkpoint_runs.c.chain_id == chain_id,
                checkpoint_runs.c.job_name == row.job_name,
                checkpoint_runs.c.block_number < row.keep,
            ))).rowcount
        return pruned
