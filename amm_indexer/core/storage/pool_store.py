"""
Pool State Store.

Canonical chain-scoped table of pools plus the watched-address set, asset
data and block history they derive from. Rows of one chain are only ever
written by that chain's ingestion task, so no row locking is needed.

Every pool write also records a version row for the block it happened in;
reorg rollback restores pools from the latest version at or below the
common ancestor and replays forward from there.
"""

import logging
from typing import Any, Dict, List, Optional

import ujson
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.engine import Connection

from ...models import AssetData, BlockHeader, Pool, ProtocolVersion, WatchedAddress
from .base import DataError, fetch_one, upsert
from .schema import asset_data, blocks, cursors, pool_versions, pools, watched_addresses

logger = logging.getLogger(__name__)


def _encode_pool(pool: Pool) -> str:
    return ujson.dumps(pool.to_dict())


def _decode_pool(payload: str) -> Pool:
    try:
        return Pool.from_dict(ujson.loads(payload))
    except (ValueError, KeyError, TypeError) as e:
        raise DataError(f"Corrupt pool payload: {e}") from e


class PoolStore:
    """Read/write access to pools, watched addresses, asset data and block history."""

    # Pools

    def get_pool(self, conn: Connection, chain_id: int, address: str) -> Optional[Pool]:
        row = fetch_one(conn, pools, {"chain_id": chain_id, "address": address.lower()})
        return _decode_pool(row["payload"]) if row else None

    def save_pool(self, conn: Connection, pool: Pool, block_number: int) -> None:
        """Persist a pool and record its version at `block_number`."""
        payload = _encode_pool(pool)
        self._write_pool_row(conn, pool, payload)
        upsert(
            conn,
            pool_versions,
            {"chain_id": pool.chain_id, "address": pool.address, "block_number": block_number},
            {"payload": payload},
        )

    def _write_pool_row(self, conn: Connection, pool: Pool, payload: str) -> None:
        upsert(conn, pools, {"chain_id": pool.chain_id, "address": pool.address}, {
            "protocol": pool.protocol.value,
            "base_token": pool.base_token,
            "quote_token": pool.quote_token,
            "hooks": pool.hooks,
            "created_block": pool.created_block,
            "last_updated_block": pool.last_updated_block,
            "has_bonding_curve": pool.bonding_curve is not None,
            "graduated": pool.is_graduated,
            "payload": payload,
        })

    def list_pools(
        self,
        conn: Connection,
        chain_id: int,
        protocol: Optional[ProtocolVersion] = None,
    ) -> List[Pool]:
        query = select(pools.c.payload).where(pools.c.chain_id == chain_id)
        if protocol is not None:
            query = query.where(pools.c.protocol == protocol.value)
        return [_decode_pool(row.payload) for row in conn.execute(query.order_by(pools.c.address))]

    def pools_touched_since(self, conn: Connection, chain_id: int, block_number: int) -> List[Pool]:
        """Pools whose last state update is after `block_number`."""
        query = (
            select(pools.c.payload)
            .where(and_(pools.c.chain_id == chain_id, pools.c.last_updated_block > block_number))
            .order_by(pools.c.address)
        )
        return [_decode_pool(row.payload) for row in conn.execute(query)]

    def find_by_hooks(self, conn: Connection, chain_id: int, hooks: str) -> Optional[Pool]:
        query = select(pools.c.payload).where(
            and_(pools.c.chain_id == chain_id, pools.c.hooks == hooks.lower())
        ).order_by(pools.c.created_block.desc())
        row = conn.execute(query).first()
        return _decode_pool(row.payload) if row else None

    def active_curve_for_base(self, conn: Connection, chain_id: int, base_token: str) -> Optional[Pool]:
        """The non-graduated bonding-curve pool for a base token, if any."""
        query = select(pools.c.payload).where(and_(
            pools.c.chain_id == chain_id,
            pools.c.base_token == base_token.lower(),
            pools.c.has_bonding_curve.is_(True),
            pools.c.graduated.is_(False),
        ))
        row = conn.execute(query).first()
        return _decode_pool(row.payload) if row else None

    def latest_curve_for_base(self, conn: Connection, chain_id: int, base_token: str) -> Optional[Pool]:
        """The most recently created bonding-curve pool for a base token, graduated or not."""
        query = select(pools.c.payload).where(and_(
            pools.c.chain_id == chain_id,
            pools.c.base_token == base_token.lower(),
            pools.c.has_bonding_curve.is_(True),
        )).order_by(pools.c.created_block.desc())
        row = conn.execute(query).first()
        return _decode_pool(row.payload) if row else None

    # Watched addresses

    def add_watched_address(self, conn: Connection, watched: WatchedAddress) -> bool:
        """Insert a watched address. Returns False when it was already known."""
        keys = {"chain_id": watched.chain_id, "address": watched.address.lower()}
        if fetch_one(conn, watched_addresses, keys) is not None:
            return False
        upsert(conn, watched_addresses, keys, {
            "protocol": watched.protocol.value,
            "factory": watched.factory,
            "discovered_at_block": watched.discovered_at_block,
            "active": watched.active,
        })
        return True

    def get_watched_address(self, conn: Connection, chain_id: int, address: str) -> Optional[WatchedAddress]:
        row = fetch_one(conn, watched_addresses, {"chain_id": chain_id, "address": address.lower()})
        if row is None:
            return None
        return WatchedAddress(
            chain_id=row["chain_id"],
            protocol=ProtocolVersion(row["protocol"]),
            address=row["address"],
            discovered_at_block=row["discovered_at_block"],
            factory=row["factory"],
            active=row["active"],
        )

    def watched_addresses(self, conn: Connection, chain_id: int, active_only: bool = True) -> List[str]:
        query = select(watched_addresses.c.address).where(watched_addresses.c.chain_id == chain_id)
        if active_only:
            query = query.where(watched_addresses.c.active.is_(True))
        return [row.address for row in conn.execute(query.order_by(watched_addresses.c.address))]

    def deactivate_watched_address(self, conn: Connection, chain_id: int, address: str, block_number: int) -> None:
        conn.execute(
            update(watched_addresses)
            .where(and_(
                watched_addresses.c.chain_id == chain_id,
                watched_addresses.c.address == address.lower(),
                watched_addresses.c.active.is_(True),
            ))
            .values(active=False, deactivated_at_block=block_number)
        )

    # Asset data

    def save_asset_data(self, conn: Connection, chain_id: int, data: AssetData, block_number: int) -> None:
        upsert(conn, asset_data, {"chain_id": chain_id, "asset": data.asset.lower()}, {
            "numeraire": data.numeraire,
            "timelock": data.timelock,
            "governance": data.governance,
            "liquidity_migrator": data.liquidity_migrator,
            "pool_initializer": data.pool_initializer,
            "pool": data.pool,
            "migration_pool": data.migration_pool,
            "num_tokens_to_sell": str(data.num_tokens_to_sell),
            "total_supply": str(data.total_supply),
            "integrator": data.integrator,
            "fetched_at_block": block_number,
        })

    def get_asset_data(self, conn: Connection, chain_id: int, asset: str) -> Optional[AssetData]:
        row = fetch_one(conn, asset_data, {"chain_id": chain_id, "asset": asset.lower()})
        if row is None:
            return None
        return AssetData(
            asset=row["asset"],
            numeraire=row["numeraire"],
            timelock=row["timelock"],
            governance=row["governance"],
            liquidity_migrator=row["liquidity_migrator"],
            pool_initializer=row["pool_initializer"],
            pool=row["pool"],
            migration_pool=row["migration_pool"],
            num_tokens_to_sell=int(row["num_tokens_to_sell"]),
            total_supply=int(row["total_supply"]),
            integrator=row["integrator"],
        )

    # Block history and cursor

    def record_block(self, conn: Connection, chain_id: int, header: BlockHeader) -> None:
        upsert(conn, blocks, {"chain_id": chain_id, "number": header.number}, {
            "hash": header.hash,
            "parent_hash": header.parent_hash,
            "timestamp": header.timestamp,
        })

    def get_block(self, conn: Connection, chain_id: int, number: int) -> Optional[BlockHeader]:
        row = fetch_one(conn, blocks, {"chain_id": chain_id, "number": number})
        if row is None:
            return None
        return BlockHeader(row["number"], row["hash"], row["parent_hash"], row["timestamp"])

    def get_cursor(self, conn: Connection, chain_id: int) -> Optional[int]:
        row = fetch_one(conn, cursors, {"chain_id": chain_id})
        return row["block_number"] if row else None

    def set_cursor(self, conn: Connection, chain_id: int, block_number: int) -> None:
        upsert(conn, cursors, {"chain_id": chain_id}, {"block_number": block_number})

    # Reorg support

    def rollback_to(self, conn: Connection, chain_id: int, ancestor: int) -> Dict[str, Any]:
        """
        Undo every pool, watched-address, asset and block row derived after `ancestor`.

        Pools are restored from their latest version at or below the ancestor;
        pools first seen after it are removed.
        """
        orphaned = [
            row.address for row in conn.execute(
                select(pool_versions.c.address).distinct().where(and_(
                    pool_versions.c.chain_id == chain_id,
                    pool_versions.c.block_number > ancestor,
                ))
            )
        ]
        conn.execute(delete(pool_versions).where(and_(
            pool_versions.c.chain_id == chain_id,
            pool_versions.c.block_number > ancestor,
        )))

        restored, removed = 0, 0
        for address in orphaned:
            row = conn.execute(
                select(pool_versions.c.payload)
                .where(and_(pool_versions.c.chain_id == chain_id, pool_versions.c.address == address))
                .order_by(pool_versions.c.block_number.desc())
                .limit(1)
            ).first()
            if row is None:
                conn.execute(delete(pools).where(and_(pools.c.chain_id == chain_id, pools.c.address == address)))
                removed += 1
            else:
                self._write_pool_row(conn, _decode_pool(row.payload), row.payload)
                restored += 1

        watched = conn.execute(delete(watched_addresses).where(and_(
            watched_addresses.c.chain_id == chain_id,
            watched_addresses.c.discovered_at_block > ancestor,
        ))).rowcount
        conn.execute(
            update(watched_addresses)
            .where(and_(
                watched_addresses.c.chain_id == chain_id,
                watched_addresses.c.deactivated_at_block > ancestor,
            ))
            .values(active=True, deactivated_at_block=None)
        )
        conn.execute(delete(asset_data).where(and_(
            asset_data.c.chain_id == chain_id,
            asset_data.c.fetched_at_block > ancestor,
        )))
        conn.execute(delete(blocks).where(and_(blocks.c.chain_id == chain_id, blocks.c.number > ancestor)))
        self.set_cursor(conn, chain_id, ancestor)

        return {"pools_restored": restored, "pools_removed": removed, "watched_removed": watched}

    def prune_history(self, conn: Connection, chain_id: int, finalized_block: int) -> int:
        """
        Drop versions and block hashes that can no longer be reorged.

        Keeps, per pool, the latest version at or below `finalized_block`.
        """
        latest = conn.execute(
            select(pool_versions.c.address, func.max(pool_versions.c.block_number).label("keep"))
            .where(and_(
                pool_versions.c.chain_id == chain_id,
                pool_versions.c.block_number <= finalized_block,
            ))
            .group_by(pool_versions.c.address)
        ).all()
        pruned = 0
        for row in latest:
            pruned += conn.execute(delete(pool_versions).where(and_(
                pool_versions.c.chain_id == chain_id,
                pool_versions.c.address == row.address,
                pool_versions.c.block_number < row.keep,
            ))).rowcount
        conn.execute(delete(blocks).where(and_(blocks.c.chain_id == chain_id, blocks.c.number < finalized_block)))
        return pruned
