"""
Table layout for indexer state.

Integers that can exceed 64 bits (reserves, sqrt prices, USD amounts) are
stored as decimal strings so SQLite and PostgreSQL behave the same.
"""

from sqlalchemy import BigInteger, Boolean, Column, Integer, MetaData, String, Table, Text

metadata = MetaData()

BIG = String(80)
ADDRESS = String(66)  # wide enough for V4 pool ids

pools = Table(
    "pools",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("address", ADDRESS, primary_key=True),
    Column("protocol", String(4), nullable=False),
    Column("base_token", ADDRESS, nullable=False, index=True),
    Column("quote_token", ADDRESS, nullable=False),
    Column("hooks", ADDRESS, nullable=True, index=True),
    Column("created_block", BigInteger, nullable=False),
    Column("last_updated_block", BigInteger, nullable=False, index=True),
    Column("has_bonding_curve", Boolean, nullable=False, default=False),
    Column("graduated", Boolean, nullable=False, default=False),
    Column("payload", Text, nullable=False),
)

# One row per (pool, block) the pool changed in; reorg rollback restores from here
pool_versions = Table(
    "pool_versions",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("address", ADDRESS, primary_key=True),
    Column("block_number", BigInteger, primary_key=True),
    Column("payload", Text, nullable=False),
)

watched_addresses = Table(
    "watched_addresses",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("address", ADDRESS, primary_key=True),
    Column("protocol", String(4), nullable=False),
    Column("factory", ADDRESS, nullable=True),
    Column("discovered_at_block", BigInteger, nullable=False, index=True),
    Column("active", Boolean, nullable=False, default=True),
    Column("deactivated_at_block", BigInteger, nullable=True),
)

asset_data = Table(
    "asset_data",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("asset", ADDRESS, primary_key=True),
    Column("numeraire", ADDRESS, nullable=False),
    Column("timelock", ADDRESS, nullable=False),
    Column("governance", ADDRESS, nullable=False),
    Column("liquidity_migrator", ADDRESS, nullable=False),
    Column("pool_initializer", ADDRESS, nullable=False),
    Column("pool", ADDRESS, nullable=False),
    Column("migration_pool", ADDRESS, nullable=False),
    Column("num_tokens_to_sell", BIG, nullable=False),
    Column("total_supply", BIG, nullable=False),
    Column("integrator", ADDRESS, nullable=False),
    Column("fetched_at_block", BigInteger, nullable=False),
)

oracle_samples = Table(
    "oracle_samples",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("oracle_id", String(32), primary_key=True),
    Column("block_number", BigInteger, primary_key=True),
    Column("rate", BIG, nullable=False),
    Column("timestamp", BigInteger, nullable=False),
)

checkpoints = Table(
    "checkpoints",
    metadata,
    Column("job_name", String(64), primary_key=True),
    Column("chain_id", Integer, primary_key=True),
    Column("last_processed_block", BigInteger, nullable=False),
)

# Successful job runs; a rollback restores the latest one at or below the ancestor
checkpoint_runs = Table(
    "checkpoint_runs",
    metadata,
    Column("job_name", String(64), primary_key=True),
    Column("chain_id", Integer, primary_key=True),
    Column("block_number", BigInteger, primary_key=True),
)

blocks = Table(
    "blocks",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("number", BigInteger, primary_key=True),
    Column("hash", String(66), nullable=False),
    Column("parent_hash", String(66), nullable=False),
    Column("timestamp", BigInteger, nullable=False),
)

cursors = Table(
    "cursors",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("block_number", BigInteger, nullable=False),
)

volume_entries = Table(
    "volume_entries",
    metadata,
    Column("chain_id", Integer, primary_key=True),
    Column("pool", ADDRESS, primary_key=True),
    Column("block_number", BigInteger, primary_key=True),
    Column("log_index", Integer, primary_key=True),
    Column("timestamp", BigInteger, nullable=False, index=True),
    Column("amount_usd", BIG, nullable=False),
)
