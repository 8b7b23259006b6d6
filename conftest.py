"""
Pytest configuration shared by all test packages.
"""

import pytest

from amm_indexer.config.chains import ETH_USD
from amm_indexer.core.storage import IndexerDatabase, PoolStore
from amm_indexer.models import OracleSample
from amm_indexer.pricing import MetricAggregator, OraclePriceConverter, VolumeTracker
from amm_indexer.resolver import AddressResolver
from amm_indexer.testing import (
    ETH_RATE,
    PROTOCOLS,
    START_BLOCK,
    FakeChain,
    block_timestamp,
    make_chain,
    make_settings,
)


@pytest.fixture
def chain():
    """Test chain with V2/V3 factories, a V4 pool manager and an airlock."""
    return make_chain()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def db():
    """In-memory SQLite database with all tables created."""
    database = IndexerDatabase({"url": "sqlite://"})
    database.connect()
    yield database
    database.disconnect()


@pytest.fixture
def store():
    return PoolStore()


@pytest.fixture
def oracle():
    return OraclePriceConverter()


@pytest.fixture
def aggregator(oracle):
    return MetricAggregator(oracle, VolumeTracker())


@pytest.fixture
def resolver(store, chain):
    resolver = AddressResolver(store, [chain])
    resolver.register_chain_defaults(chain, PROTOCOLS)
    return resolver


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def record_rate(db, oracle, chain):
    """Record an ETH/USD sample; 2000 USD at the start block by default."""
    def record(block_number: int = START_BLOCK, rate: int = ETH_RATE) -> OracleSample:
        sample = OracleSample(chain.chain_id, ETH_USD, block_number, rate, block_timestamp(block_number))
        with db.begin() as conn:
            oracle.record_sample(conn, sample)
        return sample
    return record
