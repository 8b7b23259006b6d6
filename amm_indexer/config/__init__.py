"""
Configuration management for the AMM indexer.

Example:
    from amm_indexer.config import get_config

    config = get_config()
    mainnet = config.chains.get_chain_config("mainnet")
    batch = config.indexer.BLOCKS_PER_BATCH
"""

from .base import BaseConfig, ConfigError
from .chains import ChainAddresses, ChainConfig, ChainRegistry, OracleAddresses, SharedAddresses
from .database import DatabaseConfig
from .indexer import IndexerSettings
from .manager import ConfigManager, get_config, reload_config
from .protocols import ProtocolConfig

__all__ = [
    "BaseConfig",
    "ConfigError",
    "ChainAddresses",
    "ChainConfig",
    "ChainRegistry",
    "OracleAddresses",
    "SharedAddresses",
    "DatabaseConfig",
    "IndexerSettings",
    "ProtocolConfig",
    "ConfigManager",
    "get_config",
    "reload_config",
]
