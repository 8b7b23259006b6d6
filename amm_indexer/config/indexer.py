"""
Ingestion and scheduling settings.
"""

from dataclasses import dataclass

from .base import BaseConfig, ConfigError


@dataclass
class IndexerSettings(BaseConfig):
    """Tunables for the per-chain ingestion pipeline and checkpoint jobs."""

    # Log batching while catching up
    BLOCKS_PER_BATCH: int = BaseConfig.get_env_int("BLOCKS_PER_BATCH", 2000)
    # Catching Up -> Live once the cursor is this close to head
    TRAILING_DISTANCE: int = BaseConfig.get_env_int("TRAILING_DISTANCE", 12)
    MAX_REORG_DEPTH: int = BaseConfig.get_env_int("MAX_REORG_DEPTH", 64)
    POLL_INTERVAL_SECONDS: float = BaseConfig.get_env_float("POLL_INTERVAL_SECONDS", 2.0)

    # RPC retry
    MAX_CONSECUTIVE_FAILURES: int = BaseConfig.get_env_int("MAX_CONSECUTIVE_FAILURES", 5)
    RETRY_BASE_DELAY: float = BaseConfig.get_env_float("RETRY_BASE_DELAY", 1.0)
    RETRY_MAX_DELAY: float = BaseConfig.get_env_float("RETRY_MAX_DELAY", 60.0)

    # Checkpoint job intervals, in blocks
    ETH_PRICE_INTERVAL: int = BaseConfig.get_env_int("ETH_PRICE_INTERVAL", 50)
    POOL_METRICS_INTERVAL: int = BaseConfig.get_env_int("POOL_METRICS_INTERVAL", 100)
    MARKET_CAP_INTERVAL: int = BaseConfig.get_env_int("MARKET_CAP_INTERVAL", 300)

    def _validate_config(self):
        super()._validate_config()
        if self.BLOCKS_PER_BATCH <= 0:
            raise ConfigError("BLOCKS_PER_BATCH must be positive")
        if self.TRAILING_DISTANCE < 0:
            raise ConfigError("TRAILING_DISTANCE must be non-negative")
        if self.MAX_REORG_DEPTH <= 0:
            raise ConfigError("MAX_REORG_DEPTH must be positive")
        if self.MAX_CONSECUTIVE_FAILURES <= 0:
            raise ConfigError("MAX_CONSECUTIVE_FAILURES must be positive")
