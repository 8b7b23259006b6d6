"""
Configuration manager for the AMM indexer.

Combines all configuration classes into a single interface.
"""

import logging
from typing import Optional

from .base import BaseConfig, ConfigError
from .chains import ChainRegistry
from .database import DatabaseConfig
from .indexer import IndexerSettings
from .protocols import ProtocolConfig

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Centralized configuration manager that combines all configuration classes.
    """

    def __init__(self, environment: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            environment: Override the environment (local, test, dev, staging, production)
        """
        self._environment = environment
        self._initialize_configs()

    def _initialize_configs(self):
        """Initialize all configuration objects."""
        try:
            # An explicit environment is validated like the env var
            self._base_config = (
                BaseConfig(ENVIRONMENT=self._environment) if self._environment else BaseConfig()
            )

            self._database_config = DatabaseConfig()
            self._chain_registry = ChainRegistry()
            self._protocol_config = ProtocolConfig()
            self._indexer_settings = IndexerSettings()

            logger.info(f"Configuration initialized for environment: {self.environment}")

        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize configuration: {e}")
            raise ConfigError(f"Configuration initialization failed: {e}")

    @property
    def environment(self) -> str:
        return self._base_config.ENVIRONMENT

    @property
    def base(self) -> BaseConfig:
        return self._base_config

    @property
    def database(self) -> DatabaseConfig:
        return self._database_config

    @property
    def chains(self) -> ChainRegistry:
        return self._chain_registry

    @property
    def protocols(self) -> ProtocolConfig:
        return self._protocol_config

    @property
    def indexer(self) -> IndexerSettings:
        return self._indexer_settings


_config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the process-wide configuration manager, creating it on first use."""
    global _config
    if _config is None:
        _config = ConfigManager()
    return _config


def reload_config() -> ConfigManager:
    """Drop the cached configuration and load it again."""
    global _config
    _config = None
    return get_config()
