"""
Environment-driven configuration shared by every indexer config section.

Values come from the process environment, with a `.env` file in the working
directory loaded first. Each section is a dataclass whose defaults read the
environment at import time; tests build sections with explicit values.
"""

import os
import logging
from typing import Any, Callable, Dict, Optional, List, TypeVar
from dataclasses import dataclass, fields
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("local", "test", "dev", "staging", "production")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TRUTHY = ("true", "1", "yes", "on")

T = TypeVar("T")


class ConfigError(Exception):
    """Exception raised for configuration-related errors."""
    pass


@dataclass
class BaseConfig:
    """Common fields and env helpers for indexer configuration sections."""

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "local")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        self._setup_logging()
        self._validate_config()

    def _setup_logging(self):
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        logging.basicConfig(level=level if isinstance(level, int) else logging.INFO, format=LOG_FORMAT)

    def _validate_config(self):
        if self.ENVIRONMENT not in ENVIRONMENTS:
            raise ConfigError(
                f"Invalid environment: {self.ENVIRONMENT} (expected one of {', '.join(ENVIRONMENTS)})"
            )

    @staticmethod
    def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
        """
        Read an environment variable.

        Raises:
            ConfigError: If `required` and the variable is unset
        """
        value = os.getenv(key, default)
        if required and value is None:
            raise ConfigError(f"Required environment variable '{key}' is not set")
        return value

    @staticmethod
    def _typed(key: str, convert: Callable[[str], T], kind: str, default: Optional[T], required: bool) -> T:
        raw = os.getenv(key)
        if raw is None:
            if required and default is None:
                raise ConfigError(f"Required environment variable '{key}' is not set")
            return default
        try:
            return convert(raw.strip().replace("_", ""))
        except ValueError:
            raise ConfigError(f"Environment variable '{key}' must be {kind}, got: {raw}") from None

    @staticmethod
    def get_env_int(key: str, default: Optional[int] = None, required: bool = False) -> int:
        """Integer variable; underscores are allowed as digit separators (10_000)."""
        return BaseConfig._typed(key, int, "an integer", default, required)

    @staticmethod
    def get_env_float(key: str, default: Optional[float] = None, required: bool = False) -> float:
        return BaseConfig._typed(key, float, "a number", default, required)

    @staticmethod
    def get_env_bool(key: str, default: bool = False) -> bool:
        raw = os.getenv(key)
        return default if raw is None else raw.strip().lower() in TRUTHY

    @staticmethod
    def get_env_list(key: str, default: Optional[List[str]] = None, separator: str = ",") -> List[str]:
        """Separator-delimited list, e.g. ENABLED_CHAINS=mainnet,baseSepolia."""
        raw = os.getenv(key)
        if raw is None:
            return list(default or [])
        return [item.strip() for item in raw.split(separator) if item.strip()]

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}
