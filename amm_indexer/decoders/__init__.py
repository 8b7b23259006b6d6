"""
Log decoders for V2/V3/V4 pools and the launchpad airlock.
"""

from .base import EventInput, EventSpec, log_sort_key, log_topic0, normalize_hex
from .registry import DecoderRegistry, PoolUpdate, build_default_registry, orient_pair, sort_tokens

__all__ = [
    "EventInput",
    "EventSpec",
    "log_sort_key",
    "log_topic0",
    "normalize_hex",
    "DecoderRegistry",
    "PoolUpdate",
    "build_default_registry",
    "orient_pair",
    "sort_tokens",
]
