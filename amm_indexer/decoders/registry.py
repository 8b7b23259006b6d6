"""
Decoder registry: (protocol, topic0) -> event schema + state handler.

Handlers are pure functions of (pool, decoded event) that return the
updated pool and, for swaps, the quote-side trade size used for volume.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..models import DecodedEvent, Pool, ProtocolVersion
from .base import EventSpec

logger = logging.getLogger(__name__)


@dataclass
class PoolUpdate:
    """Result of applying one event to a pool."""
    pool: Pool
    swap_quote_amount: Optional[int] = None


PoolEventHandler = Callable[[Pool, DecodedEvent, int], PoolUpdate]


def orient_pair(chain: ChainConfig, token0: str, token1: str) -> Tuple[str, str]:
    """
    Pick (base, quote) for a pair.

    The quote token is the one the chain can value through an oracle;
    otherwise token1.
    """
    token0, token1 = token0.lower(), token1.lower()
    if chain.oracle_for(token0) and not chain.oracle_for(token1):
        return token1, token0
    return token0, token1


def sort_tokens(token_a: str, token_b: str) -> Tuple[str, str]:
    """Order two tokens by address magnitude, as the AMM contracts do."""
    a, b = token_a.lower(), token_b.lower()
    return (a, b) if int(a, 16) < int(b, 16) else (b, a)


class DecoderRegistry:
    """Maps (protocol, topic0) to the schema and handler for pool events."""

    def __init__(self):
        self._handlers: Dict[Tuple[ProtocolVersion, str], Tuple[EventSpec, PoolEventHandler]] = {}

    def register(self, protocol: ProtocolVersion, spec: EventSpec, handler: PoolEventHandler) -> None:
        key = (protocol, spec.topic0)
        if key in self._handlers:
            raise ValueError(f"Duplicate decoder for {protocol.value} {spec.canonical}")
        self._handlers[key] = (spec, handler)

    def lookup(self, protocol: ProtocolVersion, topic0: str) -> Optional[Tuple[EventSpec, PoolEventHandler]]:
        return self._handlers.get((protocol, topic0))

    def __len__(self) -> int:
        return len(self._handlers)


def build_default_registry(protocols: Optional[ProtocolConfig] = None) -> DecoderRegistry:
    """Registry with the V2, V3 and V4 pool event handlers."""
    from . import uniswap_v2, uniswap_v3, uniswap_v4

    protocols = protocols or ProtocolConfig()
    registry = DecoderRegistry()
    uniswap_v2.register(registry, protocols)
    uniswap_v3.register(registry, protocols)
    uniswap_v4.register(registry, protocols)
    logger.debug(f"Decoder registry built with {len(registry)} handlers")
    return registry
