"""
Core domain types for pools, oracle samples and checkpoints.

Pools are a tagged variant: a ProtocolVersion tag plus a version-specific
state payload (V2State for reserve pools, ConcentratedState for V3/V4).
All monetary values are integers; prices and oracle rates are WAD-scaled.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union

WAD = 10**18


class ProtocolVersion(Enum):
    """AMM protocol generation."""
    V2 = "v2"
    V3 = "v3"
    V4 = "v4"

    @property
    def is_concentrated(self) -> bool:
        return self is not ProtocolVersion.V2


@dataclass(frozen=True)
class V2State:
    """Constant-product reserves in raw token units."""
    reserve0: int = 0
    reserve1: int = 0


@dataclass(frozen=True)
class ConcentratedState:
    """Active liquidity and price of a V3/V4 pool."""
    liquidity: int = 0
    sqrt_price_x96: int = 0
    tick: int = 0


PoolState = Union[V2State, ConcentratedState]


def empty_state(protocol: ProtocolVersion) -> PoolState:
    """Return the zero state payload for a protocol generation."""
    if protocol is ProtocolVersion.V2:
        return V2State()
    return ConcentratedState()


@dataclass(frozen=True)
class BondingCurve:
    """
    Pre-graduation sale state of a launched token.

    Attributes:
        tokens_to_sell: Tokens allotted to the curve
        total_supply: Total supply of the base token
        graduation_threshold: USD liquidity required to graduate
        graduation_balance: USD liquidity accrued so far
        graduated: Terminal flag, set once
    """
    tokens_to_sell: int
    total_supply: int
    graduation_threshold: int
    graduation_balance: int = 0
    graduated: bool = False


@dataclass
class Pool:
    """
    Canonical pool entity, one per (chain_id, address).

    V4 pools are keyed by their pool id (bytes32 hex) instead of a contract
    address. `price` is quote per base, WAD-scaled; USD fields are truncated
    integers in the same unit scale as the quote token amounts.
    """

    chain_id: int
    address: str
    protocol: ProtocolVersion
    token0: str
    token1: str
    base_token: str
    quote_token: str
    state: PoolState
    created_block: int
    oracle_id: Optional[str] = None
    hooks: Optional[str] = None
    last_updated_block: int = 0
    last_updated_timestamp: int = 0
    price: int = 0
    liquidity_usd: int = 0
    volume_usd_24h: int = 0
    market_cap_usd: int = 0
    total_supply: int = 0
    bonding_curve: Optional[BondingCurve] = None

    @property
    def base_is_token0(self) -> bool:
        return self.base_token == self.token0

    @property
    def reserve_base(self) -> int:
        if not isinstance(self.state, V2State):
            raise TypeError(f"Pool {self.address} has no reserves")
        return self.state.reserve0 if self.base_is_token0 else self.state.reserve1

    @property
    def reserve_quote(self) -> int:
        if not isinstance(self.state, V2State):
            raise TypeError(f"Pool {self.address} has no reserves")
        return self.state.reserve1 if self.base_is_token0 else self.state.reserve0

    @property
    def has_state(self) -> bool:
        """True once at least one reserve/liquidity update has been applied."""
        if isinstance(self.state, V2State):
            return self.state.reserve0 > 0 or self.state.reserve1 > 0
        return self.state.sqrt_price_x96 > 0 or self.state.liquidity > 0

    @property
    def is_graduated(self) -> bool:
        return self.bonding_curve is not None and self.bonding_curve.graduated

    def with_state(self, state: PoolState, block_number: int, timestamp: int) -> "Pool":
        """Return a copy with a new state payload stamped at a block."""
        return replace(
            self,
            state=state,
            last_updated_block=block_number,
            last_updated_timestamp=timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert pool to a JSON-safe dictionary. Large ints become strings."""
        if isinstance(self.state, V2State):
            state = {"reserve0": str(self.state.reserve0), "reserve1": str(self.state.reserve1)}
        else:
            state = {
                "liquidity": str(self.state.liquidity),
                "sqrt_price_x96": str(self.state.sqrt_price_x96),
                "tick": self.state.tick,
            }
        curve = None
        if self.bonding_curve is not None:
            curve = {
                "tokens_to_sell": str(self.bonding_curve.tokens_to_sell),
                "total_supply": str(self.bonding_curve.total_supply),
                "graduation_threshold": str(self.bonding_curve.graduation_threshold),
                "graduation_balance": str(self.bonding_curve.graduation_balance),
                "graduated": self.bonding_curve.graduated,
            }
        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "protocol": self.protocol.value,
            "token0": self.token0,
            "token1": self.token1,
            "base_token": self.base_token,
            "quote_token": self.quote_token,
            "state": state,
            "created_block": self.created_block,
            "oracle_id": self.oracle_id,
            "hooks": self.hooks,
            "last_updated_block": self.last_updated_block,
            "last_updated_timestamp": self.last_updated_timestamp,
            "price": str(self.price),
            "liquidity_usd": str(self.liquidity_usd),
            "volume_usd_24h": str(self.volume_usd_24h),
            "market_cap_usd": str(self.market_cap_usd),
            "total_supply": str(self.total_supply),
            "bonding_curve": curve,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pool":
        protocol = ProtocolVersion(data["protocol"])
        raw_state = data["state"]
        if protocol is ProtocolVersion.V2:
            state: PoolState = V2State(int(raw_state["reserve0"]), int(raw_state["reserve1"]))
        else:
            state = ConcentratedState(
                liquidity=int(raw_state["liquidity"]),
                sqrt_price_x96=int(raw_state["sqrt_price_x96"]),
                tick=int(raw_state["tick"]),
            )
        curve = None
        if data.get("bonding_curve"):
            raw_curve = data["bonding_curve"]
            curve = BondingCurve(
                tokens_to_sell=int(raw_curve["tokens_to_sell"]),
                total_supply=int(raw_curve["total_supply"]),
                graduation_threshold=int(raw_curve["graduation_threshold"]),
                graduation_balance=int(raw_curve["graduation_balance"]),
                graduated=bool(raw_curve["graduated"]),
            )
        return cls(
            chain_id=int(data["chain_id"]),
            address=data["address"],
            protocol=protocol,
            token0=data["token0"],
            token1=data["token1"],
            base_token=data["base_token"],
            quote_token=data["quote_token"],
            state=state,
            created_block=int(data["created_block"]),
            oracle_id=data.get("oracle_id"),
            hooks=data.get("hooks"),
            last_updated_block=int(data["last_updated_block"]),
            last_updated_timestamp=int(data["last_updated_timestamp"]),
            price=int(data["price"]),
            liquidity_usd=int(data["liquidity_usd"]),
            volume_usd_24h=int(data["volume_usd_24h"]),
            market_cap_usd=int(data["market_cap_usd"]),
            total_supply=int(data["total_supply"]),
            bonding_curve=curve,
        )


@dataclass(frozen=True)
class WatchedAddress:
    """A dynamically discovered contract (or V4 pool id) included in log subscriptions."""
    chain_id: int
    protocol: ProtocolVersion
    address: str
    discovered_at_block: int
    factory: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class AssetData:
    """Launch parameters of a base token as reported by the airlock contract."""
    asset: str
    numeraire: str
    timelock: str
    governance: str
    liquidity_migrator: str
    pool_initializer: str
    pool: str
    migration_pool: str
    num_tokens_to_sell: int
    total_supply: int
    integrator: str


@dataclass(frozen=True)
class OracleSample:
    """
    USD rate of a native asset at a block.

    `rate` is WAD-scaled USD per whole native unit.
    """
    chain_id: int
    oracle_id: str
    block_number: int
    rate: int
    timestamp: int


@dataclass(frozen=True)
class Checkpoint:
    job_name: str
    chain_id: int
    last_processed_block: int


@dataclass(frozen=True)
class BlockHeader:
    number: int
    hash: str
    parent_hash: str
    timestamp: int


@dataclass(frozen=True)
class GraduationEvent:
    """Emitted once when a bonding-curve pool reaches its USD threshold."""
    chain_id: int
    pool: str
    base_token: str
    block_number: int
    graduation_balance: int
    graduation_threshold: int


@dataclass
class DecodedEvent:
    """
    A log decoded against a known event schema.

    Attributes:
        name: Event name (e.g. "Sync", "Swap")
        address: Emitting contract address (lowercase)
        args: Decoded event arguments by name
        block_number: Block containing the log
        log_index: Position of the log in the block
        block_hash: Hash of the containing block
    """
    name: str
    address: str
    args: Dict[str, Any]
    block_number: int
    log_index: int
    block_hash: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
