"""
Address Resolver.

Turns factory-creation logs into watched addresses and pool records.
Registrations are keyed by (chain_id, factory, topic0); each one names the
event input holding the new address and a builder that produces the pool.
Inserts happen in the caller's transaction, so the watched address and its
pool are committed together or not at all.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.engine import Connection

from ..config.chains import ChainConfig
from ..config.protocols import ProtocolConfig
from ..core.storage import PoolStore
from ..decoders import airlock, uniswap_v2, uniswap_v3, uniswap_v4
from ..decoders.base import EventSpec, log_topic0, normalize_hex
from ..errors import DecodeAnomaly, InvalidFactoryRegistration
from ..models import AssetData, DecodedEvent, Pool, ProtocolVersion, WatchedAddress

logger = logging.getLogger(__name__)

ADDRESS_FIELD_TYPES = ("address", "bytes32")


@dataclass
class DiscoveryContext:
    """What a pool builder may consult while handling one creation log."""
    chain: ChainConfig
    store: PoolStore
    conn: Connection
    asset_data: Mapping[str, AssetData] = field(default_factory=dict)
    total_supplies: Mapping[str, int] = field(default_factory=dict)


PoolBuilder = Callable[[DiscoveryContext, DecodedEvent, str], Optional[Pool]]
SupplyToken = Callable[[ChainConfig, DecodedEvent], str]


@dataclass(frozen=True)
class FactoryRegistration:
    """
    A factory whose creation event yields new pool addresses.

    Attributes:
        chain_id: Chain the factory lives on
        factory: Factory contract address
        event: Creation event schema
        address_field: Event input carrying the new address (or pool id)
        protocol: Protocol generation of created pools
        builder: Produces the Pool to persist, or None when nothing changes
        supply_token: Picks the token whose totalSupply() the pool needs
    """
    chain_id: int
    factory: str
    event: EventSpec
    address_field: str
    protocol: ProtocolVersion
    builder: PoolBuilder
    supply_token: Optional[SupplyToken] = None

    @property
    def key(self) -> Tuple[int, str, str]:
        return self.chain_id, self.factory, self.event.topic0

    @property
    def subscribes(self) -> bool:
        """Address-typed fields name contracts that emit their own logs; bytes32 ids do not."""
        return self.event.input(self.address_field).type == "address"


@dataclass(frozen=True)
class Discovery:
    """Outcome of a handled factory log."""
    chain_id: int
    address: str
    protocol: ProtocolVersion
    block_number: int
    pool: Pool
    new_watch: bool


def _plain_builder(build: Callable[[ChainConfig, DecodedEvent, str], Pool]) -> PoolBuilder:
    """Builder for factories whose pools are new on creation; re-seen pools are a no-op."""
    def builder(ctx: DiscoveryContext, event: DecodedEvent, address: str) -> Optional[Pool]:
        if ctx.store.get_pool(ctx.conn, ctx.chain.chain_id, address) is not None:
            return None
        pool = build(ctx.chain, event, address)
        supply = ctx.total_supplies.get(pool.base_token)
        return replace(pool, total_supply=supply) if supply else pool
    return builder


def airlock_builder(ctx: DiscoveryContext, event: DecodedEvent, pool_or_hook: str) -> Optional[Pool]:
    """
    Attach a bonding curve for an airlock Create.

    The target is the V3 pool at `poolOrHook`, else the V4 pool whose hooks
    equal it, else a V3 pool assumed at that address.
    """
    chain_id = ctx.chain.chain_id
    asset = event.args["asset"]
    data = ctx.asset_data.get(asset) or ctx.store.get_asset_data(ctx.conn, chain_id, asset)
    if data is None:
        raise DecodeAnomaly(f"No asset data for {asset} on chain {chain_id}")

    existing = (
        ctx.store.get_pool(ctx.conn, chain_id, pool_or_hook)
        or ctx.store.find_by_hooks(ctx.conn, chain_id, pool_or_hook)
    )
    if existing is not None and existing.bonding_curve is not None:
        return None

    current = ctx.store.active_curve_for_base(ctx.conn, chain_id, asset)
    if current is not None and (existing is None or current.address != existing.address):
        raise DecodeAnomaly(
            f"Asset {asset} already has an active bonding curve in pool {current.address}"
        )

    ctx.store.save_asset_data(ctx.conn, chain_id, data, event.block_number)
    return airlock.curve_pool(ctx.chain, event, data, existing)


class AddressResolver:
    """Factory registry and discovery handler for all configured chains."""

    def __init__(self, store: PoolStore, chains: Iterable[ChainConfig]):
        self.store = store
        self.chains: Dict[int, ChainConfig] = {c.chain_id: c for c in chains}
        self._registrations: Dict[Tuple[int, str, str], FactoryRegistration] = {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def register_factory(
        self,
        chain_id: int,
        factory_address: str,
        event: EventSpec,
        address_field: str,
        protocol: ProtocolVersion,
        builder: PoolBuilder,
        supply_token: Optional[SupplyToken] = None,
    ) -> FactoryRegistration:
        """
        Register a factory creation event.

        Raises:
            InvalidFactoryRegistration: If the address field is missing or not
                address-typed, or a different registration exists for the key
        """
        if chain_id not in self.chains:
            raise InvalidFactoryRegistration(f"Unknown chain id {chain_id}")
        try:
            field_type = event.input(address_field).type
        except KeyError:
            raise InvalidFactoryRegistration(
                f"{event.canonical} has no input named '{address_field}'"
            ) from None
        if field_type not in ADDRESS_FIELD_TYPES:
            raise InvalidFactoryRegistration(
                f"{event.canonical}: '{address_field}' is {field_type}, expected address or bytes32"
            )

        registration = FactoryRegistration(
            chain_id=chain_id,
            factory=normalize_hex(factory_address),
            event=event,
            address_field=address_field,
            protocol=protocol,
            builder=builder,
            supply_token=supply_token,
        )
        known = self._registrations.get(registration.key)
        if known is not None:
            if known == registration:
                return known
            raise InvalidFactoryRegistration(
                f"Conflicting registration for {event.name} on {registration.factory} (chain {chain_id})"
            )
        self._registrations[registration.key] = registration
        self.logger.debug(
            f"Registered {protocol.value} factory {registration.factory} "
            f"({event.name}.{address_field}) on chain {chain_id}"
        )
        return registration

    def register_chain_defaults(self, chain: ChainConfig, protocols: Optional[ProtocolConfig] = None) -> int:
        """Register every factory the chain config names. Returns the count."""
        protocols = protocols or ProtocolConfig()
        addresses = chain.addresses
        entries = [
            (addresses.v2_factory, protocols.UNISWAP_V2_PAIR_CREATED, "pair",
             ProtocolVersion.V2, _V2_BUILDER, uniswap_v2.base_token),
            (addresses.v3_factory, protocols.UNISWAP_V3_POOL_CREATED, "pool",
             ProtocolVersion.V3, _V3_BUILDER, uniswap_v3.base_token),
            (addresses.v4_pool_manager, protocols.UNISWAP_V4_INITIALIZE, "id",
             ProtocolVersion.V4, _V4_BUILDER, uniswap_v4.base_token),
            (addresses.shared.airlock, protocols.AIRLOCK_CREATE, "poolOrHook",
             ProtocolVersion.V3, airlock_builder, None),
        ]
        count = 0
        for factory, signature, address_field, protocol, builder, supply_token in entries:
            if not factory:
                continue
            self.register_factory(
                chain.chain_id, factory, EventSpec.parse(signature), address_field, protocol, builder,
                supply_token,
            )
            count += 1
        self.logger.info(f"{chain.name}: {count} factory registrations")
        return count

    def registrations(self, chain_id: int) -> List[FactoryRegistration]:
        return [r for r in self._registrations.values() if r.chain_id == chain_id]

    def match(self, chain_id: int, log: Mapping[str, Any]) -> Optional[FactoryRegistration]:
        key = (chain_id, normalize_hex(log["address"]), log_topic0(log))
        return self._registrations.get(key)

    def is_factory_log(self, chain_id: int, log: Mapping[str, Any]) -> bool:
        return self.match(chain_id, log) is not None

    def _decode(self, chain_id: int, log: Mapping[str, Any]) -> Tuple[Optional[FactoryRegistration],
                                                                     Optional[DecodedEvent]]:
        registration = self.match(chain_id, log)
        if registration is None:
            return None, None
        try:
            return registration, registration.event.decode(log)
        except DecodeAnomaly:
            return registration, None

    def created_address(self, chain_id: int, log: Mapping[str, Any]) -> Optional[str]:
        """
        Contract a factory log creates that must join the log subscription.

        None for non-factory logs, malformed logs and V4 pool ids, which
        log through the PoolManager.
        """
        registration, event = self._decode(chain_id, log)
        if event is None or not registration.subscribes:
            return None
        return event.args[registration.address_field]

    def supply_token(self, chain_id: int, log: Mapping[str, Any]) -> Optional[str]:
        """Token whose totalSupply() the pool built from this factory log needs, if any."""
        registration, event = self._decode(chain_id, log)
        if event is None or registration.supply_token is None:
            return None
        return registration.supply_token(self.chains[chain_id], event)

    def static_addresses(self, chain_id: int) -> List[str]:
        """Configured contracts always in the subscription set."""
        chain = self.chains[chain_id]
        found = {r.factory for r in self.registrations(chain_id)}
        for address in (chain.addresses.shared.airlock, chain.addresses.v4_pool_manager):
            if address:
                found.add(address.lower())
        return sorted(found)

    def watch_set(self, conn: Connection, chain_id: int) -> List[str]:
        """Static contracts plus every active discovered pool contract."""
        watched = [
            a for a in self.store.watched_addresses(conn, chain_id, active_only=True)
            if len(a) == 42
        ]
        return sorted(set(self.static_addresses(chain_id)) | set(watched))

    def on_log(
        self,
        conn: Connection,
        chain_id: int,
        log: Mapping[str, Any],
        asset_data: Optional[Mapping[str, AssetData]] = None,
        total_supplies: Optional[Mapping[str, int]] = None,
    ) -> Optional[Discovery]:
        """
        Handle a factory log in the caller's transaction.

        Returns None for logs that are not factory logs and for creations
        already applied.

        Raises:
            DecodeAnomaly: If the log does not decode against the registered event
        """
        registration = self.match(chain_id, log)
        if registration is None:
            return None

        event = registration.event.decode(log)
        new_address = event.args[registration.address_field]
        ctx = DiscoveryContext(
            chain=self.chains[chain_id],
            store=self.store,
            conn=conn,
            asset_data=asset_data or {},
            total_supplies=total_supplies or {},
        )
        pool = registration.builder(ctx, event, new_address)
        if pool is None:
            self.logger.debug(f"{event.name} for {new_address} already applied on chain {chain_id}")
            return None

        inserted = self.store.add_watched_address(conn, WatchedAddress(
            chain_id=chain_id,
            protocol=pool.protocol,
            address=pool.address,
            discovered_at_block=event.block_number,
            factory=registration.factory,
        ))
        self.store.save_pool(conn, pool, event.block_number)
        if inserted:
            self.logger.info(
                f"Discovered {pool.protocol.value} pool {pool.address} at block {event.block_number} "
                f"(chain {chain_id})"
            )
        return Discovery(
            chain_id=chain_id,
            address=pool.address,
            protocol=pool.protocol,
            block_number=event.block_number,
            pool=pool,
            new_watch=inserted,
        )


_V2_BUILDER = _plain_builder(uniswap_v2.build_pair)
_V3_BUILDER = _plain_builder(uniswap_v3.build_pool)
_V4_BUILDER = _plain_builder(uniswap_v4.build_pool)
