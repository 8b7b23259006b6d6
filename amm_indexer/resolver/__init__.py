from .address_resolver import (
    AddressResolver,
    Discovery,
    DiscoveryContext,
    FactoryRegistration,
    airlock_builder,
)

__all__ = [
    "AddressResolver",
    "Discovery",
    "DiscoveryContext",
    "FactoryRegistration",
    "airlock_builder",
]
