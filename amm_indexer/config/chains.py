"""
Chain registry for the AMM indexer.

Each ChainConfig is immutable and loaded once at startup. Launchpad
contract addresses (airlock, initializers, migrator) are deployment
specific and read from the environment, e.g. BASESEPOLIA_AIRLOCK_ADDRESS.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .base import BaseConfig, ConfigError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ETH_USD = "eth_usd"


@dataclass(frozen=True)
class SharedAddresses:
    """Launchpad contracts shared across protocol generations."""
    airlock: Optional[str] = None
    token_factory: Optional[str] = None
    universal_router: Optional[str] = None
    migrator: Optional[str] = None
    v3_initializer: Optional[str] = None
    v4_initializer: Optional[str] = None
    weth: Optional[str] = None


@dataclass(frozen=True)
class OracleAddresses:
    chainlink_eth: Optional[str] = None
    mainnet_eth_usdc: Optional[str] = None
    weth: Optional[str] = None
    usdc: Optional[str] = None


@dataclass(frozen=True)
class ChainAddresses:
    shared: SharedAddresses = field(default_factory=SharedAddresses)
    oracle: OracleAddresses = field(default_factory=OracleAddresses)
    v2_factory: Optional[str] = None
    v3_factory: Optional[str] = None
    v4_pool_manager: Optional[str] = None


@dataclass(frozen=True)
class ChainConfig:
    """
    Static configuration for one chain.

    Attributes:
        chain_id: EVM chain id
        name: Network name
        start_block: First block indexed for V2 contracts
        oracle_start_block: First block with oracle samples
        rpc_source: Environment variable holding the RPC URL
        addresses: Nested address sets
        v3_start_block: First block for V3 contracts (defaults to start_block)
        v4_start_block: First block for V4 contracts (None when V4 is absent)
        quote_oracles: Quote token address -> oracle id used to value it
        graduation_threshold_usd: USD liquidity a bonding curve needs to graduate
    """

    chain_id: int
    name: str
    start_block: int
    oracle_start_block: int
    rpc_source: str
    addresses: ChainAddresses = field(default_factory=ChainAddresses)
    v3_start_block: Optional[int] = None
    v4_start_block: Optional[int] = None
    quote_oracles: Dict[str, str] = field(default_factory=dict)
    graduation_threshold_usd: int = 0

    def __post_init__(self):
        blocks = [("start_block", self.start_block), ("oracle_start_block", self.oracle_start_block)]
        if self.v3_start_block is not None:
            blocks.append(("v3_start_block", self.v3_start_block))
        if self.v4_start_block is not None:
            blocks.append(("v4_start_block", self.v4_start_block))
        for name, value in blocks:
            if value < 0:
                raise ConfigError(f"{self.name}: {name} must be non-negative, got {value}")

        generations = [
            b for b in (self.start_block, self.v3_start_block, self.v4_start_block)
            if b is not None
        ]
        if generations != sorted(generations):
            raise ConfigError(
                f"{self.name}: start blocks must be non-decreasing across V2 -> V3 -> V4, "
                f"got {generations}"
            )
        if self.graduation_threshold_usd < 0:
            raise ConfigError(f"{self.name}: graduation threshold must be non-negative")

        # Addresses are compared lowercase everywhere
        object.__setattr__(
            self,
            "quote_oracles",
            {token.lower(): oracle for token, oracle in self.quote_oracles.items()},
        )

    @property
    def earliest_block(self) -> int:
        """Lowest block any configured contract must be indexed from."""
        candidates = [self.start_block, self.oracle_start_block]
        if self.v3_start_block is not None:
            candidates.append(self.v3_start_block)
        if self.v4_start_block is not None:
            candidates.append(self.v4_start_block)
        return min(candidates)

    def oracle_for(self, quote_token: str) -> Optional[str]:
        return self.quote_oracles.get(quote_token.lower())


def _env_address(chain_name: str, key: str) -> Optional[str]:
    value = BaseConfig.get_env(f"{chain_name.upper()}_{key}_ADDRESS")
    return value.lower() if value else None


def _shared_addresses(chain_name: str, weth: str) -> SharedAddresses:
    return SharedAddresses(
        airlock=_env_address(chain_name, "AIRLOCK"),
        token_factory=_env_address(chain_name, "TOKEN_FACTORY"),
        universal_router=_env_address(chain_name, "UNIVERSAL_ROUTER"),
        migrator=_env_address(chain_name, "MIGRATOR"),
        v3_initializer=_env_address(chain_name, "V3_INITIALIZER"),
        v4_initializer=_env_address(chain_name, "V4_INITIALIZER"),
        weth=weth.lower(),
    )


@dataclass
class ChainRegistry(BaseConfig):
    """Registry of supported chains."""

    ENABLED_CHAINS: List[str] = field(
        default_factory=lambda: BaseConfig.get_env_list("ENABLED_CHAINS", ["mainnet", "baseSepolia"])
    )
    GRADUATION_THRESHOLD_USD: int = BaseConfig.get_env_int("GRADUATION_THRESHOLD_USD", 50_000)

    @property
    def supported_chains(self) -> Dict[str, ChainConfig]:
        """Get configuration for all supported chains."""
        threshold = self.GRADUATION_THRESHOLD_USD * 10**18
        mainnet_weth = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
        base_weth = "0x4200000000000000000000000000000000000006"
        return {
            "mainnet": ChainConfig(
                chain_id=1,
                name="mainnet",
                start_block=22700000,
                v3_start_block=22700000,
                v4_start_block=22700000,
                oracle_start_block=22700000,
                rpc_source="PONDER_RPC_URL_1",
                addresses=ChainAddresses(
                    shared=_shared_addresses("mainnet", mainnet_weth),
                    oracle=OracleAddresses(
                        chainlink_eth="0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419",
                        mainnet_eth_usdc="0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640",
                        weth=mainnet_weth.lower(),
                        usdc="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
                    ),
                    v2_factory="0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f",
                    v3_factory="0x1f98431c8ad98523631ae4a59f267346ea31f984",
                    v4_pool_manager="0x000000000004444c5dc75cb358380d2e3de08a90",
                ),
                quote_oracles={mainnet_weth: ETH_USD, ZERO_ADDRESS: ETH_USD},
                graduation_threshold_usd=threshold,
            ),
            "baseSepolia": ChainConfig(
                chain_id=84532,
                name="baseSepolia",
                start_block=27059000,
                v3_start_block=27059000,
                v4_start_block=27059000,
                oracle_start_block=27059000,
                rpc_source="PONDER_RPC_URL_84532",
                addresses=ChainAddresses(
                    shared=_shared_addresses("baseSepolia", base_weth),
                    oracle=OracleAddresses(
                        chainlink_eth="0x4adc67696ba383f43dd60a9e78f2c97fbbfc7cb1",
                        weth=base_weth.lower(),
                    ),
                    v2_factory=_env_address("baseSepolia", "V2_FACTORY"),
                    v3_factory=_env_address("baseSepolia", "V3_FACTORY"),
                    v4_pool_manager=_env_address("baseSepolia", "V4_POOL_MANAGER"),
                ),
                quote_oracles={base_weth: ETH_USD, ZERO_ADDRESS: ETH_USD},
                graduation_threshold_usd=threshold,
            ),
        }

    @property
    def enabled_chains(self) -> List[ChainConfig]:
        return [self.get_chain_config(name) for name in self.ENABLED_CHAINS]

    def get_chain_config(self, chain_name: str) -> ChainConfig:
        """Get configuration for a specific chain."""
        if chain_name not in self.supported_chains:
            raise ValueError(f"Unsupported chain: {chain_name}")
        return self.supported_chains[chain_name]

    def get_chain_by_id(self, chain_id: int) -> ChainConfig:
        for chain in self.supported_chains.values():
            if chain.chain_id == chain_id:
                return chain
        raise ValueError(f"Unsupported chain id: {chain_id}")

    def get_rpc_url(self, chain_name: str) -> str:
        """Get RPC URL for a specific chain from its rpc_source variable."""
        chain = self.get_chain_config(chain_name)
        return self.get_env(chain.rpc_source, required=True)
