"""
Protocol event and call signatures for the AMM indexer.

Signatures are written in Solidity event form with `indexed` markers and
argument names; the decoders parse them into typed schemas and derive
topic hashes from the canonical form.
"""

from dataclasses import dataclass
from typing import Dict, List

from .base import BaseConfig


@dataclass
class ProtocolConfig(BaseConfig):
    """Event signatures per protocol generation."""

    # Uniswap V2 (and forks)
    UNISWAP_V2_PAIR_CREATED: str = (
        "PairCreated(address indexed token0, address indexed token1, address pair, uint256 pairIndex)"
    )
    UNISWAP_V2_SYNC: str = "Sync(uint112 reserve0, uint112 reserve1)"
    UNISWAP_V2_SWAP: str = (
        "Swap(address indexed sender, uint256 amount0In, uint256 amount1In, "
        "uint256 amount0Out, uint256 amount1Out, address indexed to)"
    )

    # Uniswap V3 (and forks)
    UNISWAP_V3_POOL_CREATED: str = (
        "PoolCreated(address indexed token0, address indexed token1, uint24 indexed fee, "
        "int24 tickSpacing, address pool)"
    )
    UNISWAP_V3_INITIALIZE: str = "Initialize(uint160 sqrtPriceX96, int24 tick)"
    UNISWAP_V3_SWAP: str = (
        "Swap(address indexed sender, address indexed recipient, int256 amount0, int256 amount1, "
        "uint160 sqrtPriceX96, uint128 liquidity, int24 tick)"
    )
    UNISWAP_V3_MINT: str = (
        "Mint(address sender, address indexed owner, int24 indexed tickLower, int24 indexed tickUpper, "
        "uint128 amount, uint256 amount0, uint256 amount1)"
    )
    UNISWAP_V3_BURN: str = (
        "Burn(address indexed owner, int24 indexed tickLower, int24 indexed tickUpper, "
        "uint128 amount, uint256 amount0, uint256 amount1)"
    )

    # Uniswap V4 PoolManager (singleton, pools keyed by id)
    UNISWAP_V4_INITIALIZE: str = (
        "Initialize(bytes32 indexed id, address indexed currency0, address indexed currency1, "
        "uint24 fee, int24 tickSpacing, address hooks, uint160 sqrtPriceX96, int24 tick)"
    )
    UNISWAP_V4_SWAP: str = (
        "Swap(bytes32 indexed id, address indexed sender, int128 amount0, int128 amount1, "
        "uint160 sqrtPriceX96, uint128 liquidity, int24 tick, uint24 fee)"
    )
    UNISWAP_V4_MODIFY_LIQUIDITY: str = (
        "ModifyLiquidity(bytes32 indexed id, address indexed sender, int24 tickLower, "
        "int24 tickUpper, int256 liquidityDelta, bytes32 salt)"
    )

    # Launchpad airlock
    AIRLOCK_CREATE: str = (
        "Create(address asset, address indexed numeraire, address initializer, address poolOrHook)"
    )
    AIRLOCK_MIGRATE: str = "Migrate(address indexed asset, address indexed pool)"

    # Contract calls
    AIRLOCK_GET_ASSET_DATA: str = "getAssetData(address)"
    AIRLOCK_ASSET_DATA_TYPES: tuple = (
        "address", "address", "address", "address", "address",
        "address", "address", "uint256", "uint256", "address",
    )
    CHAINLINK_LATEST_ROUND_DATA: str = "latestRoundData()"
    CHAINLINK_ROUND_DATA_TYPES: tuple = ("uint80", "int256", "uint256", "uint256", "uint80")
    CHAINLINK_DECIMALS: int = 8
    ERC20_TOTAL_SUPPLY: str = "totalSupply()"
    ERC20_UINT_TYPES: tuple = ("uint256",)

    @property
    def factory_events(self) -> Dict[str, str]:
        """Pool-creation events by protocol."""
        return {
            "v2": self.UNISWAP_V2_PAIR_CREATED,
            "v3": self.UNISWAP_V3_POOL_CREATED,
            "v4": self.UNISWAP_V4_INITIALIZE,
            "airlock": self.AIRLOCK_CREATE,
        }

    @property
    def supported_protocols(self) -> List[str]:
        return ["v2", "v3", "v4"]
