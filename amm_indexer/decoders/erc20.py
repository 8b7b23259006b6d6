"""
ERC20 totalSupply() reads for the base token of newly created pools.
"""

from typing import Tuple

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from ..config.protocols import ProtocolConfig
from ..errors import DecodeAnomaly

_protocols = ProtocolConfig()


def total_supply_call() -> Tuple[bytes, bytes]:
    """Selector and (empty) arguments of totalSupply()."""
    return function_signature_to_4byte_selector(_protocols.ERC20_TOTAL_SUPPLY), b""


def decode_total_supply(token: str, return_data: bytes) -> int:
    """
    Raises:
        DecodeAnomaly: If the return data is not a single uint256
    """
    try:
        (supply,) = eth_abi.decode(list(_protocols.ERC20_UINT_TYPES), bytes(return_data))
    except (DecodingError, ValueError, TypeError) as e:
        raise DecodeAnomaly(f"totalSupply() of {token}: {e}") from e
    return supply
