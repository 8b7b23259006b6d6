"""
RPC collaborator boundary.

The pipeline only needs logs over a block range, block headers, read-only
contract calls at a block, and the head height. Transport failures surface
as TransientRpcError; everything else propagates unchanged.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Sequence

import aiohttp
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from ..decoders.base import normalize_hex
from ..errors import DecodeAnomaly, TransientRpcError
from ..models import BlockHeader

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (asyncio.TimeoutError, OSError, aiohttp.ClientError, Web3Exception)


class RpcClient(ABC):
    """Read-only chain access used by ingestion and jobs."""

    @abstractmethod
    async def get_logs(self, chain_id: int, from_block: int, to_block: int,
                       addresses: Sequence[str]) -> List[Mapping[str, Any]]:
        """Logs emitted by `addresses` in [from_block, to_block]."""
        pass

    @abstractmethod
    async def get_block_header(self, chain_id: int, number: int) -> BlockHeader:
        pass

    @abstractmethod
    async def call_contract(self, chain_id: int, address: str, selector: bytes,
                            args: bytes, at_block: int) -> bytes:
        """eth_call of `selector + args` against `address` at a block."""
        pass

    @abstractmethod
    async def get_block_number(self, chain_id: int) -> int:
        pass


class Web3RpcClient(RpcClient):
    """RpcClient backed by one AsyncWeb3 HTTP provider per chain."""

    def __init__(self, rpc_urls: Mapping[int, str], request_timeout: float = 30.0):
        self.clients: Dict[int, AsyncWeb3] = {
            chain_id: AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": request_timeout}))
            for chain_id, url in rpc_urls.items()
        }
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _client(self, chain_id: int) -> AsyncWeb3:
        try:
            return self.clients[chain_id]
        except KeyError:
            raise ValueError(f"No RPC configured for chain {chain_id}") from None

    async def get_logs(self, chain_id: int, from_block: int, to_block: int,
                       addresses: Sequence[str]) -> List[Mapping[str, Any]]:
        if not addresses:
            return []
        params = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": [to_checksum_address(a) for a in addresses],
        }
        try:
            logs = await self._client(chain_id).eth.get_logs(params)
        except TRANSIENT_ERRORS as e:
            raise TransientRpcError(f"eth_getLogs [{from_block}, {to_block}]: {e}", "get_logs") from e
        return [dict(log) for log in logs]

    async def get_block_header(self, chain_id: int, number: int) -> BlockHeader:
        try:
            block = await self._client(chain_id).eth.get_block(number)
        except TRANSIENT_ERRORS as e:
            raise TransientRpcError(f"eth_getBlockByNumber {number}: {e}", "get_block_header") from e
        return BlockHeader(
            number=int(block["number"]),
            hash=normalize_hex(HexBytes(block["hash"])),
            parent_hash=normalize_hex(HexBytes(block["parentHash"])),
            timestamp=int(block["timestamp"]),
        )

    async def call_contract(self, chain_id: int, address: str, selector: bytes,
                            args: bytes, at_block: int) -> bytes:
        tx = {"to": to_checksum_address(address), "data": HexBytes(bytes(selector) + bytes(args))}
        try:
            return bytes(await self._client(chain_id).eth.call(tx, block_identifier=at_block))
        except ContractLogicError as e:
            raise DecodeAnomaly(f"Call to {address} reverted at block {at_block}: {e}") from e
        except TRANSIENT_ERRORS as e:
            raise TransientRpcError(f"eth_call {address} at {at_block}: {e}", "call_contract") from e

    async def get_block_number(self, chain_id: int) -> int:
        try:
            return int(await self._client(chain_id).eth.block_number)
        except TRANSIENT_ERRORS as e:
            raise TransientRpcError(f"eth_blockNumber: {e}", "get_block_number") from e
