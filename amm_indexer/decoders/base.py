"""
Event schema parsing and log decoding.

An EventSpec is built from a Solidity-style signature such as
"Sync(uint112 reserve0, uint112 reserve1)" and decodes raw logs into
named arguments: indexed inputs from topics, the rest from data.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple, Union

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import to_hex
from hexbytes import HexBytes
from web3 import Web3

from ..errors import DecodeAnomaly
from ..models import DecodedEvent

logger = logging.getLogger(__name__)

_SIGNATURE_RE = re.compile(r"^\s*(\w+)\s*\((.*)\)\s*$")
_DYNAMIC_TYPES = ("string", "bytes")


@dataclass(frozen=True)
class EventInput:
    type: str
    name: str
    indexed: bool = False


def normalize_hex(value: Union[str, bytes, HexBytes]) -> str:
    """Lowercase 0x-prefixed hex for bytes or hex strings."""
    if isinstance(value, (bytes, bytearray)):
        return to_hex(bytes(value)).lower()
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


def _to_bytes(value: Union[str, bytes, HexBytes, None]) -> bytes:
    if value is None:
        return b""
    return bytes(HexBytes(value))


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return value.lower()
    if abi_type.startswith("bytes") and isinstance(value, (bytes, bytearray)):
        return normalize_hex(value)
    return value


@dataclass(frozen=True)
class EventSpec:
    """
    Typed schema of one event.

    Attributes:
        name: Event name
        inputs: Ordered inputs with their indexed flags
    """

    name: str
    inputs: Tuple[EventInput, ...]

    @classmethod
    def parse(cls, signature: str) -> "EventSpec":
        """
        Parse "Name(type [indexed] name, ...)" into an EventSpec.

        Raises:
            ValueError: If the signature is malformed
        """
        match = _SIGNATURE_RE.match(signature)
        if not match:
            raise ValueError(f"Malformed event signature: {signature}")
        name, body = match.group(1), match.group(2).strip()
        inputs: List[EventInput] = []
        if body:
            for position, part in enumerate(body.split(",")):
                tokens = part.split()
                if not tokens:
                    raise ValueError(f"Empty parameter in signature: {signature}")
                indexed = "indexed" in tokens[1:]
                rest = [t for t in tokens[1:] if t != "indexed"]
                arg_name = rest[0] if rest else f"arg{position}"
                inputs.append(EventInput(type=tokens[0], name=arg_name, indexed=indexed))
        return cls(name=name, inputs=tuple(inputs))

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic0(self) -> str:
        return normalize_hex(Web3.keccak(text=self.canonical))

    @property
    def input_names(self) -> List[str]:
        return [i.name for i in self.inputs]

    def input(self, name: str) -> EventInput:
        for item in self.inputs:
            if item.name == name:
                return item
        raise KeyError(name)

    def decode(self, log: Mapping[str, Any]) -> DecodedEvent:
        """
        Decode a raw log against this schema.

        Raises:
            DecodeAnomaly: If topics or data do not fit the schema
        """
        topics = [_to_bytes(t) for t in log.get("topics", [])]
        indexed = [i for i in self.inputs if i.indexed]
        plain = [i for i in self.inputs if not i.indexed]

        if not topics or normalize_hex(topics[0]) != self.topic0:
            raise DecodeAnomaly(f"{self.name}: topic0 mismatch")
        if len(topics) - 1 != len(indexed):
            raise DecodeAnomaly(
                f"{self.name}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        args: Dict[str, Any] = {}
        try:
            for item, topic in zip(indexed, topics[1:]):
                if item.type in _DYNAMIC_TYPES or item.type.endswith("]"):
                    # Dynamic indexed values are stored as their hash
                    args[item.name] = normalize_hex(topic)
                else:
                    args[item.name] = _normalize_value(item.type, eth_abi.decode([item.type], topic)[0])
            if plain:
                values = eth_abi.decode([i.type for i in plain], _to_bytes(log.get("data")))
                for item, value in zip(plain, values):
                    args[item.name] = _normalize_value(item.type, value)
        except (DecodingError, ValueError, TypeError, OverflowError) as e:
            raise DecodeAnomaly(f"{self.name}: {e}") from e

        return DecodedEvent(
            name=self.name,
            address=normalize_hex(log["address"]),
            args=args,
            block_number=int(log["blockNumber"]),
            log_index=int(log["logIndex"]),
            block_hash=normalize_hex(log["blockHash"]) if log.get("blockHash") else "",
        )

    def encode_log(self, address: str, values: Mapping[str, Any], block_number: int,
                   log_index: int, block_hash: str = "0x" + "00" * 32) -> Dict[str, Any]:
        """Build a raw log dict for this event. Used by fixtures and replay tooling."""
        topics = [HexBytes(self.topic0)]
        plain_types, plain_values = [], []
        for item in self.inputs:
            value = values[item.name]
            if item.type.startswith("bytes") and isinstance(value, str):
                value = bytes(HexBytes(value))
            if item.indexed:
                topics.append(HexBytes(eth_abi.encode([item.type], [value])))
            else:
                plain_types.append(item.type)
                plain_values.append(value)
        return {
            "address": address,
            "topics": topics,
            "data": HexBytes(eth_abi.encode(plain_types, plain_values)),
            "blockNumber": block_number,
            "logIndex": log_index,
            "blockHash": block_hash,
            "transactionHash": "0x" + "00" * 32,
        }


def log_sort_key(log: Mapping[str, Any]) -> Tuple[int, int]:
    return int(log["blockNumber"]), int(log["logIndex"])


def log_topic0(log: Mapping[str, Any]) -> str:
    topics = log.get("topics") or []
    return normalize_hex(_to_bytes(topics[0])) if topics else ""
