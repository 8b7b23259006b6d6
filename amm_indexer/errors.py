"""
Error taxonomy for the indexing engine.

Per-pool failures (DecodeAnomaly, OracleDataUnavailable) never abort a block.
Per-chain failures (ReorgDepthExceeded, ChainHalted) stop only that chain's task.
"""

from typing import Optional


class IndexerError(Exception):
    """Base exception for indexer errors."""
    pass


class TransientRpcError(IndexerError):
    """Network/timeout failure talking to the RPC collaborator. Retried with backoff."""

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(message)
        self.method = method


class DecodeAnomaly(IndexerError):
    """Malformed or unexpected log shape. The log is skipped and the cursor advances."""
    pass


class OracleDataUnavailable(IndexerError):
    """No oracle sample exists at or before the requested block."""

    def __init__(self, chain_id: int, oracle_id: str, block_number: int):
        super().__init__(
            f"No {oracle_id} sample on chain {chain_id} at or before block {block_number}"
        )
        self.chain_id = chain_id
        self.oracle_id = oracle_id
        self.block_number = block_number


class ReorgDepthExceeded(IndexerError):
    """No common ancestor found within the configured maximum reorg depth."""

    def __init__(self, chain_id: int, from_block: int, max_depth: int):
        super().__init__(
            f"Reorg on chain {chain_id} deeper than {max_depth} blocks below {from_block}"
        )
        self.chain_id = chain_id
        self.from_block = from_block
        self.max_depth = max_depth


class InvalidFactoryRegistration(IndexerError):
    """Factory registration does not match its event schema. Fatal at startup."""
    pass


class ChainHalted(IndexerError):
    """Ingestion for a chain stopped on an unrecoverable failure."""

    def __init__(self, chain_id: int, reason: str):
        super().__init__(f"Chain {chain_id} halted: {reason}")
        self.chain_id = chain_id
        self.reason = reason
