"""
Per-chain log ingestion: RPC boundary, retry, reorg recovery and the pipeline.
"""

from .errors import ErrorHandler, retry_rpc
from .rpc import RpcClient, Web3RpcClient
from .reorg import ReorgHandler
from .pipeline import ChainIngestionPipeline, PipelineState

__all__ = [
    "ErrorHandler",
    "retry_rpc",
    "RpcClient",
    "Web3RpcClient",
    "ReorgHandler",
    "ChainIngestionPipeline",
    "PipelineState",
]
