"""
AMM pool indexer.

Ingests V2/V3/V4 pool logs per chain, keeps a reorg-safe pool store and
derives USD metrics from oracle samples.
"""

__version__ = "0.1.0"
