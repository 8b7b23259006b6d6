"""
Pricing: oracle conversion, derived pool metrics and rolling volume.
"""

from .metrics import MetricAggregator, PoolMathError, RefreshResult, compute_price, liquidity_amounts
from .oracle import OraclePriceConverter
from .volume import VolumeTracker

__all__ = [
    "MetricAggregator",
    "PoolMathError",
    "RefreshResult",
    "compute_price",
    "liquidity_amounts",
    "OraclePriceConverter",
    "VolumeTracker",
]
