"""
Image optimization for stored receipts.
"""

from .batch import OptimizationBatchRunner, OptimizationBatchStats
from .engine import ImageOptimizationError, ImageOptimizer, OptimizationOutcome, OptimizationResult

__all__ = [
    "OptimizationBatchRunner",
    "OptimizationBatchStats",
    "ImageOptimizationError",
    "ImageOptimizer",
    "OptimizationOutcome",
    "OptimizationResult",
]
