"""
Dynamic Barrier Calculator

Regime- and volatility-conditioned stop-loss / take-profit / time-exit
levels, plus path-dependent monitoring of open trades.
"""

from edgeflow.barriers.config import BarrierConfig, RegimeBarrierConfig
from edgeflow.barriers.calculator import DynamicBarrierCalculator
from edgeflow.barriers.schemas import BarrierLevels, BarrierProgress, ExitReason, PathMetrics

__version__ = "1.0.0"

__all__ = [
    'BarrierConfig',
    'RegimeBarrierConfig',
    'DynamicBarrierCalculator',
    'BarrierLevels',
    'BarrierProgress',
    'ExitReason',
    'PathMetrics',
]
