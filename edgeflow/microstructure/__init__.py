"""
Microstructure Analyzer

Order flow, liquidity and execution quality from order book snapshots and
trade prints. Vetoes trades in toxic or illiquid conditions and advises on
entry timing around liquidity sweeps.

Flow:
    Order book + Trades + Candles → Metrics → Regime → Reject / Timing
"""

from edgeflow.microstructure.config import (
    MicrostructureConfig,
    LiquidityConfig,
    ExecutionConfig,
    SweepConfig,
    RejectionConfig,
)
from edgeflow.microstructure.analyzer import MicrostructureAnalyzer
from edgeflow.microstructure.schemas import (
    MicrostructureRegime,
    SweepDirection,
    EntryTiming,
    OrderFlowMetrics,
    LiquidityMetrics,
    ExecutionQuality,
    LiquiditySweep,
    MicrostructureState,
    RejectionVerdict,
    TimingAdvice,
)

__version__ = "1.0.0"

__all__ = [
    'MicrostructureConfig',
    'LiquidityConfig',
    'ExecutionConfig',
    'SweepConfig',
    'RejectionConfig',
    'MicrostructureAnalyzer',
    'MicrostructureRegime',
    'SweepDirection',
    'EntryTiming',
    'OrderFlowMetrics',
    'LiquidityMetrics',
    'ExecutionQuality',
    'LiquiditySweep',
    'MicrostructureState',
    'RejectionVerdict',
    'TimingAdvice',
]
