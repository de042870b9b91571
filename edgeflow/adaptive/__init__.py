"""
Regime-Adaptive Engine

Cost-adjusted edge, per-regime adaptive thresholds, portfolio gate,
rejection feedback and online recalibration.

Flow:
    Proposal + Regime + Portfolio → Edge → Threshold gate → Portfolio gate → Accept / Reject
"""

from edgeflow.adaptive.config import (
    AdaptiveConfig,
    CostModelConfig,
    EdgeConfig,
    ThresholdConfig,
    PortfolioGateConfig,
    RejectionConfig,
    LearningConfig,
)
from edgeflow.adaptive.schemas import (
    GateDecision,
    TradeProposal,
    EdgeMetrics,
    ThresholdPerformance,
    AdaptiveThreshold,
    OnlineLearningState,
    PortfolioVerdict,
    RejectionEntry,
    AdaptedSignal,
    AdaptiveDecision,
)
from edgeflow.adaptive.state import AdaptiveState
from edgeflow.adaptive.edge import EdgeCalculator
from edgeflow.adaptive.portfolio import PortfolioGate
from edgeflow.adaptive.engine import RegimeAdaptiveEngine

__version__ = "1.0.0"

__all__ = [
    'AdaptiveConfig',
    'CostModelConfig',
    'EdgeConfig',
    'ThresholdConfig',
    'PortfolioGateConfig',
    'RejectionConfig',
    'LearningConfig',
    'GateDecision',
    'TradeProposal',
    'EdgeMetrics',
    'ThresholdPerformance',
    'AdaptiveThreshold',
    'OnlineLearningState',
    'PortfolioVerdict',
    'RejectionEntry',
    'AdaptedSignal',
    'AdaptiveDecision',
    'AdaptiveState',
    'EdgeCalculator',
    'PortfolioGate',
    'RegimeAdaptiveEngine',
]
