"""
Regime-Adaptive Engine Schemas

EdgeMetrics, verdicts and decisions are immutable results. AdaptiveThreshold
and OnlineLearningState are the per-regime mutable state owned by the
engine's AdaptiveState.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from edgeflow.common.schemas import Direction


class GateDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class TradeProposal:
    """What the engine needs to know about a candidate trade"""
    pair: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    probability: float          # hit probability p
    risk_reward: float          # R
    confidence: float = 0.5
    position_size: float = 0.01  # lots, drives market impact
    signal_id: str = ""

    def to_dict(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'pair': self.pair,
            'direction': self.direction.value,
            'entry_price': float(self.entry_price),
            'stop_loss': float(self.stop_loss),
            'take_profit': float(self.take_profit),
            'probability': float(self.probability),
            'risk_reward': float(self.risk_reward),
            'confidence': float(self.confidence),
            'position_size': float(self.position_size),
        }


@dataclass(frozen=True)
class EdgeMetrics:
    """Kelly-style edge net of costs, execution quality and opportunity cost"""
    expected_edge: float             # p*R - (1-p)*L, before costs
    execution_quality_factor: float
    opportunity_cost_factor: float
    spread_cost: float
    slippage_cost: float
    market_impact_cost: float
    net_edge: float
    confidence_interval: Tuple[float, float]

    @property
    def total_costs(self) -> float:
        return self.spread_cost + self.slippage_cost + self.market_impact_cost

    def to_dict(self) -> dict:
        return {
            'expected_edge': float(self.expected_edge),
            'execution_quality_factor': float(self.execution_quality_factor),
            'opportunity_cost_factor': float(self.opportunity_cost_factor),
            'spread_cost': float(self.spread_cost),
            'slippage_cost': float(self.slippage_cost),
            'market_impact_cost': float(self.market_impact_cost),
            'net_edge': float(self.net_edge),
            'confidence_interval': [float(x) for x in self.confidence_interval],
        }


@dataclass
class ThresholdPerformance:
    accuracy: float = 0.5
    profitability: float = 0.0
    sharpe: float = 0.0
    drawdown: float = 0.0

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass
class AdaptiveThreshold:
    """Minimum net edge required to accept a trade in one regime"""
    regime: str
    threshold: float
    confidence: float = 0.5
    last_update: Optional[datetime] = None
    performance: ThresholdPerformance = field(default_factory=ThresholdPerformance)

    def to_dict(self) -> dict:
        return {
            'regime': self.regime,
            'threshold': float(self.threshold),
            'confidence': float(self.confidence),
            'last_update': self.last_update.isoformat() if self.last_update else None,
            'performance': self.performance.to_dict(),
        }


@dataclass
class OnlineLearningState:
    """Per-regime trade statistics and factor-family weights"""
    regime: str
    total_trades: int = 0
    win_rate: float = 0.5
    avg_return: float = 0.0
    volatility: float = 0.05
    last_calibration: Optional[datetime] = None
    calibrations: int = 0
    feature_weights: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'regime': self.regime,
            'total_trades': self.total_trades,
            'win_rate': float(self.win_rate),
            'avg_return': float(self.avg_return),
            'volatility': float(self.volatility),
            'last_calibration': self.last_calibration.isoformat() if self.last_calibration else None,
            'calibrations': self.calibrations,
            'feature_weights': {k: float(v) for k, v in self.feature_weights.items()},
        }


@dataclass(frozen=True)
class PortfolioVerdict:
    accept: bool
    reason: str
    correlation: float = 0.0
    sharpe_impact: float = 0.0
    risk_concentration: float = 0.0

    def to_dict(self) -> dict:
        return {
            'accept': self.accept,
            'reason': self.reason,
            'correlation': float(self.correlation),
            'sharpe_impact': float(self.sharpe_impact),
            'risk_concentration': float(self.risk_concentration),
        }


@dataclass(frozen=True)
class RejectionEntry:
    timestamp: datetime
    reason: str
    regime: str
    signal: Dict

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'reason': self.reason,
            'regime': self.regime,
            'signal': dict(self.signal),
        }


@dataclass(frozen=True)
class AdaptedSignal:
    """Accepted trade re-parameterised for the current regime"""
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    position_units: float
    volatility_adjustment: float
    regime: str
    risk_multiplier: float
    edge: float
    execution_quality: float

    def to_dict(self) -> dict:
        return {
            'direction': self.direction.value,
            'entry_price': float(self.entry_price),
            'stop_loss': float(self.stop_loss),
            'take_profit': float(self.take_profit),
            'position_units': float(self.position_units),
            'volatility_adjustment': float(self.volatility_adjustment),
            'regime': self.regime,
            'risk_multiplier': float(self.risk_multiplier),
            'edge': float(self.edge),
            'execution_quality': float(self.execution_quality),
        }


@dataclass(frozen=True)
class AdaptiveDecision:
    """Outcome of the regime-adaptive gate for one proposal"""
    decision: GateDecision
    edge: EdgeMetrics
    threshold: float
    portfolio: PortfolioVerdict
    reason: str
    regime: str
    adapted_signal: Optional[AdaptedSignal] = None
    proposal: Optional[TradeProposal] = field(default=None, compare=False)

    @property
    def accepted(self) -> bool:
        return self.decision is GateDecision.ACCEPT

    def to_dict(self) -> dict:
        return {
            'decision': self.decision.value,
            'edge': self.edge.to_dict(),
            'threshold': float(self.threshold),
            'portfolio': self.portfolio.to_dict(),
            'reason': self.reason,
            'regime': self.regime,
            'adapted_signal': self.adapted_signal.to_dict() if self.adapted_signal else None,
        }
