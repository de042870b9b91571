"""
Master Orchestrator Schemas

SystemDecision is the canonical audit record of one decision cycle.
TradingRecommendation wraps it with scenarios, warnings and suggestions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from edgeflow.adaptive.schemas import AdaptiveDecision, EdgeMetrics
from edgeflow.barriers.schemas import BarrierLevels
from edgeflow.common.schemas import Reason, ReasonCategory
from edgeflow.microstructure.schemas import EntryTiming, MicrostructureState
from edgeflow.prediction.schemas import EnhancedSignal
from edgeflow.regime.schemas import MarketRegime


class DecisionAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    WAIT = "wait"


@dataclass(frozen=True)
class ExecutionPlan:
    timing: EntryTiming
    order_size: float
    slippage: float
    impact: float

    def to_dict(self) -> dict:
        return {
            'timing': self.timing.value,
            'order_size': float(self.order_size),
            'slippage': float(self.slippage),
            'impact': float(self.impact),
        }


@dataclass
class SystemKPIs:
    """Rolling self-monitoring statistics"""
    edge_decay: float = 0.0                  # fractional edge loss per hour
    signal_half_life: float = 0.0            # hours
    cost_absorption_ratio: float = 0.0
    regime_performance_delta: float = 0.0
    hit_rate_by_regime: Dict[str, float] = field(default_factory=dict)
    average_holding_time: float = 0.0        # hours
    realized_edge_vs_expected: float = 1.0
    adaptive_threshold_performance: float = 0.5
    rejection_success_rate: float = 0.5
    portfolio_sharpe: float = 0.0
    max_drawdown: float = 0.0
    calmar_ratio: float = 0.0

    def to_dict(self) -> dict:
        d = {k: float(v) for k, v in self.__dict__.items() if k != 'hit_rate_by_regime'}
        d['hit_rate_by_regime'] = {k: float(v) for k, v in self.hit_rate_by_regime.items()}
        return d


@dataclass(frozen=True)
class SystemDecision:
    action: DecisionAction
    confidence: float
    expected_edge: float
    risk_adjusted_edge: float
    reasoning: List[Reason]
    regime: MarketRegime
    microstructure: MicrostructureState
    kpis: SystemKPIs
    timestamp: datetime
    signal: Optional[EnhancedSignal] = None
    barriers: Optional[BarrierLevels] = None
    execution: Optional[ExecutionPlan] = None
    edge: Optional[EdgeMetrics] = None

    @property
    def signal_id(self) -> Optional[str]:
        return self.signal.id if self.signal else None

    def reasons_in(self, category: ReasonCategory) -> List[Reason]:
        return [r for r in self.reasoning if r.category is category]

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'confidence': float(self.confidence),
            'expected_edge': float(self.expected_edge),
            'risk_adjusted_edge': float(self.risk_adjusted_edge),
            'signal': self.signal.to_dict() if self.signal else None,
            'barriers': self.barriers.to_dict() if self.barriers else None,
            'execution': self.execution.to_dict() if self.execution else None,
            'edge': self.edge.to_dict() if self.edge else None,
            'reasoning': [r.to_dict() for r in self.reasoning],
            'regime': self.regime.to_dict(),
            'microstructure': self.microstructure.to_dict(),
            'kpis': self.kpis.to_dict(),
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AlternativeScenario:
    scenario: str
    probability: float
    expected_outcome: float
    recommendation: str

    def to_dict(self) -> dict:
        return {
            'scenario': self.scenario,
            'probability': float(self.probability),
            'expected_outcome': float(self.expected_outcome),
            'recommendation': self.recommendation,
        }


@dataclass(frozen=True)
class TradingRecommendation:
    decision: SystemDecision
    alternative_scenarios: List[AlternativeScenario] = field(default_factory=list)
    risk_warnings: List[str] = field(default_factory=list)
    optimization_suggestions: List[str] = field(default_factory=list)
    # gate verdict behind the decision, committed once the cycle resolves
    gate: Optional[AdaptiveDecision] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            'decision': self.decision.to_dict(),
            'alternative_scenarios': [s.to_dict() for s in self.alternative_scenarios],
            'risk_warnings': list(self.risk_warnings),
            'optimization_suggestions': list(self.optimization_suggestions),
        }


@dataclass(frozen=True)
class CounterfactualAnalysis:
    """Realised outcome set against what the decision expected"""
    signal_id: str
    original_decision: DecisionAction   # accept or reject; waits count as rejects
    actual_outcome: float
    counterfactual_outcome: float
    learning_value: float
    regime_context: str

    def to_dict(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'original_decision': self.original_decision.value,
            'actual_outcome': float(self.actual_outcome),
            'counterfactual_outcome': float(self.counterfactual_outcome),
            'learning_value': float(self.learning_value),
            'regime_context': self.regime_context,
        }
