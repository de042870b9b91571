"""
Two-Layer Prediction Schemas

TechnicalFactor → CandidateSignal (base model) → MetaPrediction (meta
model) → EnhancedSignal. All are immutable once built.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from edgeflow.common.schemas import Direction


class FactorCategory(str, Enum):
    OSCILLATOR = "oscillator"
    MOMENTUM = "momentum"
    TREND = "trend"
    VOLATILITY = "volatility"
    PATTERN = "pattern"
    VOLUME = "volume"


class Recommendation(str, Enum):
    STRONG_BUY = "strong_buy"
    BUY = "buy"
    WEAK_BUY = "weak_buy"
    HOLD = "hold"
    WEAK_SELL = "weak_sell"
    SELL = "sell"
    STRONG_SELL = "strong_sell"


class RiskProfile(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class TechnicalFactor:
    """Atomic unit of evidence"""
    category: FactorCategory
    name: str
    direction: Direction
    strength: float     # practically 0-10
    confidence: float   # [0, 1]

    def to_dict(self) -> dict:
        return {
            'category': self.category.value,
            'name': self.name,
            'direction': self.direction.value,
            'strength': float(self.strength),
            'confidence': float(self.confidence),
        }


@dataclass(frozen=True)
class CandidateSignal:
    """Provisional trade direction backed by confluent factors"""
    id: str
    timestamp: datetime
    pair: str
    direction: Direction
    entry_price: float
    confidence: float
    factors: Tuple[TechnicalFactor, ...]
    raw_strength: float

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'pair': self.pair,
            'direction': self.direction.value,
            'entry_price': float(self.entry_price),
            'confidence': float(self.confidence),
            'factors': [f.to_dict() for f in self.factors],
            'raw_strength': float(self.raw_strength),
        }


@dataclass(frozen=True)
class ExpectedOutcome:
    expected_return: float
    expected_holding_time: float  # hours
    risk_adjusted_return: float
    max_drawdown_risk: float

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class MarketConditions:
    volatility_regime: str     # low / medium / high / extreme
    liquidity_condition: str   # excellent / good / poor / very_poor
    news_environment: str      # calm / moderate / high_impact / extreme

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass(frozen=True)
class MetaPrediction:
    """Probability that take-profit is hit before stop-loss, with decomposed risk"""
    signal_id: str
    probability_tp_first: float
    volatility_risk: float
    liquidity_risk: float
    event_risk: float
    combined_risk: float
    expected_outcome: ExpectedOutcome
    confidence_interval: Tuple[float, float]
    expectancy_interval: Tuple[float, float]
    risk_reward: float
    regime: str
    market_conditions: MarketConditions

    def to_dict(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'probability_tp_first': float(self.probability_tp_first),
            'volatility_risk': float(self.volatility_risk),
            'liquidity_risk': float(self.liquidity_risk),
            'event_risk': float(self.event_risk),
            'combined_risk': float(self.combined_risk),
            'expected_outcome': self.expected_outcome.to_dict(),
            'confidence_interval': [float(x) for x in self.confidence_interval],
            'expectancy_interval': [float(x) for x in self.expectancy_interval],
            'risk_reward': float(self.risk_reward),
            'regime': self.regime,
            'market_conditions': self.market_conditions.to_dict(),
        }


@dataclass(frozen=True)
class EnhancedSignal:
    """Candidate plus meta prediction, scored and tiered"""
    candidate: CandidateSignal
    meta: MetaPrediction
    final_score: float
    recommendation: Recommendation
    risk_profile: RiskProfile

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def direction(self) -> Direction:
        return self.candidate.direction

    @property
    def regime(self) -> str:
        return self.meta.regime

    def to_dict(self) -> dict:
        return {
            'candidate': self.candidate.to_dict(),
            'meta_prediction': self.meta.to_dict(),
            'final_score': float(self.final_score),
            'recommendation': self.recommendation.value,
            'risk_profile': self.risk_profile.value,
        }


@dataclass
class ModelPerformance:
    """Performance of both layers over realised outcomes"""
    base_model: Dict[str, float] = field(default_factory=lambda: {
        'signal_accuracy': 0.5,
        'false_positive_rate': 0.3,
        'total_signals': 0,
    })
    meta_model: Dict[str, float] = field(default_factory=lambda: {
        'probability_calibration': 0.5,
        'brier_score': 0.25,
        'return_prediction_mse': 0.1,
        'total_predictions': 0,
    })
    combined: Dict[str, float] = field(default_factory=lambda: {
        'win_rate': 0.5,
        'avg_return': 0.0,
        'sharpe_ratio': 0.0,
        'max_drawdown': 0.0,
        'realized_outcomes': 0,
    })

    def to_dict(self) -> dict:
        return {
            'base_model': {k: float(v) for k, v in self.base_model.items()},
            'meta_model': {k: float(v) for k, v in self.meta_model.items()},
            'combined': {k: float(v) for k, v in self.combined.items()},
        }


@dataclass(frozen=True)
class SignalRecord:
    """Past enhanced signal used for the historical-performance adjustment"""
    direction: Direction
    regime: str
    confidence: float
    probability_tp_first: float
    expected_return: float
    realized_return: Optional[float] = None

    @property
    def success(self) -> bool:
        if self.realized_return is not None:
            return self.realized_return > 0
        return self.probability_tp_first > 0.5

    @property
    def outcome_return(self) -> float:
        return self.realized_return if self.realized_return is not None else self.expected_return
