"""
Regime Detector Output Schemas

MarketRegime is an immutable value recomputed every cycle and passed by
value through the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List


class RegimeType(str, Enum):
    """Discrete market-behaviour classification"""
    TRENDING_BULLISH = "trending_bullish"
    TRENDING_BEARISH = "trending_bearish"
    RANGING_TIGHT = "ranging_tight"
    RANGING_VOLATILE = "ranging_volatile"
    SHOCK_UP = "shock_up"
    SHOCK_DOWN = "shock_down"
    LIQUIDITY_CRISIS = "liquidity_crisis"
    NEWS_DRIVEN = "news_driven"
    BREAKOUT = "breakout"
    CONSOLIDATION = "consolidation"
    NEUTRAL = "neutral"  # insufficient data

    @property
    def is_trending(self) -> bool:
        return self in (RegimeType.TRENDING_BULLISH, RegimeType.TRENDING_BEARISH)

    @property
    def is_ranging(self) -> bool:
        return self in (RegimeType.RANGING_TIGHT, RegimeType.RANGING_VOLATILE)

    @property
    def is_shock(self) -> bool:
        return self in (RegimeType.SHOCK_UP, RegimeType.SHOCK_DOWN)

    @property
    def is_crisis(self) -> bool:
        return self.is_shock or self is RegimeType.LIQUIDITY_CRISIS


DETECTABLE_REGIMES = [r for r in RegimeType if r is not RegimeType.NEUTRAL]


class OrderFlowBias(str, Enum):
    BUYING = "buying"
    SELLING = "selling"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class MarketObservation:
    """Normalised market features for one bar"""
    price_move: float     # [-0.1, 0.1]
    volatility: float     # [0, 2], 1.0 = 10% annualised
    volume: float         # [0.1, 3], relative to 20-bar average
    momentum: float       # [-1, 1], position in recent range
    trend: float          # [-1, 1], scaled regression slope
    reversal: float       # [0, 1]
    breakout: float       # [0, 1]
    news: float           # [-1, 1]
    time_of_day: float    # [0, 1]
    day_of_week: float    # [0, 1]

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class RegimeMicrostructure:
    """Coarse liquidity picture implied by the regime"""
    bid_ask_spread: float
    market_depth: float  # [0.1, 1]
    order_flow: OrderFlowBias
    institutional_activity: float

    def to_dict(self) -> dict:
        return {
            'bid_ask_spread': float(self.bid_ask_spread),
            'market_depth': float(self.market_depth),
            'order_flow': self.order_flow.value,
            'institutional_activity': float(self.institutional_activity),
        }


@dataclass(frozen=True)
class MarketRegime:
    """Regime classification with confidence and risk scaling"""
    type: RegimeType
    strength: float
    confidence: float
    volatility: float  # [0, 1]
    momentum: float
    volume: float
    microstructure: RegimeMicrostructure
    adjustment_factors: Dict[str, float]
    risk_multiplier: float
    expected_duration: float  # minutes
    transition_probabilities: Dict[str, float]
    timestamp: datetime
    trigger_factors: List[str] = field(default_factory=list)
    regime_scores: Dict[str, float] = field(default_factory=dict)

    def adjustment_for(self, key: str) -> float:
        return self.adjustment_factors.get(key, 1.0)

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'strength': float(self.strength),
            'confidence': float(self.confidence),
            'volatility': float(self.volatility),
            'momentum': float(self.momentum),
            'volume': float(self.volume),
            'microstructure': self.microstructure.to_dict(),
            'adjustment_factors': {k: float(v) for k, v in self.adjustment_factors.items()},
            'risk_multiplier': float(self.risk_multiplier),
            'expected_duration': float(self.expected_duration),
            'transition_probabilities': {k: float(v) for k, v in self.transition_probabilities.items()},
            'timestamp': self.timestamp.isoformat(),
            'trigger_factors': list(self.trigger_factors),
            'regime_scores': {k: float(v) for k, v in self.regime_scores.items()},
        }


@dataclass(frozen=True)
class RegimeTransition:
    """Recorded change of detected regime"""
    from_regime: RegimeType
    to_regime: RegimeType
    timestamp: datetime
    trigger_factors: List[str]
    confidence: float
    price_change: float
    volume_change: float
    volatility_change: float
    news_impact: float

    def to_dict(self) -> dict:
        return {
            'from_regime': self.from_regime.value,
            'to_regime': self.to_regime.value,
            'timestamp': self.timestamp.isoformat(),
            'trigger_factors': list(self.trigger_factors),
            'confidence': float(self.confidence),
            'market_conditions': {
                'price_change': float(self.price_change),
                'volume_change': float(self.volume_change),
                'volatility_change': float(self.volatility_change),
                'news_impact': float(self.news_impact),
            },
        }


@dataclass
class FactorPerformance:
    """Running outcome statistics for one factor family in one regime"""
    trades: int = 0
    wins: int = 0
    total_return: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades else 0.5

    @property
    def avg_return(self) -> float:
        return self.total_return / self.trades if self.trades else 0.0

    def to_dict(self) -> dict:
        return {
            'trades': self.trades,
            'wins': self.wins,
            'win_rate': float(self.win_rate),
            'avg_return': float(self.avg_return),
        }
