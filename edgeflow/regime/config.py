"""
Regime Detector Configuration

Emission tables, per-regime factor weights, risk multipliers, duration
and transition tables.
"""

from dataclasses import dataclass, field
from typing import Dict


FACTOR_TYPES = ['technical', 'pattern', 'volume', 'momentum', 'news', 'fundamental', 'harmonic', 'fibonacci']


def _default_weights() -> Dict[str, Dict[str, float]]:
    return {
        'trending_bullish': {
            'momentum': 1.4, 'technical': 1.3, 'pattern': 0.9, 'volume': 1.2,
            'news': 1.1, 'fundamental': 1.0, 'harmonic': 0.8, 'fibonacci': 1.0,
        },
        'trending_bearish': {
            'momentum': 1.4, 'technical': 1.3, 'pattern': 0.9, 'volume': 1.2,
            'news': 1.2, 'fundamental': 1.1, 'harmonic': 0.8, 'fibonacci': 1.0,
        },
        'ranging_tight': {
            'pattern': 1.4, 'technical': 1.2, 'fibonacci': 1.3, 'momentum': 0.7,
            'volume': 0.9, 'news': 0.8, 'fundamental': 0.9, 'harmonic': 1.2,
        },
        'ranging_volatile': {
            'volume': 1.4, 'pattern': 1.2, 'technical': 1.0, 'momentum': 0.8,
            'news': 1.3, 'fundamental': 0.9, 'harmonic': 0.9, 'fibonacci': 1.1,
        },
        'shock_up': {
            'volume': 1.5, 'news': 1.6, 'technical': 0.7, 'pattern': 0.6,
            'momentum': 1.2, 'fundamental': 1.4, 'harmonic': 0.5, 'fibonacci': 0.8,
        },
        'shock_down': {
            'volume': 1.6, 'news': 1.7, 'technical': 0.6, 'pattern': 0.5,
            'momentum': 1.3, 'fundamental': 1.5, 'harmonic': 0.4, 'fibonacci': 0.7,
        },
        'liquidity_crisis': {
            'volume': 1.8, 'news': 1.9, 'fundamental': 1.6, 'technical': 0.4,
            'pattern': 0.3, 'momentum': 0.5, 'harmonic': 0.2, 'fibonacci': 0.4,
        },
        'news_driven': {
            'news': 2.0, 'fundamental': 1.7, 'volume': 1.4, 'technical': 0.6,
            'pattern': 0.5, 'momentum': 1.1, 'harmonic': 0.3, 'fibonacci': 0.5,
        },
        'breakout': {
            'volume': 1.5, 'momentum': 1.4, 'technical': 1.3, 'pattern': 1.2,
            'news': 1.0, 'fundamental': 0.8, 'harmonic': 1.0, 'fibonacci': 1.1,
        },
        'consolidation': {
            'pattern': 1.3, 'fibonacci': 1.2, 'technical': 1.1, 'volume': 0.8,
            'momentum': 0.6, 'news': 0.7, 'fundamental': 0.8, 'harmonic': 1.1,
        },
    }


@dataclass
class ObservationConfig:
    """How candles are turned into normalised observations"""

    window: int = 20                  # bars per observation
    observation_count: int = 5        # observations scored per detection
    trend_window: int = 10
    rsi_period: int = 14
    annualisation: float = 252.0
    volatility_scale: float = 0.1     # 10% annualised maps to 1.0


@dataclass
class RegimeConfig:
    """Regime detector configuration"""

    min_candles: int = 20
    persistence_bonus: float = 2.0    # likelihood multiplier for the prevailing regime
    min_confidence: float = 0.1

    observation: ObservationConfig = field(default_factory=ObservationConfig)

    adaptive_weights: Dict[str, Dict[str, float]] = field(default_factory=_default_weights)

    risk_multipliers: Dict[str, float] = field(default_factory=lambda: {
        'trending_bullish': 1.0,
        'trending_bearish': 1.0,
        'ranging_tight': 0.8,
        'ranging_volatile': 0.6,
        'shock_up': 0.3,
        'shock_down': 0.3,
        'liquidity_crisis': 0.1,
        'news_driven': 0.4,
        'breakout': 0.7,
        'consolidation': 0.9,
    })
    default_risk_multiplier: float = 0.5

    # Mean regime duration in 15-minute candles
    duration_means: Dict[str, float] = field(default_factory=lambda: {
        'trending_bullish': 45,
        'trending_bearish': 40,
        'ranging_tight': 80,
        'ranging_volatile': 30,
        'shock_up': 8,
        'shock_down': 6,
        'liquidity_crisis': 15,
        'news_driven': 12,
        'breakout': 10,
        'consolidation': 60,
    })
    candle_minutes: float = 15.0

    transition_probabilities: Dict[str, Dict[str, float]] = field(default_factory=lambda: {
        'trending_bullish': {'trending_bullish': 0.7, 'ranging_tight': 0.15, 'shock_down': 0.05, 'consolidation': 0.1},
        'trending_bearish': {'trending_bearish': 0.7, 'ranging_tight': 0.15, 'shock_up': 0.05, 'consolidation': 0.1},
        'ranging_tight': {'ranging_tight': 0.6, 'trending_bullish': 0.15, 'trending_bearish': 0.15, 'breakout': 0.1},
        'ranging_volatile': {'ranging_volatile': 0.5, 'shock_up': 0.2, 'shock_down': 0.2, 'liquidity_crisis': 0.1},
        'shock_up': {'trending_bullish': 0.4, 'ranging_volatile': 0.3, 'consolidation': 0.2, 'shock_up': 0.1},
        'shock_down': {'trending_bearish': 0.3, 'ranging_volatile': 0.4, 'liquidity_crisis': 0.2, 'shock_down': 0.1},
        'liquidity_crisis': {'ranging_volatile': 0.5, 'shock_down': 0.3, 'consolidation': 0.15, 'liquidity_crisis': 0.05},
        'news_driven': {
            'shock_up': 0.25, 'shock_down': 0.25, 'trending_bullish': 0.2,
            'trending_bearish': 0.2, 'ranging_volatile': 0.1,
        },
        'breakout': {'trending_bullish': 0.4, 'trending_bearish': 0.4, 'ranging_tight': 0.15, 'breakout': 0.05},
        'consolidation': {
            'ranging_tight': 0.4, 'breakout': 0.25, 'trending_bullish': 0.15,
            'trending_bearish': 0.15, 'consolidation': 0.05,
        },
    })

    # Factor-weight adaptation on regime transitions
    weight_learning_rate: float = 0.1
    weight_bounds: tuple = (0.1, 3.0)
    min_performance_samples: int = 5

    transition_history_size: int = 1000
