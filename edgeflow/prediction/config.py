"""
Two-Layer Prediction Configuration

Base model factor rules, meta model risk weights and probability
adjustments, enhancement cut points.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class BaseModelConfig:
    """Candidate detector (layer 1) configuration"""

    min_candles: int = 20
    min_agreeing_factors: int = 3
    min_candidate_confidence: float = 0.3
    min_factor_strength: float = 2.0      # after regime scaling
    max_confidence_boost: float = 1.2

    rsi_period: int = 14
    rsi_oversold: float = 35
    rsi_overbought: float = 65
    stochastic_oversold: float = 25
    stochastic_overbought: float = 75
    pattern_lookback: int = 5
    volume_window: int = 20
    volume_spike_ratio: float = 1.5
    volume_spike_move: float = 0.002
    obv_window: int = 10
    obv_min_slope: float = 0.1
    momentum_lookback: int = 10
    momentum_threshold: float = 0.005
    roc_period: int = 14
    roc_threshold: float = 2.0

    # Factor category → regime adjustment key
    category_weight_keys: Dict[str, str] = field(default_factory=lambda: {
        'oscillator': 'technical',
        'trend': 'technical',
        'volatility': 'technical',
        'momentum': 'momentum',
        'pattern': 'pattern',
        'volume': 'volume',
    })


@dataclass
class MetaModelConfig:
    """Meta model (layer 2) configuration"""

    atr_period: int = 14
    dispersion_window: int = 20
    risk_weights: Dict[str, float] = field(default_factory=lambda: {
        'volatility': 0.4,
        'liquidity': 0.3,
        'event': 0.3,
    })

    event_lookahead_hours: float = 24
    event_lookback_hours: float = 6
    high_impact: float = 8
    medium_impact: float = 5

    probability_bounds: tuple = (0.05, 0.95)
    base_probability_bounds: tuple = (0.1, 0.9)
    risk_adjustment_bounds: tuple = (0.5, 1.3)
    min_similar_signals: int = 5
    similar_confidence_gap: float = 0.2
    default_risk_reward: float = 2.0

    # Base holding time in hours
    holding_hours: Dict[str, float] = field(default_factory=lambda: {
        'trending_bullish': 48,
        'trending_bearish': 36,
        'ranging_tight': 12,
        'ranging_volatile': 8,
        'shock_up': 2,
        'shock_down': 2,
        'liquidity_crisis': 6,
        'news_driven': 4,
        'breakout': 24,
        'consolidation': 72,
    })
    default_holding_hours: float = 24

    monte_carlo_trials: int = 1000        # illustrative, needs calibration
    probability_noise: float = 0.1
    reward_noise: float = 0.5
    interval_percentiles: tuple = (5, 95)


@dataclass
class EnhancementConfig:
    """Final score weighting"""

    base_weight: float = 0.4
    meta_weight: float = 0.6
    risk_discount: float = 0.5


@dataclass
class PredictionConfig:
    """Two-layer prediction system configuration"""

    base: BaseModelConfig = field(default_factory=BaseModelConfig)
    meta: MetaModelConfig = field(default_factory=MetaModelConfig)
    enhancement: EnhancementConfig = field(default_factory=EnhancementConfig)
    history_size: int = 1000
