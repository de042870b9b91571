"""
Regime-Adaptive Engine Configuration

Cost model, execution-quality and opportunity-cost factors, adaptive
threshold table and learning rates, portfolio gate limits, rejection
feedback and online recalibration.

The cost constants (spread base, slippage base, impact coefficient) and the
Monte-Carlo trial count are illustrative and need calibration against
real execution data.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class CostModelConfig:
    """Transaction cost estimates, all returned as a fraction of price"""

    base_spread: float = 0.00001
    stress_spread_multiplier: float = 3.0
    ranging_spread_multiplier: float = 0.8
    asian_spread_multiplier: float = 1.5

    base_slippage: float = 0.0001         # 1 pip
    shock_slippage_multiplier: float = 4.0
    thin_book_slippage_multiplier: float = 2.0
    thin_depth: float = 0.5

    impact_coefficient: float = 0.0001
    impact_exponent: float = 0.6
    impact_cap: float = 0.001             # 10 bps
    default_position_size: float = 0.01   # lots


@dataclass
class EdgeConfig:
    """Execution quality, opportunity cost and edge confidence interval"""

    eqf_bounds: tuple = (0.3, 1.5)
    ocf_bounds: tuple = (0.0, 0.01)
    utilization_cost: float = 0.001
    crisis_cost: float = 0.002
    daily_holding_cost: float = 0.0001
    loss_ratio: float = 1.0

    holding_hours: Dict[str, float] = field(default_factory=lambda: {
        'trending_bullish': 48,
        'trending_bearish': 48,
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

    simulation_trials: int = 1000
    probability_noise: float = 0.05
    probability_bounds: tuple = (0.1, 0.9)
    reward_noise: float = 0.25
    min_reward: float = 0.5
    cost_noise: float = 0.1
    interval_percentiles: tuple = (5, 95)


@dataclass
class ThresholdConfig:
    """Per-regime minimum net edge and its self-tuning"""

    defaults: Dict[str, float] = field(default_factory=lambda: {
        'trending_bullish': 0.015,
        'trending_bearish': 0.015,
        'ranging_tight': 0.008,
        'ranging_volatile': 0.012,
        'shock_up': 0.025,
        'shock_down': 0.025,
        'liquidity_crisis': 0.030,
        'news_driven': 0.020,
        'breakout': 0.018,
        'consolidation': 0.006,
    })
    default_threshold: float = 0.010
    bounds: tuple = (0.001, 0.2)
    initial_confidence: float = 0.5
    confidence_step: float = 0.05

    update_interval_hours: float = 6
    min_trades_for_update: int = 10
    momentum: float = 0.9
    learning_rate: float = 0.1
    max_adjustment: float = 0.1

    # Performance gradient
    sharpe_weight: float = 0.5
    win_rate_weight: float = 0.3
    drawdown_weight: float = 0.2
    target_win_rate: float = 0.55
    drawdown_penalty: float = 0.1
    drawdown_penalty_trades: int = 20
    min_volatility: float = 0.001


@dataclass
class PortfolioGateConfig:
    max_correlation: float = 0.7
    same_pair_correlation: float = 0.9
    min_sharpe_impact: float = -0.05
    position_weight: float = 0.05         # assumed share of the portfolio
    max_risk_concentration: float = 0.3


@dataclass
class RejectionConfig:
    log_size: int = 1000
    analysis_interval: int = 50
    analysis_window: int = 100
    over_rejection_count: int = 20
    relaxation_factor: float = 0.95


@dataclass
class LearningConfig:
    recalibration_trades: int = 20
    recalibration_days: float = 7
    weight_bounds: tuple = (0.1, 2.0)
    calibration_nudge: float = 1.02
    weight_decay: float = 0.95
    returns_window: int = 500
    feature_keys: List[str] = field(default_factory=lambda: [
        'technical', 'pattern', 'volume', 'momentum',
        'news', 'harmonic', 'fibonacci', 'timeframe',
    ])
    initial_win_rate: float = 0.5
    initial_avg_return: float = 0.0
    initial_volatility: float = 0.05


@dataclass
class AdaptiveConfig:
    """Regime-Adaptive Engine configuration"""

    online_learning_enabled: bool = True
    adaptive_thresholds: bool = True
    continuous_recalibration: bool = True
    dynamic_risk_management: bool = True
    portfolio_optimization: bool = True
    rejection_feedback: bool = True

    base_position_units: float = 10000.0
    volatility_barrier_scale: float = 0.5

    costs: Optional[CostModelConfig] = None
    edge: Optional[EdgeConfig] = None
    thresholds: Optional[ThresholdConfig] = None
    portfolio: Optional[PortfolioGateConfig] = None
    rejection: Optional[RejectionConfig] = None
    learning: Optional[LearningConfig] = None

    def __post_init__(self):
        if self.costs is None:
            self.costs = CostModelConfig()
        if self.edge is None:
            self.edge = EdgeConfig()
        if self.thresholds is None:
            self.thresholds = ThresholdConfig()
        if self.portfolio is None:
            self.portfolio = PortfolioGateConfig()
        if self.rejection is None:
            self.rejection = RejectionConfig()
        if self.learning is None:
            self.learning = LearningConfig()
