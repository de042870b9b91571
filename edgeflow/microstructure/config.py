"""
Microstructure Analyzer Configuration

Cut points for liquidity, toxicity, execution scoring, regime rules and
trade rejection.
"""

from dataclasses import dataclass


@dataclass
class LiquidityConfig:
    """Order book liquidity thresholds"""

    depth_band: float = 0.001             # levels within 0.1% of mid count as depth
    resilience_snapshots: int = 10
    resilience_default: float = 0.5
    round_price_tick: float = 0.0001
    large_round_order: float = 100000
    spread_change_snapshots: int = 5
    rapid_spread_change: float = 0.1
    thin_book_liquidity: float = 10000


@dataclass
class ExecutionConfig:
    """Execution quality model"""

    reference_order_size: float = 10000
    no_liquidity_slippage: float = 0.01
    impact_lambda: float = 0.01           # illustrative, needs calibration
    impact_cap: float = 0.02
    no_liquidity_impact: float = 0.005
    timing_window: int = 20
    timing_default: float = 0.5
    top_levels: int = 5
    thin_level_size: float = 5000
    good_liquidity: float = 50000
    max_liquidity_share: float = 0.1
    min_order_size: float = 1000
    max_order_size: float = 100000


@dataclass
class SweepConfig:
    """Liquidity sweep detection"""

    min_imbalance: float = 0.5
    min_aggressive_ratio: float = 0.6
    large_order: float = 50000
    candle_lookback: int = 50
    level_tolerance: float = 0.0001
    min_touches: int = 3
    time_window_minutes: float = 15
    history_size: int = 100


@dataclass
class RejectionConfig:
    """Trade rejection and timing rules"""

    min_execution_score: float = 30
    max_sweep_risk: float = 0.8
    max_size_multiple: float = 2.0
    immediate_score: float = 80
    post_sweep_probability: float = 0.6
    max_wait_minutes: float = 10


@dataclass
class MicrostructureConfig:
    """Microstructure analyzer configuration"""

    liquidity: LiquidityConfig = None
    execution: ExecutionConfig = None
    sweep: SweepConfig = None
    rejection: RejectionConfig = None
    history_size: int = 1000

    def __post_init__(self):
        if self.liquidity is None:
            self.liquidity = LiquidityConfig()
        if self.execution is None:
            self.execution = ExecutionConfig()
        if self.sweep is None:
            self.sweep = SweepConfig()
        if self.rejection is None:
            self.rejection = RejectionConfig()
