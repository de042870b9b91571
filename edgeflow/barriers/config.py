"""
Barrier Calculator Configuration

Per-regime take-profit / stop-loss ATR multiples, time exits and
feature flags for dynamic adjustment, path-dependent exits and gamma
scaling.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class RegimeBarrierConfig:
    """Barrier shape for one regime"""
    take_profit: float        # ATR multiple
    stop_loss: float          # ATR multiple
    time_exit_hours: float
    dynamic_adjustment: bool = True
    path_dependent_exits: bool = True
    gamma_scaling: bool = True


def _default_regimes() -> Dict[str, RegimeBarrierConfig]:
    return {
        'trending_bullish': RegimeBarrierConfig(3.0, 1.5, 48, True, True, True),
        'trending_bearish': RegimeBarrierConfig(3.0, 1.5, 36, True, True, True),
        'ranging_tight': RegimeBarrierConfig(2.0, 1.0, 12, True, False, False),
        'ranging_volatile': RegimeBarrierConfig(2.5, 1.2, 8, True, True, True),
        'shock_up': RegimeBarrierConfig(1.5, 0.8, 2, False, True, False),
        'shock_down': RegimeBarrierConfig(1.5, 0.8, 2, False, True, False),
        'news_driven': RegimeBarrierConfig(2.5, 1.0, 4, True, True, True),
        'breakout': RegimeBarrierConfig(4.0, 1.2, 24, True, True, True),
        'consolidation': RegimeBarrierConfig(1.8, 0.9, 72, True, False, False),
        'liquidity_crisis': RegimeBarrierConfig(1.0, 0.5, 6, False, True, False),
    }


@dataclass
class BarrierConfig:
    """Dynamic barrier calculator configuration"""

    regimes: Dict[str, RegimeBarrierConfig] = field(default_factory=_default_regimes)
    fallback_regime: str = 'ranging_tight'

    volatility_window: int = 20
    default_atr: float = 0.001
    adjustment_bounds: tuple = (0.5, 2.0)
    active_session_hours: tuple = (7, 16)

    # Support / resistance snapping
    sr_lookback: int = 100
    sr_tolerance: float = 0.001
    sr_min_touches: int = 3
    sr_search_range: float = 0.01
    sr_snap_distance: float = 0.005
    swing_lookback: int = 50
    swing_snap_distance: float = 0.003
    swing_buffer: float = 0.001
    order_flow_extension: float = 1.1

    # Path-dependent monitoring
    volatility_exit_multiple: float = 2.0
    min_efficiency: float = 0.3
    efficiency_min_path: int = 20
    adverse_excursion_fraction: float = 0.8
    time_decay_exit: float = 0.8

    def for_regime(self, regime: str) -> RegimeBarrierConfig:
        return self.regimes.get(regime) or self.regimes[self.fallback_regime]
