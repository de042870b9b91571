"""
Dynamic Barrier Calculator

Regime-aware triple barriers (take-profit, stop-loss, time exit) sized in
ATR units, with support/resistance snapping and path-dependent monitoring.

Both operations are pure: the calculator holds configuration only.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.schemas import Direction, to_utc
from edgeflow.barriers.config import BarrierConfig
from edgeflow.barriers.schemas import BarrierLevels, BarrierProgress, ExitReason, PathMetrics
from edgeflow.regime.schemas import MarketRegime, OrderFlowBias, RegimeType

LOG = logging.getLogger(__name__)


class DynamicBarrierCalculator:
    """
    Dynamic triple-barrier calculator.

    Barrier distance = ATR x volatility adjustment x regime multiple.
    """

    def __init__(self, config: Optional[BarrierConfig] = None):
        self.config = config or BarrierConfig()

    # ========================================
    # BARRIER CALCULATION
    # ========================================

    def calculate(
        self,
        entry_price: float,
        direction: Direction,
        regime: MarketRegime,
        candles: pd.DataFrame,
        volatility_window: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> BarrierLevels:
        """
        Compute barriers for a new trade.

        Args:
            entry_price: Planned entry
            direction: BUY or SELL
            regime: Current market regime
            candles: Recent candles, oldest first
            volatility_window: ATR period (config default when None)
            as_of: Entry time (defaults to the regime timestamp)

        Returns:
            BarrierLevels
        """
        cfg = self.config
        regime_cfg = cfg.for_regime(regime.type.value)
        window = volatility_window or cfg.volatility_window
        entry_time = to_utc(as_of) if as_of is not None else regime.timestamp

        atr = PrimitiveTransforms.latest_atr(candles, window, cfg.default_atr)
        adjusted_atr = atr * self.volatility_adjustment(regime, entry_time)

        tp_distance = adjusted_atr * regime_cfg.take_profit
        sl_distance = adjusted_atr * regime_cfg.stop_loss
        sign = 1 if direction is Direction.BUY else -1
        take_profit = entry_price + sign * tp_distance
        stop_loss = entry_price - sign * sl_distance

        if regime_cfg.dynamic_adjustment and candles is not None and len(candles):
            adjusted_tp, adjusted_sl = self._apply_dynamic_adjustments(take_profit, stop_loss, regime, candles)
            # snapped levels must stay on their own side of the entry
            if sign * (adjusted_tp - entry_price) > 0:
                take_profit = adjusted_tp
            if sign * (entry_price - adjusted_sl) > 0:
                stop_loss = adjusted_sl

        hours = regime_cfg.time_exit_hours * self.time_multiplier(regime.type)
        return BarrierLevels(
            take_profit=float(take_profit),
            stop_loss=float(stop_loss),
            entry_price=float(entry_price),
            direction=direction,
            entry_time=entry_time,
            time_exit=entry_time + timedelta(hours=hours),
            current_atr=float(adjusted_atr),
            regime=regime.type.value,
            confidence=regime.confidence,
        )

    def volatility_adjustment(self, regime: MarketRegime, when: datetime) -> float:
        """Regime, volatility and session scaling of the ATR, clamped"""
        adjustment = 1.0
        if regime.type.is_shock:
            adjustment *= 1.5
        elif regime.type.is_ranging:
            adjustment *= 0.8

        if regime.volatility > 0.8:
            adjustment *= 1.2
        elif regime.volatility < 0.3:
            adjustment *= 0.9

        start, end = self.config.active_session_hours
        if not start <= when.hour <= end:
            adjustment *= 0.8

        low, high = self.config.adjustment_bounds
        return float(min(high, max(low, adjustment)))

    @staticmethod
    def time_multiplier(regime_type: RegimeType) -> float:
        if regime_type.is_shock:
            return 0.5
        if regime_type.is_trending:
            return 1.2
        if regime_type is RegimeType.CONSOLIDATION:
            return 1.5
        return 1.0

    def _apply_dynamic_adjustments(self, take_profit: float, stop_loss: float, regime: MarketRegime, candles: pd.DataFrame):
        cfg = self.config
        recent = candles.iloc[-cfg.sr_lookback:]
        resistance = self.find_significant_level(recent['high'].to_numpy(dtype=float), take_profit)
        support = self.find_significant_level(recent['low'].to_numpy(dtype=float), stop_loss)

        adjusted_tp = take_profit
        adjusted_sl = stop_loss

        if resistance is not None and abs(take_profit - resistance) < take_profit * cfg.sr_snap_distance:
            adjusted_tp = resistance * 0.999
        if support is not None and abs(take_profit - support) < take_profit * cfg.sr_snap_distance:
            adjusted_tp = support * 1.001

        for swing in self.find_swing_levels(candles.iloc[-cfg.swing_lookback:]):
            if abs(stop_loss - swing) < stop_loss * cfg.swing_snap_distance:
                buffer = stop_loss * cfg.swing_buffer
                adjusted_sl = swing - buffer if stop_loss > swing else swing + buffer
                break

        flow = regime.microstructure.order_flow
        if flow is OrderFlowBias.BUYING and adjusted_tp > take_profit:
            adjusted_tp = take_profit + (adjusted_tp - take_profit) * cfg.order_flow_extension
        elif flow is OrderFlowBias.SELLING and adjusted_tp < take_profit:
            adjusted_tp = take_profit - (take_profit - adjusted_tp) * cfg.order_flow_extension

        return adjusted_tp, adjusted_sl

    def find_significant_level(self, prices: np.ndarray, target: float) -> Optional[float]:
        """
        Most-touched price level within 1% of the target.

        Prices are bucketed to the S/R tolerance grid; a level needs at
        least `sr_min_touches` touches to count.
        """
        cfg = self.config
        if len(prices) == 0 or target <= 0:
            return None
        levels = pd.Series(np.round(prices / cfg.sr_tolerance) * cfg.sr_tolerance)
        counts = levels.value_counts(sort=False)
        near = counts[(np.abs(counts.index.to_numpy() - target) / target) < cfg.sr_search_range]
        if near.empty or near.max() < cfg.sr_min_touches:
            return None
        return float(near.idxmax())

    @staticmethod
    def find_swing_levels(candles: pd.DataFrame) -> List[float]:
        """Five-bar fractal swing highs and lows, in bar order"""
        highs = candles['high'].to_numpy(dtype=float)
        lows = candles['low'].to_numpy(dtype=float)
        levels = []
        for i in range(2, len(candles) - 2):
            neighbours = [i - 2, i - 1, i + 1, i + 2]
            if all(highs[i] > highs[j] for j in neighbours):
                levels.append(float(highs[i]))
            if all(lows[i] < lows[j] for j in neighbours):
                levels.append(float(lows[i]))
        return levels

    # ========================================
    # PATH-DEPENDENT MONITORING
    # ========================================

    def monitor_progress(
        self,
        barriers: BarrierLevels,
        candle: dict,
        price_history: Sequence[float],
        direction: Direction,
        now: datetime
    ) -> BarrierProgress:
        """
        Check an open trade against its barriers.

        Args:
            barriers: Levels set at entry
            candle: Latest bar with 'high', 'low', 'close'
            price_history: Prices observed since entry, oldest first
            direction: Trade direction
            now: Current time

        Returns:
            BarrierProgress with exit flag, reason and any gamma-scaled levels
        """
        now = to_utc(now)
        regime_cfg = self.config.for_regime(barriers.regime)
        metrics = self.path_metrics(barriers, price_history, direction, now)

        hit = self._traditional_hit(barriers, candle, now)
        if hit is not None:
            return BarrierProgress(should_exit=True, path_metrics=metrics, exit_reason=hit, message=hit.value)

        if regime_cfg.path_dependent_exits:
            exit_progress = self._path_exit(barriers, metrics, direction)
            if exit_progress is not None:
                return exit_progress

        if regime_cfg.gamma_scaling:
            new_levels = self._gamma_levels(barriers, metrics, float(candle['close']))
            if new_levels:
                return BarrierProgress(should_exit=False, path_metrics=metrics, new_barriers=new_levels,
                                       message="Gamma scaling: stop tightened, target extended")

        return BarrierProgress(should_exit=False, path_metrics=metrics)

    def path_metrics(self, barriers: BarrierLevels, prices: Sequence[float], direction: Direction, now: datetime) -> PathMetrics:
        total = (barriers.time_exit - barriers.entry_time).total_seconds()
        elapsed = (now - barriers.entry_time).total_seconds()
        time_decay = elapsed / total if total > 0 else 1.0

        path = np.asarray(prices, dtype=float)
        if len(path) == 0:
            return PathMetrics(time_decay=time_decay)

        entry = barriers.entry_price
        sign = 1 if direction is Direction.BUY else -1
        favourable = sign * (path - entry) / entry

        returns = np.diff(path) / path[:-1]
        realized = float(np.sqrt(np.mean(returns ** 2)) * np.sqrt(252)) if len(returns) else 0.0
        travelled = float(np.sum(np.abs(np.diff(path)))) or 1.0

        return PathMetrics(
            max_favorable=float(max(0.0, favourable.max())),
            max_adverse=float(min(0.0, favourable.min())),
            realized_volatility=realized,
            directional_efficiency=abs(float(path[-1]) - entry) / travelled,
            current_return=float(favourable[-1]),
            path_length=len(path),
            time_decay=time_decay,
        )

    @staticmethod
    def _traditional_hit(barriers: BarrierLevels, candle: dict, now: datetime) -> Optional[ExitReason]:
        high, low = float(candle['high']), float(candle['low'])
        tp, sl, entry = barriers.take_profit, barriers.stop_loss, barriers.entry_price

        if (tp > entry and high >= tp) or (tp < entry and low <= tp):
            return ExitReason.TAKE_PROFIT
        if (sl < entry and low <= sl) or (sl > entry and high >= sl):
            return ExitReason.STOP_LOSS
        if now >= barriers.time_exit:
            return ExitReason.TIME_EXIT
        return None

    def _path_exit(self, barriers: BarrierLevels, metrics: PathMetrics, direction: Direction) -> Optional[BarrierProgress]:
        cfg = self.config
        expected_vol = barriers.current_atr / barriers.entry_price * np.sqrt(252)

        if metrics.realized_volatility > expected_vol * cfg.volatility_exit_multiple:
            return BarrierProgress(
                should_exit=True, path_metrics=metrics, exit_reason=ExitReason.HIGH_VOLATILITY,
                message=f"High realized volatility: {metrics.realized_volatility:.1%} vs expected {expected_vol:.1%}",
            )

        if metrics.directional_efficiency < cfg.min_efficiency and metrics.path_length > cfg.efficiency_min_path:
            return BarrierProgress(
                should_exit=True, path_metrics=metrics, exit_reason=ExitReason.LOW_EFFICIENCY,
                message=f"Low path efficiency: {metrics.directional_efficiency:.1%}",
            )

        max_adverse = barriers.sl_distance / barriers.entry_price * cfg.adverse_excursion_fraction
        if abs(metrics.max_adverse) > max_adverse:
            return BarrierProgress(
                should_exit=True, path_metrics=metrics, exit_reason=ExitReason.ADVERSE_EXCURSION,
                message=f"Excessive adverse excursion: {metrics.max_adverse:.2%}",
            )

        if metrics.time_decay > cfg.time_decay_exit and metrics.current_return < 0:
            return BarrierProgress(
                should_exit=True, path_metrics=metrics, exit_reason=ExitReason.TIME_DECAY,
                message=f"Time decay exit: {metrics.time_decay:.0%} of time elapsed with negative return",
            )
        return None

    @staticmethod
    def _gamma_levels(barriers: BarrierLevels, metrics: PathMetrics, close: float) -> dict:
        target = barriers.tp_distance / barriers.entry_price
        if target <= 0 or metrics.current_return <= 0:
            return {}
        profit_ratio = metrics.current_return / target
        entry = barriers.entry_price

        if 0.5 <= profit_ratio < 0.75:
            lock, extend = 0.3, 1.2
        elif profit_ratio >= 0.75:
            lock, extend = 0.5, 1.5
        else:
            return {}

        return {
            'stop_loss': entry + (close - entry) * lock,
            'take_profit': entry + (barriers.take_profit - entry) * extend,
        }
