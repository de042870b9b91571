"""
Microstructure Analyzer

Order flow, liquidity and execution quality from order book snapshots
and trade prints; ordered-rule regime classification; liquidity sweep
detection; trade rejection and entry timing advice.

The analyzer owns its rolling histories (order books, metrics, sweeps).
Everything a caller needs for a decision is carried on the returned
MicrostructureState.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.schemas import Direction, OrderBook, OrderBookLevel, Trade, to_utc
from edgeflow.microstructure.config import MicrostructureConfig
from edgeflow.microstructure.schemas import (
    EntryTiming,
    ExecutionQuality,
    LiquidityMetrics,
    LiquiditySweep,
    MicrostructureRegime,
    MicrostructureState,
    OrderFlowMetrics,
    RejectionVerdict,
    SweepDirection,
    TimingAdvice,
)

LOG = logging.getLogger(__name__)


class MicrostructureAnalyzer:
    """
    Microstructure analyzer.

    Histories are capped (order books and metrics at `history_size`,
    sweeps at the sweep history size) and evict oldest first.
    """

    def __init__(self, config: Optional[MicrostructureConfig] = None):
        self.config = config or MicrostructureConfig()
        size = self.config.history_size

        self._order_books: deque = deque(maxlen=size)
        self._order_flow_history: deque = deque(maxlen=size)
        self._liquidity_history: deque = deque(maxlen=size)
        self._execution_history: deque = deque(maxlen=size)
        self._sweeps: deque = deque(maxlen=self.config.sweep.history_size)
        self._lock = threading.RLock()

        LOG.info("MicrostructureAnalyzer initialized")

    # ========================================
    # MAIN ANALYSIS
    # ========================================

    def analyze(
        self,
        order_book: OrderBook,
        trades: List[Trade],
        candles: pd.DataFrame,
        current_price: float,
        as_of: Optional[datetime] = None
    ) -> MicrostructureState:
        """
        Analyze one order book snapshot.

        Args:
            order_book: Current book, best levels first
            trades: Recent trade prints
            candles: Recent candles for timing risk and S/R levels
            current_price: Last traded price
            as_of: Analysis time (defaults to the order book timestamp)

        Returns:
            MicrostructureState
        """
        timestamp = to_utc(as_of if as_of is not None else order_book.timestamp)

        with self._lock:
            self._order_books.append(order_book)
            books = list(self._order_books)

            order_flow = self.order_flow_metrics(trades, current_price)
            liquidity = self.liquidity_metrics(order_book, books)
            execution = self.execution_quality(order_book, order_flow, liquidity, candles)
            regime = self.classify_regime(order_flow, liquidity, execution)
            confidence = self.analysis_confidence(order_book, len(trades))
            sweeps = self.detect_sweeps(order_book, order_flow, candles)

            self._order_flow_history.append(order_flow)
            self._liquidity_history.append(liquidity)
            self._execution_history.append(execution)
            self._sweeps.extend(sweeps)

        LOG.debug(f"Microstructure regime {regime.value}, execution score {execution.execution_score:.1f}")

        return MicrostructureState(
            order_flow=order_flow,
            liquidity=liquidity,
            execution=execution,
            regime=regime,
            confidence=confidence,
            timestamp=timestamp,
            sweeps=sweeps,
        )

    # ========================================
    # ORDER FLOW
    # ========================================

    @staticmethod
    def order_flow_metrics(trades: List[Trade], current_price: float) -> OrderFlowMetrics:
        """Volume split, VWAP, imbalance and aggressiveness of trade prints"""
        if not trades:
            return OrderFlowMetrics(vwap=current_price)

        buy_volume = sum(t.size for t in trades if t.side is Direction.BUY)
        sell_volume = sum(t.size for t in trades if t.side is Direction.SELL)
        total = buy_volume + sell_volume
        net = buy_volume - sell_volume
        value = sum(t.price * t.size for t in trades)

        aggressive = sum(
            1 for t in trades
            if (t.side is Direction.BUY and t.price >= current_price)
            or (t.side is Direction.SELL and t.price <= current_price)
        )
        aggressive_ratio = aggressive / len(trades)

        return OrderFlowMetrics(
            buy_volume=buy_volume,
            sell_volume=sell_volume,
            net_order_flow=net,
            vwap=value / total if total > 0 else current_price,
            order_imbalance=net / total if total > 0 else 0.0,
            aggressive_ratio=aggressive_ratio,
            liquidity_taken_ratio=aggressive_ratio,
        )

    # ========================================
    # LIQUIDITY
    # ========================================

    def liquidity_metrics(self, book: OrderBook, history: List[OrderBook]) -> LiquidityMetrics:
        cfg = self.config.liquidity
        bid_liquidity = sum(level.size for level in book.bids)
        ask_liquidity = sum(level.size for level in book.asks)
        total = bid_liquidity + ask_liquidity
        levels = len(book.bids) + len(book.asks)

        mid = book.mid
        band = mid * cfg.depth_band
        depth = (sum(1 for b in book.bids if b.price >= mid - band)
                 + sum(1 for a in book.asks if a.price <= mid + band))

        return LiquidityMetrics(
            bid_liquidity=bid_liquidity,
            ask_liquidity=ask_liquidity,
            total_liquidity=total,
            liquidity_imbalance=(bid_liquidity - ask_liquidity) / total if total > 0 else 0.0,
            average_order_size=total / levels if levels else 0.0,
            order_book_depth=depth,
            resilience=self.resilience(history),
            toxic_liquidity_score=self.toxicity(book, history),
        )

    def resilience(self, history: List[OrderBook]) -> float:
        """Average positive liquidity replenishment over the last snapshots, scaled to [0, 1]"""
        cfg = self.config.liquidity
        if len(history) < cfg.resilience_snapshots:
            return cfg.resilience_default

        totals = [book.total_size for book in history[-cfg.resilience_snapshots:]]
        changes = [max(0.0, (cur - prev) / prev) for prev, cur in zip(totals[:-1], totals[1:]) if prev > 0]
        if not changes:
            return cfg.resilience_default
        return float(min(1.0, np.mean(changes) * 10))

    def toxicity(self, book: OrderBook, history: List[OrderBook]) -> float:
        """
        Toxic liquidity score in [0, 1].

        Adds up: large resting orders on round prices, rapid spread changes
        across recent snapshots, and an extremely thin book.
        """
        cfg = self.config.liquidity
        score = 0.0

        round_orders = sum(
            1 for level in list(book.bids) + list(book.asks)
            if self._is_round(level.price, cfg.round_price_tick) and level.size > cfg.large_round_order
        )
        score += min(0.3, round_orders * 0.1)

        if len(history) >= cfg.spread_change_snapshots:
            recent = history[-cfg.spread_change_snapshots:]
            rapid = sum(
                1 for prev, cur in zip(recent[:-1], recent[1:])
                if prev.spread and abs(cur.spread - prev.spread) / prev.spread > cfg.rapid_spread_change
            )
            score += min(0.4, rapid * 0.1)

        if book.total_size < cfg.thin_book_liquidity:
            score += 0.3

        return float(min(1.0, score))

    @staticmethod
    def _is_round(price: float, tick: float) -> bool:
        ticks = price / tick
        return abs(ticks - round(ticks)) < 1e-6

    # ========================================
    # EXECUTION QUALITY
    # ========================================

    def execution_quality(
        self,
        book: OrderBook,
        order_flow: OrderFlowMetrics,
        liquidity: LiquidityMetrics,
        candles: pd.DataFrame
    ) -> ExecutionQuality:
        cfg = self.config.execution
        slippage = self.expected_slippage(book, cfg.reference_order_size)
        impact = self.market_impact(liquidity, order_flow)
        timing = self.timing_risk(candles)
        sweep_risk = self.sweep_risk(book, order_flow)

        return ExecutionQuality(
            expected_slippage=slippage,
            market_impact=impact,
            timing_risk=timing,
            liquidity_sweep_risk=sweep_risk,
            execution_score=self.execution_score(slippage, impact, timing, sweep_risk, liquidity),
            execution_delay_minutes=self.execution_delay(order_flow, liquidity),
            recommended_order_size=self.recommended_order_size(liquidity),
        )

    def expected_slippage(self, book: OrderBook, order_size: float) -> float:
        """Relative slippage of a buy order walking the ask side"""
        remaining = order_size
        cost = 0.0
        filled = 0.0
        for ask in book.asks:
            if remaining <= 0:
                break
            take = min(remaining, ask.size)
            cost += take * ask.price
            filled += take
            remaining -= take

        if filled == 0:
            return self.config.execution.no_liquidity_slippage
        best_ask = book.asks[0].price
        if best_ask <= 0:
            return self.config.execution.no_liquidity_slippage
        return float(max(0.0, (cost / filled - best_ask) / best_ask))

    def market_impact(self, liquidity: LiquidityMetrics, order_flow: OrderFlowMetrics) -> float:
        """Kyle-lambda style linear impact of the signed flow, capped"""
        cfg = self.config.execution
        if liquidity.total_liquidity == 0:
            return cfg.no_liquidity_impact
        impact = cfg.impact_lambda * abs(order_flow.net_order_flow) / liquidity.total_liquidity
        return float(min(cfg.impact_cap, impact))

    def timing_risk(self, candles: pd.DataFrame) -> float:
        cfg = self.config.execution
        if candles is None or len(candles) < cfg.timing_window:
            return cfg.timing_default
        vol = PrimitiveTransforms.realized_volatility(candles['close'].iloc[-cfg.timing_window:].astype(float))
        return float(min(1.0, vol * 100))

    def sweep_risk(self, book: OrderBook, order_flow: OrderFlowMetrics) -> float:
        cfg = self.config.execution
        risk = 0.0
        if abs(order_flow.order_imbalance) > 0.6:
            risk += 0.3

        avg_bid = sum(b.size for b in book.bids[:cfg.top_levels]) / cfg.top_levels
        avg_ask = sum(a.size for a in book.asks[:cfg.top_levels]) / cfg.top_levels
        if avg_bid < cfg.thin_level_size or avg_ask < cfg.thin_level_size:
            risk += 0.4

        if order_flow.aggressive_ratio > 0.7:
            risk += 0.3
        return float(min(1.0, risk))

    def execution_score(
        self,
        slippage: float,
        impact: float,
        timing_risk: float,
        sweep_risk: float,
        liquidity: LiquidityMetrics
    ) -> float:
        """
        Execution score in [0, 100].

        100 less penalties (slippage x1000, impact x1500, timing x20,
        sweep x25) plus bonuses for deep (+10) and balanced (+5) books.
        """
        score = 100.0
        score -= slippage * 1000
        score -= impact * 1500
        score -= timing_risk * 20
        score -= sweep_risk * 25
        if liquidity.total_liquidity > self.config.execution.good_liquidity:
            score += 10
        if abs(liquidity.liquidity_imbalance) < 0.2:
            score += 5
        return float(max(0.0, min(100.0, score)))

    @staticmethod
    def execution_delay(order_flow: OrderFlowMetrics, liquidity: LiquidityMetrics) -> float:
        """Minutes to wait for conditions to normalise"""
        delay = 0.0
        if abs(order_flow.order_imbalance) > 0.7:
            delay += 2
        if liquidity.toxic_liquidity_score > 0.6:
            delay += 5
        if liquidity.resilience < 0.3:
            delay += 3
        return delay

    def recommended_order_size(self, liquidity: LiquidityMetrics) -> float:
        cfg = self.config.execution
        size = liquidity.total_liquidity * cfg.max_liquidity_share * min(1.0, liquidity.order_book_depth / 10)
        return float(max(cfg.min_order_size, min(cfg.max_order_size, size)))

    # ========================================
    # REGIME
    # ========================================

    @staticmethod
    def classify_regime(
        order_flow: OrderFlowMetrics,
        liquidity: LiquidityMetrics,
        execution: ExecutionQuality
    ) -> MicrostructureRegime:
        """Ordered rules: first match wins"""
        imbalance = abs(order_flow.order_imbalance)

        if liquidity.toxic_liquidity_score < 0.3 and execution.execution_score > 70 and imbalance < 0.5:
            return MicrostructureRegime.NORMAL
        if imbalance > 0.7 or order_flow.aggressive_ratio > 0.8 or execution.timing_risk > 0.7:
            return MicrostructureRegime.STRESSED
        if liquidity.total_liquidity < 10000 or liquidity.resilience < 0.2 or execution.expected_slippage > 0.005:
            return MicrostructureRegime.ILLIQUID
        if liquidity.toxic_liquidity_score > 0.7 or execution.liquidity_sweep_risk > 0.8:
            return MicrostructureRegime.TOXIC
        if execution.liquidity_sweep_risk > 0.6 and imbalance > 0.6:
            return MicrostructureRegime.SWEEP_ZONE
        return MicrostructureRegime.NORMAL

    @staticmethod
    def analysis_confidence(book: OrderBook, trade_count: int) -> float:
        confidence = 0.5
        confidence += min(0.3, trade_count / 100 * 0.3)
        confidence += min(0.2, (len(book.bids) + len(book.asks)) / 50 * 0.2)
        return float(min(1.0, confidence))

    # ========================================
    # LIQUIDITY SWEEPS
    # ========================================

    def detect_sweeps(self, book: OrderBook, order_flow: OrderFlowMetrics, candles: pd.DataFrame) -> List[LiquiditySweep]:
        cfg = self.config.sweep
        sweeps = []
        if order_flow.aggressive_ratio <= cfg.min_aggressive_ratio:
            return sweeps

        if order_flow.order_imbalance > cfg.min_imbalance:
            levels = self._sweep_levels(book.asks, candles, 'high', ascending=True)
            if levels:
                sweeps.append(self._sweep(SweepDirection.UP, levels, order_flow.buy_volume * 2, order_flow))

        if order_flow.order_imbalance < -cfg.min_imbalance:
            levels = self._sweep_levels(book.bids, candles, 'low', ascending=False)
            if levels:
                sweeps.append(self._sweep(SweepDirection.DOWN, levels, order_flow.sell_volume * 2, order_flow))

        return sweeps

    def _sweep(self, direction: SweepDirection, levels: List[float], volume: float, order_flow: OrderFlowMetrics) -> LiquiditySweep:
        return LiquiditySweep(
            direction=direction,
            levels=levels,
            estimated_volume=volume,
            probability=self.sweep_probability(order_flow, direction),
            time_window=self.config.sweep.time_window_minutes,
            trigger_price=levels[0],
        )

    def _sweep_levels(self, side: List[OrderBookLevel], candles: pd.DataFrame, column: str, ascending: bool) -> List[float]:
        cfg = self.config.sweep
        levels = [level.price for level in side if level.size > cfg.large_order]
        if candles is not None and len(candles) >= cfg.candle_lookback:
            prices = candles[column].iloc[-cfg.candle_lookback:].to_numpy(dtype=float)
            levels.extend(self.significant_levels(prices))
        return sorted(levels, reverse=not ascending)[:3]

    def significant_levels(self, prices: np.ndarray) -> List[float]:
        """Levels touched at least `min_touches` times, most touched first (top 5)"""
        cfg = self.config.sweep
        rounded = pd.Series(np.round(np.round(prices / cfg.level_tolerance) * cfg.level_tolerance, 10))
        counts = rounded.value_counts()
        counts = counts[counts >= cfg.min_touches]
        return [float(level) for level in counts.index[:5]]

    @staticmethod
    def sweep_probability(order_flow: OrderFlowMetrics, direction: SweepDirection) -> float:
        probability = 0.3
        imbalance = order_flow.order_imbalance
        if (direction is SweepDirection.UP and imbalance > 0.5) or (direction is SweepDirection.DOWN and imbalance < -0.5):
            probability += abs(imbalance) * 0.4
        if order_flow.aggressive_ratio > 0.6:
            probability += (order_flow.aggressive_ratio - 0.6) * 0.5
        if order_flow.liquidity_taken_ratio > 0.7:
            probability += (order_flow.liquidity_taken_ratio - 0.7) * 0.3
        return float(min(0.9, probability))

    # ========================================
    # PUBLIC CONTRACT
    # ========================================

    def should_reject_trade(self, state: MicrostructureState, order_size: float, time_horizon: float) -> RejectionVerdict:
        """
        Decide whether microstructure conditions veto a trade.

        Args:
            state: Current microstructure state
            order_size: Intended order size in units
            time_horizon: Trade horizon in minutes

        Returns:
            RejectionVerdict with a human-readable reason on reject
        """
        cfg = self.config.rejection
        execution = state.execution

        if state.regime is MicrostructureRegime.TOXIC:
            return RejectionVerdict(True, "Toxic liquidity detected")
        if execution.execution_score < cfg.min_execution_score:
            return RejectionVerdict(True, f"Poor execution quality: {execution.execution_score:.0f}")
        if execution.liquidity_sweep_risk > cfg.max_sweep_risk:
            return RejectionVerdict(True, "High liquidity sweep risk")
        if order_size > execution.recommended_order_size * cfg.max_size_multiple:
            return RejectionVerdict(True, "Order size too large for current liquidity")
        if execution.execution_delay_minutes > time_horizon:
            return RejectionVerdict(
                True, f"Should wait {round(execution.execution_delay_minutes)} minutes for optimal execution"
            )
        return RejectionVerdict(False)

    def get_optimal_entry_timing(self, state: MicrostructureState, direction: Direction) -> TimingAdvice:
        """Immediate, wait or post-sweep entry advice for a trade direction"""
        cfg = self.config.rejection
        if state.regime is MicrostructureRegime.NORMAL and state.execution.execution_score > cfg.immediate_score:
            return TimingAdvice(EntryTiming.IMMEDIATE, "Excellent execution conditions")

        against = SweepDirection.DOWN if direction is Direction.BUY else SweepDirection.UP
        relevant = [
            s for s in state.sweeps
            if s.direction is against and s.time_window > 0 and s.probability > cfg.post_sweep_probability
        ]
        if relevant:
            return TimingAdvice(
                EntryTiming.POST_SWEEP,
                f"Wait for {relevant[0].direction.value} sweep to complete",
                relevant[0].time_window,
            )

        delay = state.execution.execution_delay_minutes
        if 0 < delay < cfg.max_wait_minutes:
            return TimingAdvice(EntryTiming.WAIT, "Wait for better execution conditions", delay)

        return TimingAdvice(EntryTiming.IMMEDIATE, "Acceptable conditions for execution")

    def get_liquidity_sweeps(self) -> List[LiquiditySweep]:
        with self._lock:
            return list(self._sweeps)

    def get_historical_metrics(self) -> Dict[str, list]:
        with self._lock:
            return {
                'order_flow': list(self._order_flow_history),
                'liquidity': list(self._liquidity_history),
                'execution': list(self._execution_history),
            }
