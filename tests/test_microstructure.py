"""
Tests for the Microstructure Analyzer.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from edgeflow.common.schemas import Direction, OrderBook, OrderBookLevel, Trade
from edgeflow.microstructure.analyzer import MicrostructureAnalyzer
from edgeflow.microstructure.config import MicrostructureConfig
from edgeflow.microstructure.schemas import (
    EntryTiming,
    ExecutionQuality,
    LiquidityMetrics,
    MicrostructureRegime,
    MicrostructureState,
    OrderFlowMetrics,
    SweepDirection,
)

from conftest import BASE_TIME

PRICE = 1.1000
NOW = BASE_TIME.replace(hour=12)


def make_book(bid_size: float, ask_size: float, levels: int = 10) -> OrderBook:
    return OrderBook(
        bids=[OrderBookLevel(round(PRICE - 0.0001 * (i + 1), 5), bid_size) for i in range(levels)],
        asks=[OrderBookLevel(round(PRICE + 0.0001 * (i + 1), 5), ask_size) for i in range(levels)],
        timestamp=NOW,
    )


def balanced_trades(n: int = 20):
    """Passive prints on both sides: zero imbalance, zero aggressiveness"""
    return [
        Trade(
            price=PRICE - 0.00005 if i % 2 == 0 else PRICE + 0.00005,
            size=10000.0,
            side=Direction.BUY if i % 2 == 0 else Direction.SELL,
            timestamp=NOW - timedelta(minutes=n - i),
        )
        for i in range(n)
    ]


def aggressive_buys(n: int = 10):
    return [
        Trade(price=PRICE + 0.00005, size=10000.0, side=Direction.BUY, timestamp=NOW - timedelta(minutes=n - i))
        for i in range(n)
    ]


@pytest.fixture
def analyzer():
    return MicrostructureAnalyzer()


class TestOrderFlow:
    """Test order flow metrics."""

    def test_balanced_flow(self):
        flow = MicrostructureAnalyzer.order_flow_metrics(balanced_trades(), PRICE)
        assert flow.order_imbalance == pytest.approx(0.0)
        assert flow.aggressive_ratio == 0.0
        assert flow.vwap == pytest.approx(PRICE)

    def test_one_sided_flow(self):
        flow = MicrostructureAnalyzer.order_flow_metrics(aggressive_buys(), PRICE)
        assert flow.order_imbalance == pytest.approx(1.0)
        assert flow.aggressive_ratio == 1.0
        assert flow.net_order_flow == pytest.approx(100000.0)

    def test_no_trades(self):
        flow = MicrostructureAnalyzer.order_flow_metrics([], PRICE)
        assert flow.vwap == PRICE
        assert flow.buy_volume == 0.0


class TestNormalMarket:
    """Deep, balanced book with passive flow."""

    def test_deep_book_is_normal(self, analyzer, random_candles):
        state = analyzer.analyze(make_book(50000, 50000), balanced_trades(), random_candles, PRICE)

        assert state.regime is MicrostructureRegime.NORMAL
        assert state.liquidity.total_liquidity == pytest.approx(1000000)
        assert state.liquidity.toxic_liquidity_score == 0.0
        assert state.execution.expected_slippage == pytest.approx(0.0)
        assert state.execution.execution_score > 80
        assert state.timestamp == NOW

    def test_deep_book_accepts_and_enters_immediately(self, analyzer, random_candles):
        state = analyzer.analyze(make_book(50000, 50000), balanced_trades(), random_candles, PRICE)

        assert not analyzer.should_reject_trade(state, 10000, 60).reject
        assert analyzer.get_optimal_entry_timing(state, Direction.BUY).timing is EntryTiming.IMMEDIATE

    def test_slippage_walks_the_book(self, analyzer):
        book = make_book(1000, 1000, levels=5)
        slippage = analyzer.expected_slippage(book, 2000)
        # half at 1.1001, half at 1.1002
        assert slippage == pytest.approx((1.10015 - 1.1001) / 1.1001)

    def test_empty_book_slippage(self, analyzer):
        book = OrderBook(bids=[], asks=[], timestamp=NOW)
        assert analyzer.expected_slippage(book, 10000) == analyzer.config.execution.no_liquidity_slippage


class TestIlliquidMarket:
    """Liquidity crisis: book liquidity below 10,000 units."""

    def test_thin_book_is_illiquid_and_rejected(self, analyzer, random_candles):
        state = analyzer.analyze(make_book(500, 500, levels=5), balanced_trades(), random_candles, PRICE)

        assert state.liquidity.total_liquidity < 10000
        assert state.regime in (MicrostructureRegime.ILLIQUID, MicrostructureRegime.TOXIC)

        verdict = analyzer.should_reject_trade(state, 10000, 60)
        assert verdict.reject
        assert verdict.reason

    def test_thin_book_raises_toxicity(self, analyzer, random_candles):
        state = analyzer.analyze(make_book(500, 500, levels=5), balanced_trades(), random_candles, PRICE)
        assert state.liquidity.toxic_liquidity_score >= 0.3
        assert state.execution.recommended_order_size == analyzer.config.execution.min_order_size


class TestStressedMarket:
    """One-sided aggressive buying into large resting offers."""

    @pytest.fixture
    def state(self, analyzer, random_candles):
        return analyzer.analyze(make_book(50000, 60000), aggressive_buys(), random_candles, PRICE)

    def test_regime_is_stressed(self, state):
        assert state.regime is MicrostructureRegime.STRESSED
        assert state.execution.execution_delay_minutes == pytest.approx(2)

    def test_upward_sweep_detected(self, analyzer, state):
        up = [s for s in state.sweeps if s.direction is SweepDirection.UP]
        assert len(up) == 1
        assert up[0].levels == sorted(up[0].levels)
        assert up[0].probability == pytest.approx(0.9)
        assert analyzer.get_liquidity_sweeps()

    def test_sell_waits_for_sweep(self, analyzer, state):
        advice = analyzer.get_optimal_entry_timing(state, Direction.SELL)
        assert advice.timing is EntryTiming.POST_SWEEP
        assert advice.wait_minutes == pytest.approx(15)

    def test_buy_waits_for_conditions(self, analyzer, state):
        advice = analyzer.get_optimal_entry_timing(state, Direction.BUY)
        assert advice.timing is EntryTiming.WAIT
        assert advice.wait_minutes == pytest.approx(2)

    def test_short_horizon_rejects_on_delay(self, analyzer, state):
        verdict = analyzer.should_reject_trade(state, 10000, 1)
        assert verdict.reject
        assert "wait" in verdict.reason.lower()


class TestRules:
    """Test regime rules and rejection rules on hand-built states."""

    def test_classify_toxic(self):
        regime = MicrostructureAnalyzer.classify_regime(
            OrderFlowMetrics(),
            LiquidityMetrics(total_liquidity=50000, toxic_liquidity_score=0.8, resilience=0.5),
            ExecutionQuality(execution_score=60, timing_risk=0.1),
        )
        assert regime is MicrostructureRegime.TOXIC

    def test_classify_sweep_zone(self):
        regime = MicrostructureAnalyzer.classify_regime(
            OrderFlowMetrics(order_imbalance=0.65),
            LiquidityMetrics(total_liquidity=50000, toxic_liquidity_score=0.1, resilience=0.5),
            ExecutionQuality(execution_score=60, timing_risk=0.1, liquidity_sweep_risk=0.7),
        )
        assert regime is MicrostructureRegime.SWEEP_ZONE

    def test_toxic_state_rejected(self, analyzer):
        state = replace(MicrostructureState.default(NOW), regime=MicrostructureRegime.TOXIC)
        verdict = analyzer.should_reject_trade(state, 1000, 60)
        assert verdict.reject
        assert "Toxic" in verdict.reason

    def test_poor_execution_rejected(self, analyzer):
        state = replace(MicrostructureState.default(NOW), execution=ExecutionQuality(execution_score=10))
        assert analyzer.should_reject_trade(state, 1000, 60).reject

    def test_histories_are_capped(self, random_candles):
        analyzer = MicrostructureAnalyzer(MicrostructureConfig(history_size=3))
        for _ in range(5):
            analyzer.analyze(make_book(50000, 50000), balanced_trades(), random_candles, PRICE)
        assert len(analyzer.get_historical_metrics()['execution']) == 3
