"""
Tests for the regime-adaptive engine: net edge, the threshold and
portfolio gates, rejection feedback and online learning.
"""

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from edgeflow.adaptive.config import AdaptiveConfig
from edgeflow.adaptive.edge import EdgeCalculator
from edgeflow.adaptive.engine import RegimeAdaptiveEngine
from edgeflow.adaptive.schemas import GateDecision, TradeProposal
from edgeflow.common.random_source import SeededRandomSource
from edgeflow.common.schemas import Direction, OpenPosition

NOW = BASE_TIME.replace(hour=12)


def make_proposal(probability=0.6, risk_reward=2.0, stop_loss=1.097, **overrides):
    fields = dict(
        pair='EUR/USD',
        direction=Direction.BUY,
        entry_price=1.10,
        stop_loss=stop_loss,
        take_profit=1.106,
        probability=probability,
        risk_reward=risk_reward,
        signal_id='abc123',
    )
    fields.update(overrides)
    return TradeProposal(**fields)


@pytest.fixture
def engine():
    return RegimeAdaptiveEngine(random_source=SeededRandomSource(42))


@pytest.fixture
def hedged_portfolio(portfolio):
    portfolio.open_positions = [OpenPosition('EUR/USD', Direction.SELL, 0.1, 1.09)]
    return portfolio


# ========================================
# EDGE
# ========================================

class TestEdgeCalculator:
    """Test the cost model and the net edge formula"""

    def test_net_edge_formula(self, portfolio, make_regime):
        calculator = EdgeCalculator(random_source=SeededRandomSource(42))
        edge = calculator.calculate(make_proposal(), 1.10, make_regime(), portfolio, NOW)

        assert edge.expected_edge == pytest.approx(0.6 * 2.0 - 0.4)
        costs = edge.spread_cost + edge.slippage_cost + edge.market_impact_cost
        expected = (edge.expected_edge - costs) * edge.execution_quality_factor - edge.opportunity_cost_factor
        assert edge.net_edge == pytest.approx(expected)

    def test_trending_session_costs(self, portfolio, make_regime):
        calculator = EdgeCalculator()
        regime = make_regime()
        assert calculator.spread_cost(1.10, regime, NOW) == pytest.approx(0.00001 / 1.10)
        assert calculator.slippage_cost(1.10, regime) == pytest.approx(0.0001 / 1.10)
        assert calculator.market_impact_cost(0.01, regime) == pytest.approx(0.01 ** 0.6 * 0.0001)
        # trending x1.1, active session x1.1
        assert calculator.execution_quality_factor(regime, NOW) == pytest.approx(1.21)
        # utilisation 0.2 * 0.001 + 48h holding at 0.0001 per day
        assert calculator.opportunity_cost_factor(portfolio, regime) == pytest.approx(0.0004)

    def test_stress_costs(self, portfolio, make_regime):
        calculator = EdgeCalculator()
        night = NOW.replace(hour=3)
        crisis = make_regime('liquidity_crisis')
        assert calculator.spread_cost(1.10, crisis, night) == pytest.approx(0.00001 * 3.0 * 1.5 / 1.10)
        assert calculator.opportunity_cost_factor(portfolio, crisis) == pytest.approx(0.0002 + 0.002 + 0.000025)

        shock = make_regime('shock_down')
        assert calculator.slippage_cost(1.10, shock) == pytest.approx(0.0004 / 1.10)
        assert calculator.execution_quality_factor(shock, night) == pytest.approx(0.7 * 0.9)

    def test_thin_book_penalties(self, make_regime):
        from dataclasses import replace

        regime = make_regime('ranging_tight')
        thin = replace(regime, microstructure=replace(regime.microstructure, market_depth=0.2))
        calculator = EdgeCalculator()
        assert calculator.slippage_cost(1.10, thin) == pytest.approx(0.0002 / 1.10)
        assert calculator.execution_quality_factor(thin, NOW) == pytest.approx(0.9 * 0.75 * 1.1)
        assert calculator.market_impact_cost(100.0, thin) == 0.001

    def test_execution_quality_bounds(self, make_regime):
        calculator = EdgeCalculator()
        for regime_type in ('shock_up', 'trending_bearish', 'ranging_volatile', 'breakout'):
            for volatility in (0.1, 0.5, 0.95):
                eqf = calculator.execution_quality_factor(make_regime(regime_type, volatility=volatility), NOW)
                assert 0.3 <= eqf <= 1.5

    def test_confidence_interval_is_seeded(self, portfolio, make_regime):
        first = EdgeCalculator(random_source=SeededRandomSource(3))
        second = EdgeCalculator(random_source=SeededRandomSource(3))
        args = (make_proposal(), 1.10, make_regime(), portfolio, NOW)
        low, high = first.calculate(*args).confidence_interval
        assert (low, high) == second.calculate(*args).confidence_interval
        assert low <= high


# ========================================
# GATES
# ========================================

class TestAdaptiveGate:
    """Accept iff net edge clears the regime threshold and the portfolio gate passes"""

    def test_accepts_strong_edge(self, engine, portfolio, make_regime):
        decision = engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW)
        assert decision.accepted
        assert decision.decision is GateDecision.ACCEPT
        assert decision.threshold == pytest.approx(0.015)
        assert decision.edge.net_edge >= decision.threshold
        assert decision.adapted_signal is not None
        assert decision.reason.startswith("Regime-adapted acceptance")

    def test_rejects_below_threshold(self, engine, portfolio, make_regime):
        decision = engine.process_signal(make_proposal(probability=0.3, risk_reward=1.0), make_regime(),
                                         portfolio, 1.10, NOW)
        assert decision.decision is GateDecision.REJECT
        assert decision.edge.net_edge < decision.threshold
        assert decision.reason.startswith("Below adaptive threshold")
        assert decision.adapted_signal is None
        assert len(engine.get_rejection_log()) == 1

    def test_edge_alone_is_not_enough(self, engine, hedged_portfolio, make_regime):
        decision = engine.process_signal(make_proposal(), make_regime(), hedged_portfolio, 1.10, NOW)
        assert decision.edge.net_edge >= decision.threshold
        assert decision.decision is GateDecision.REJECT
        assert not decision.portfolio.accept
        assert "High correlation" in decision.reason

    def test_portfolio_alone_is_not_enough(self, engine, portfolio, make_regime):
        decision = engine.process_signal(make_proposal(probability=0.335), make_regime(),
                                         portfolio, 1.10, NOW)
        assert decision.portfolio.accept
        assert decision.decision is GateDecision.REJECT

    def test_portfolio_gate_can_be_disabled(self, hedged_portfolio, make_regime):
        engine = RegimeAdaptiveEngine(AdaptiveConfig(portfolio_optimization=False), random_source=SeededRandomSource(42))
        decision = engine.process_signal(make_proposal(), make_regime(), hedged_portfolio, 1.10, NOW)
        assert decision.accepted

    def test_negative_sharpe_impact(self, engine, portfolio, make_regime):
        portfolio.sharpe_ratio = 10.0
        decision = engine.process_signal(make_proposal(probability=0.35), make_regime(), portfolio, 1.10, NOW)
        assert decision.edge.net_edge >= decision.threshold
        assert not decision.portfolio.accept
        assert "Negative Sharpe impact" in decision.portfolio.reason

    def test_risk_concentration(self, engine, portfolio, make_regime):
        decision = engine.process_signal(make_proposal(stop_loss=0.70), make_regime(), portfolio, 1.10, NOW)
        assert not decision.portfolio.accept
        assert "Risk concentration" in decision.portfolio.reason

    def test_regime_specific_thresholds(self, engine, portfolio, make_regime):
        assert engine.get_threshold('consolidation') == pytest.approx(0.006)
        assert engine.get_threshold('liquidity_crisis') == pytest.approx(0.030)
        decision = engine.process_signal(make_proposal(), make_regime('shock_up'), portfolio, 1.10, NOW)
        assert decision.threshold == pytest.approx(0.025)


class TestRegimeAdaptation:
    """Test size and barrier adaptation of accepted signals"""

    def test_neutral_volatility_keeps_barriers(self, engine, portfolio, make_regime):
        adapted = engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW).adapted_signal
        assert adapted.volatility_adjustment == pytest.approx(1.0)
        assert adapted.stop_loss == pytest.approx(1.097)
        assert adapted.take_profit == pytest.approx(1.106)
        assert adapted.position_units == pytest.approx(10000.0)

    def test_high_volatility_widens_and_shrinks(self, engine, portfolio, make_regime):
        regime = make_regime(volatility=0.9, risk_multiplier=0.5)
        adapted = engine.process_signal(make_proposal(), regime, portfolio, 1.10, NOW).adapted_signal
        assert adapted.volatility_adjustment == pytest.approx(1.2)
        assert adapted.stop_loss == pytest.approx(1.10 - 0.003 * 1.2)
        assert adapted.take_profit == pytest.approx(1.10 + 0.006 * 1.2)
        assert adapted.position_units == pytest.approx(5000.0)

    def test_static_risk_ignores_multiplier(self, portfolio, make_regime):
        engine = RegimeAdaptiveEngine(AdaptiveConfig(dynamic_risk_management=False), random_source=SeededRandomSource(42))
        regime = make_regime(risk_multiplier=0.5)
        adapted = engine.process_signal(make_proposal(), regime, portfolio, 1.10, NOW).adapted_signal
        assert adapted.risk_multiplier == 1.0
        assert adapted.position_units == pytest.approx(10000.0)


# ========================================
# REJECTION FEEDBACK
# ========================================

class TestRejectionFeedback:
    """Test the capped log and the every-50th pattern pass"""

    def test_fiftieth_rejection_runs_one_pass(self, engine):
        proposal = make_proposal()
        for _ in range(49):
            engine.log_rejection('ranging_tight', proposal, "Below adaptive threshold: x", NOW)
        assert engine.analysis_passes == 0

        engine.log_rejection('ranging_tight', proposal, "Below adaptive threshold: x", NOW)
        assert engine.analysis_passes == 1

    def test_over_rejected_regime_is_relaxed(self, engine):
        proposal = make_proposal()
        for i in range(50):
            regime = 'ranging_tight' if i < 30 else 'breakout'
            engine.log_rejection(regime, proposal, "Below adaptive threshold: x", NOW)

        assert engine.get_threshold('ranging_tight') == pytest.approx(0.008 * 0.95)
        # 20 is not more than 20
        assert engine.get_threshold('breakout') == pytest.approx(0.018)

    def test_relaxation_respects_floor(self, engine):
        engine.state.thresholds['consolidation'].threshold = 0.001
        for _ in range(50):
            engine.log_rejection('consolidation', make_proposal(), "Below adaptive threshold: x", NOW)
        assert engine.get_threshold('consolidation') == pytest.approx(0.001)

    def test_feedback_can_be_disabled(self):
        engine = RegimeAdaptiveEngine(AdaptiveConfig(rejection_feedback=False))
        for _ in range(100):
            engine.log_rejection('ranging_tight', make_proposal(), "Below adaptive threshold: x", NOW)
        assert engine.analysis_passes == 0
        assert engine.get_threshold('ranging_tight') == pytest.approx(0.008)

    def test_log_is_capped(self, engine):
        for i in range(1200):
            engine.log_rejection('breakout', make_proposal(), f"Below adaptive threshold: {i}", NOW)

        log = engine.get_rejection_log()
        assert len(log) == 1000
        assert log[-1].reason.endswith("1199")
        assert engine.analysis_passes == 24
        low, high = engine.config.thresholds.bounds
        assert low <= engine.get_threshold('breakout') <= high

    def test_gate_rejections_are_logged(self, engine, portfolio, make_regime):
        engine.process_signal(make_proposal(probability=0.2), make_regime(), portfolio, 1.10, NOW)
        entry = engine.get_rejection_log()[0]
        assert entry.regime == 'trending_bullish'
        assert entry.timestamp == NOW
        assert entry.signal['signal_id'] == 'abc123'

    def test_unrecorded_verdict_waits_for_commit(self, engine, portfolio, make_regime):
        gate = engine.process_signal(make_proposal(probability=0.2), make_regime(), portfolio, 1.10, NOW, record=False)
        assert gate.decision is GateDecision.REJECT
        assert engine.get_rejection_log() == []
        assert engine.get_online_learning_states()['trending_bullish'].last_calibration is None

        engine.commit(gate, NOW, traded=False)
        assert engine.get_rejection_log()[0].reason == gate.reason
        assert engine.get_online_learning_states()['trending_bullish'].total_trades == 0


# ========================================
# ONLINE LEARNING
# ========================================

class TestOnlineLearning:
    """Test threshold self-tuning, recalibration and outcome tracking"""

    def test_accepts_count_as_trades(self, engine, portfolio, make_regime):
        for _ in range(3):
            engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW)
        engine.process_signal(make_proposal(probability=0.2), make_regime(), portfolio, 1.10, NOW)
        assert engine.get_online_learning_states()['trending_bullish'].total_trades == 3

    def test_untraded_accept_is_not_counted(self, engine, portfolio, make_regime):
        gate = engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW, record=False)
        assert gate.accepted
        engine.commit(gate, NOW, traded=False)

        assert engine.get_online_learning_states()['trending_bullish'].total_trades == 0
        assert engine.get_rejection_log() == []

    def test_recalibration_every_twenty_trades(self, engine, portfolio, make_regime):
        for _ in range(20):
            engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW)

        learning = engine.get_online_learning_states()['trending_bullish']
        assert learning.calibrations == 1
        assert learning.feature_weights['technical'] == pytest.approx(0.95 + 1.02 * 0.05)

    def test_stale_calibration_triggers_recalibration(self, engine, portfolio, make_regime):
        engine.process_signal(make_proposal(probability=0.2), make_regime(), portfolio, 1.10, NOW)
        later = NOW + timedelta(days=8)
        engine.process_signal(make_proposal(probability=0.2), make_regime(timestamp=later), portfolio, 1.10, later)
        assert engine.get_online_learning_states()['trending_bullish'].calibrations == 1

    def test_recalibration_can_be_disabled(self, portfolio, make_regime):
        engine = RegimeAdaptiveEngine(AdaptiveConfig(continuous_recalibration=False), random_source=SeededRandomSource(42))
        for _ in range(20):
            engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW)
        assert engine.get_online_learning_states()['trending_bullish'].calibrations == 0

    def test_record_trade_outcome(self, engine):
        engine.record_trade_outcome('trending_bullish', 0.01, NOW)
        engine.record_trade_outcome('trending_bullish', -0.005, NOW)

        learning = engine.get_online_learning_states()['trending_bullish']
        assert learning.win_rate == pytest.approx(0.5)
        assert learning.avg_return == pytest.approx(0.0025)
        assert learning.volatility == pytest.approx(0.0075)

        threshold = engine.get_adaptive_thresholds()['trending_bullish']
        assert threshold.performance.accuracy == pytest.approx(0.5)
        assert threshold.performance.drawdown == pytest.approx(0.005)

    def test_threshold_update_needs_ten_trades(self, engine):
        engine.record_trade_outcome('trending_bullish', 0.02, NOW)
        assert engine.force_threshold_update('trending_bullish', NOW) == pytest.approx(0.015)

    def test_forced_threshold_update(self, engine, portfolio, make_regime):
        for _ in range(10):
            engine.process_signal(make_proposal(), make_regime(), portfolio, 1.10, NOW)
        for _ in range(10):
            engine.record_trade_outcome('trending_bullish', 0.02, NOW)

        updated = engine.force_threshold_update('trending_bullish', NOW)
        low, high = engine.config.thresholds.bounds
        assert 0.015 < updated <= high
        assert updated >= low
        assert engine.get_adaptive_thresholds()['trending_bullish'].confidence == pytest.approx(0.55)

    def test_unknown_regime_update(self, engine):
        assert engine.force_threshold_update('no_such_regime', NOW) is None

    def test_getters_return_copies(self, engine):
        thresholds = engine.get_adaptive_thresholds()
        thresholds['trending_bullish'].threshold = 0.5
        assert engine.get_threshold('trending_bullish') == pytest.approx(0.015)

        weights = engine.get_feature_weights('trending_bullish')
        weights['technical'] = 9.0
        assert engine.get_feature_weights('trending_bullish')['technical'] == 1.0
