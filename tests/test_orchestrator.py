"""
Tests for the master orchestrator: the full decision cycle, feedback,
KPIs and configuration.
"""

from datetime import timedelta

import numpy as np
import pytest

from conftest import build_candles
from edgeflow.barriers.config import RegimeBarrierConfig
from edgeflow.common.errors import InvalidMarketDataError, InvalidPortfolioStateError
from edgeflow.common.schemas import (
    EPOCH,
    Direction,
    MarketSnapshot,
    OpenPosition,
    OrderBook,
    OrderBookLevel,
    PortfolioState,
    ReasonCategory,
    Trade,
)
from edgeflow.microstructure.schemas import EntryTiming
from edgeflow.orchestrator.config import EngineConfig, OrchestratorConfig
from edgeflow.orchestrator.engine import MasterOrchestrator
from edgeflow.orchestrator.schemas import DecisionAction, SystemKPIs
from edgeflow.prediction.base_model import candidate_id
from edgeflow.prediction.config import BaseModelConfig, PredictionConfig
from edgeflow.prediction.schemas import CandidateSignal, FactorCategory, TechnicalFactor
from edgeflow.regime.schemas import RegimeType


def loose_config(**flags) -> EngineConfig:
    """Single-factor confluence so a clean trend always yields a candidate"""
    return EngineConfig(
        prediction=PredictionConfig(base=BaseModelConfig(min_agreeing_factors=1)),
        orchestrator=OrchestratorConfig(**flags),
    )


def last_time(candles):
    return candles['timestamp'].iloc[-1].to_pydatetime()


def book_around(price, size, when, levels=10):
    return OrderBook(
        bids=[OrderBookLevel(price - 0.0001 * (i + 1), size) for i in range(levels)],
        asks=[OrderBookLevel(price + 0.0001 * (i + 1), size) for i in range(levels)],
        timestamp=when,
    )


def balanced_trades_around(price, when, n=20):
    return [
        Trade(
            price=price - 0.00005 if i % 2 == 0 else price + 0.00005,
            size=10000.0,
            side=Direction.BUY if i % 2 == 0 else Direction.SELL,
            timestamp=when - timedelta(minutes=n - i),
        )
        for i in range(n)
    ]


@pytest.fixture
def trending_snapshot(trending_candles):
    return MarketSnapshot(candles=trending_candles, current_price=float(trending_candles['close'].iloc[-1]))


@pytest.fixture
def random_snapshot(random_candles):
    return MarketSnapshot(candles=random_candles, current_price=float(random_candles['close'].iloc[-1]))


# ========================================
# DECISION CYCLE
# ========================================

class TestDecisionCycle:
    """Test end-to-end decisions"""

    def test_empty_candles_reject_with_neutral_regime(self, empty_candles, portfolio):
        orchestrator = MasterOrchestrator()
        recommendation = orchestrator.process_signal(MarketSnapshot(candles=empty_candles, current_price=1.10), portfolio)
        decision = recommendation.decision

        assert decision.action is DecisionAction.REJECT
        assert decision.regime.type is RegimeType.NEUTRAL
        assert decision.timestamp == EPOCH
        assert decision.signal is None
        assert decision.reasoning[0].category is ReasonCategory.INSUFFICIENT_CONFLUENCE
        assert decision.reasoning[0].message == "No candidate signals detected"
        assert recommendation.risk_warnings == ["Signal rejected: No candidate signals detected"]
        assert len(recommendation.optimization_suggestions) == 3

    def test_short_history_rejects(self, short_candles, portfolio):
        snapshot = MarketSnapshot(candles=short_candles, current_price=1.10)
        decision = MasterOrchestrator().process_signal(snapshot, portfolio).decision
        assert decision.action is DecisionAction.REJECT
        assert decision.regime.type is RegimeType.NEUTRAL

    def test_decision_is_well_formed(self, random_snapshot, portfolio):
        decision = MasterOrchestrator().process_signal(random_snapshot, portfolio).decision

        assert decision.action in (DecisionAction.ACCEPT, DecisionAction.REJECT, DecisionAction.WAIT)
        assert 0.0 <= decision.confidence <= 1.0
        assert decision.reasoning
        assert decision.timestamp == last_time(random_snapshot.candles)
        if decision.action is DecisionAction.ACCEPT:
            assert decision.signal is not None
            assert decision.barriers is not None
            assert decision.risk_adjusted_edge == pytest.approx(decision.edge.net_edge)

    def test_trending_market_is_accepted(self, trending_snapshot, portfolio):
        recommendation = MasterOrchestrator(loose_config()).process_signal(trending_snapshot, portfolio)
        decision = recommendation.decision

        assert decision.regime.type is RegimeType.TRENDING_BULLISH
        assert decision.action is DecisionAction.ACCEPT
        assert decision.confidence == pytest.approx(decision.signal.final_score)
        assert [r.category for r in decision.reasoning] == [
            ReasonCategory.ACCEPTANCE, ReasonCategory.META_MODEL, ReasonCategory.EDGE,
        ]
        assert decision.barriers is not None
        assert decision.execution is None
        assert len(recommendation.alternative_scenarios) == 3
        assert any(s.startswith("Optimal position size") for s in recommendation.optimization_suggestions)

    def test_deep_book_enters_immediately(self, trending_candles, portfolio):
        price = float(trending_candles['close'].iloc[-1])
        when = last_time(trending_candles)
        snapshot = MarketSnapshot(
            candles=trending_candles,
            current_price=price,
            order_book=book_around(price, 50000.0, when),
            recent_trades=balanced_trades_around(price, when),
        )
        recommendation = MasterOrchestrator(loose_config()).process_signal(snapshot, portfolio)
        decision = recommendation.decision

        assert decision.action is DecisionAction.ACCEPT
        assert decision.execution.timing is EntryTiming.IMMEDIATE
        assert decision.microstructure.timestamp == when
        assert len(recommendation.alternative_scenarios) == 4

    def test_thin_book_is_rejected(self, trending_candles, portfolio):
        price = float(trending_candles['close'].iloc[-1])
        when = last_time(trending_candles)
        snapshot = MarketSnapshot(
            candles=trending_candles,
            current_price=price,
            order_book=book_around(price, 500.0, when, levels=5),
            recent_trades=balanced_trades_around(price, when),
        )
        decision = MasterOrchestrator(loose_config()).process_signal(snapshot, portfolio).decision

        assert decision.action is DecisionAction.REJECT
        assert decision.reasoning[0].category is ReasonCategory.MICROSTRUCTURE
        assert decision.reasoning[0].message.startswith("Microstructure rejection")
        assert decision.signal is not None

    def test_microstructure_filtering_off_ignores_book(self, trending_candles, portfolio):
        price = float(trending_candles['close'].iloc[-1])
        when = last_time(trending_candles)
        snapshot = MarketSnapshot(
            candles=trending_candles,
            current_price=price,
            order_book=book_around(price, 500.0, when, levels=5),
            recent_trades=balanced_trades_around(price, when),
        )
        orchestrator = MasterOrchestrator(loose_config(microstructure_filtering=False))
        decision = orchestrator.process_signal(snapshot, portfolio).decision
        assert decision.action is DecisionAction.ACCEPT
        assert decision.execution is None

    def test_as_of_overrides_candle_time(self, random_candles, portfolio):
        as_of = last_time(random_candles) + timedelta(hours=5)
        snapshot = MarketSnapshot(candles=random_candles, current_price=1.10, as_of=as_of)
        decision = MasterOrchestrator().process_signal(snapshot, portfolio).decision
        assert decision.timestamp == as_of
        assert decision.regime.timestamp == as_of


class TestDeterminism:
    """Identical inputs and seeds give identical decisions"""

    def test_fresh_orchestrators_agree(self, random_snapshot, portfolio):
        first = MasterOrchestrator(EngineConfig(mc_seed=42)).process_signal(random_snapshot, portfolio)
        second = MasterOrchestrator(EngineConfig(mc_seed=42)).process_signal(random_snapshot, portfolio)
        assert first.to_dict() == second.to_dict()

    def test_trending_decisions_agree(self, trending_snapshot, portfolio):
        first = MasterOrchestrator(loose_config()).process_signal(trending_snapshot, portfolio)
        second = MasterOrchestrator(loose_config()).process_signal(trending_snapshot, portfolio)
        assert first.to_dict() == second.to_dict()
        assert first.decision.signal_id == second.decision.signal_id


class TestValidation:
    """Malformed inputs raise typed errors before any state changes"""

    def test_invalid_portfolio(self, random_snapshot):
        orchestrator = MasterOrchestrator()
        broken = PortfolioState(balance=1000.0, equity=1000.0, total_capital=0.0)
        with pytest.raises(InvalidPortfolioStateError):
            orchestrator.process_signal(random_snapshot, broken)
        assert orchestrator.get_decision_history() == []

    def test_non_finite_portfolio(self, random_snapshot):
        broken = PortfolioState(balance=float('nan'), equity=1000.0, total_capital=1000.0)
        with pytest.raises(InvalidPortfolioStateError):
            MasterOrchestrator().process_signal(random_snapshot, broken)

    def test_non_positive_price(self, random_candles, portfolio):
        with pytest.raises(InvalidMarketDataError):
            MasterOrchestrator().process_signal(MarketSnapshot(candles=random_candles, current_price=0.0), portfolio)

    def test_negative_candle_price(self, portfolio):
        candles = build_candles(np.zeros(30))
        candles.loc[5, 'low'] = -1.0
        with pytest.raises(InvalidMarketDataError):
            MasterOrchestrator().process_signal(MarketSnapshot(candles=candles, current_price=1.10), portfolio)

    def test_missing_columns(self, random_candles, portfolio):
        snapshot = MarketSnapshot(candles=random_candles.drop(columns=['volume']), current_price=1.10)
        with pytest.raises(InvalidMarketDataError):
            MasterOrchestrator().process_signal(snapshot, portfolio)


# ========================================
# EXPLAINABILITY
# ========================================

class TestExplainability:
    """Test selection, warnings and sizing helpers"""

    def test_select_best_prefers_accepts(self, trending_snapshot, empty_candles, portfolio):
        orchestrator = MasterOrchestrator(loose_config())
        accepted = orchestrator.process_signal(trending_snapshot, portfolio)
        rejected = orchestrator.process_signal(MarketSnapshot(candles=empty_candles, current_price=1.10), portfolio)

        assert MasterOrchestrator.select_best([rejected, accepted]) is accepted
        assert MasterOrchestrator.select_best([rejected]) is rejected

    def test_shock_warnings(self, trending_snapshot, portfolio, make_regime):
        orchestrator = MasterOrchestrator(loose_config())
        signal = orchestrator.process_signal(trending_snapshot, portfolio).decision.signal
        warnings = MasterOrchestrator.risk_warnings(signal, make_regime('shock_down', volatility=0.9), None)
        assert "Market in shock regime: increased volatility and unpredictability" in warnings
        assert "Extreme volatility detected: consider reducing position size" in warnings

    def test_optimal_position_size_is_capped(self, trending_snapshot, portfolio):
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(trending_snapshot, portfolio).decision
        size = orchestrator.optimal_position_size(decision, portfolio)
        assert 0.0 <= size <= portfolio.total_capital * 0.25


# ========================================
# FEEDBACK & MONITORING
# ========================================

class TestCycleBookkeeping:
    """Test that only the decision a cycle resolves to reaches the adaptive state"""

    def test_microstructure_veto_records_no_trade(self, trending_candles, portfolio):
        price = float(trending_candles['close'].iloc[-1])
        when = last_time(trending_candles)
        snapshot = MarketSnapshot(
            candles=trending_candles,
            current_price=price,
            order_book=book_around(price, 500.0, when, levels=5),
            recent_trades=balanced_trades_around(price, when),
        )
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(snapshot, portfolio).decision

        assert decision.action is DecisionAction.REJECT
        states = orchestrator.adaptive_engine.get_online_learning_states()
        assert all(state.total_trades == 0 for state in states.values())

    def test_accepted_cycle_counts_one_trade(self, trending_snapshot, portfolio):
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(trending_snapshot, portfolio).decision

        assert decision.action is DecisionAction.ACCEPT
        learning = orchestrator.adaptive_engine.get_online_learning_states()['trending_bullish']
        assert learning.total_trades == 1
        # losing candidates in the same cycle are not logged
        assert orchestrator.adaptive_engine.get_rejection_log() == []

    def test_terminal_gate_rejection_is_logged_once(self, trending_snapshot, portfolio):
        portfolio.open_positions = [OpenPosition('EUR/USD', Direction.SELL, 0.1, 1.09)]
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(trending_snapshot, portfolio).decision

        assert decision.action is DecisionAction.REJECT
        assert decision.reasoning[0].category is ReasonCategory.PORTFOLIO
        log = orchestrator.adaptive_engine.get_rejection_log()
        assert len(log) == 1
        assert log[0].reason == decision.reasoning[0].message
        states = orchestrator.adaptive_engine.get_online_learning_states()
        assert all(state.total_trades == 0 for state in states.values())


class TestFeedback:
    """Test counterfactual learning from realised outcomes"""

    def test_unknown_signal(self):
        assert MasterOrchestrator().update_outcome('deadbeefdeadbeef', 0.01) is None

    def test_known_signal(self, trending_snapshot, portfolio):
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(trending_snapshot, portfolio).decision

        analysis = orchestrator.update_outcome(decision.signal_id, 0.012)
        assert analysis.original_decision is DecisionAction.ACCEPT
        assert analysis.counterfactual_outcome == pytest.approx(decision.expected_edge)
        assert analysis.learning_value == pytest.approx(abs(0.012 - decision.expected_edge))
        assert analysis.regime_context == 'trending_bullish'

        learning = orchestrator.adaptive_engine.get_online_learning_states()['trending_bullish']
        assert learning.win_rate == 1.0
        assert orchestrator.prediction.outcomes[decision.signal_id] == 0.012

    def test_outcomes_reach_kpis(self, trending_snapshot, portfolio):
        orchestrator = MasterOrchestrator(loose_config())
        decision = orchestrator.process_signal(trending_snapshot, portfolio).decision
        orchestrator.update_outcome(decision.signal_id, 0.01)
        orchestrator.update_outcome(decision.signal_id, -0.02)

        kpis = orchestrator.get_current_kpis()
        assert kpis.max_drawdown == pytest.approx(0.02)
        insights = orchestrator.get_system_performance()['counterfactual_insights']
        assert len(insights) == 2


class TestMonitoring:
    """Test KPI history, subsystem states and configuration status"""

    def test_kpis_follow_each_cycle(self, random_snapshot, empty_candles, portfolio):
        orchestrator = MasterOrchestrator()
        orchestrator.process_signal(random_snapshot, portfolio)
        orchestrator.process_signal(MarketSnapshot(candles=empty_candles, current_price=1.10), portfolio)

        performance = orchestrator.get_system_performance()
        assert len(performance['historical_kpis']) == 2
        assert len(performance['recent_decisions']) == 2
        assert len(orchestrator.get_decision_history(limit=1)) == 1

    def test_kpi_tracking_can_be_disabled(self, random_snapshot, portfolio):
        orchestrator = MasterOrchestrator(EngineConfig(orchestrator=OrchestratorConfig(realtime_kpi_tracking=False)))
        decision = orchestrator.process_signal(random_snapshot, portfolio).decision
        assert decision.kpis == SystemKPIs()
        assert orchestrator.get_system_performance()['historical_kpis'] == []

    def test_subsystem_states(self, random_snapshot, portfolio):
        orchestrator = MasterOrchestrator()
        orchestrator.process_signal(random_snapshot, portfolio)
        states = orchestrator.get_subsystem_states()
        assert set(states) == {'regime_detector', 'prediction', 'regime_adaptive', 'microstructure'}
        assert 'trending_bullish' in states['regime_adaptive']['thresholds']

    def test_force_recalibration(self, random_snapshot, portfolio):
        orchestrator = MasterOrchestrator()
        orchestrator.process_signal(random_snapshot, portfolio)
        kpis = orchestrator.force_recalibration()
        assert isinstance(kpis, SystemKPIs)
        assert len(orchestrator.get_system_performance()['historical_kpis']) == 2

    def test_configuration_status(self):
        status = MasterOrchestrator().get_configuration_status()
        assert status['config_version'] == "1.0.0"
        assert len(status['config_hash']) == 16
        assert status['recommendations'] == []

        flags = OrchestratorConfig(microstructure_filtering=False, continuous_learning=False,
                                   portfolio_optimization=False)
        status = MasterOrchestrator(EngineConfig(orchestrator=flags)).get_configuration_status()
        assert len(status['recommendations']) == 3
        assert status['flags']['microstructure_filtering'] is False

    def test_config_round_trip_keeps_hash(self):
        config = loose_config(dynamic_barriers=False)
        restored = EngineConfig.from_dict(config.to_dict())
        assert restored.get_config_hash() == config.get_config_hash()
        assert restored.prediction.base.min_agreeing_factors == 1


class TestScenarios:
    """Hand-built candidates run through the per-candidate pipeline"""

    def _candidate(self, entry, when, strength=7.0, confidence=0.7):
        factors = tuple(
            TechnicalFactor(FactorCategory.TREND, f"factor_{i}", Direction.BUY, strength, confidence)
            for i in range(4)
        )
        return CandidateSignal(
            id=candidate_id("EUR/USD", Direction.BUY, when),
            timestamp=when,
            pair="EUR/USD",
            direction=Direction.BUY,
            entry_price=entry,
            confidence=confidence,
            factors=factors,
            raw_strength=strength,
        )

    def test_confluent_trending_buy_is_not_rejected(self, trending_candles, portfolio, make_regime):
        config = EngineConfig()
        config.barriers.regimes['trending_bullish'] = RegimeBarrierConfig(3.75, 1.5, 48, False, True, True)
        orchestrator = MasterOrchestrator(config)

        when = last_time(trending_candles)
        entry = float(trending_candles['close'].iloc[-1])
        regime = make_regime('trending_bullish', timestamp=when)
        snapshot = MarketSnapshot(candles=trending_candles, current_price=entry)

        recommendation = orchestrator.evaluate_candidate(
            self._candidate(entry, when), snapshot, regime, None, portfolio, when
        )
        decision = recommendation.decision
        assert decision.action in (DecisionAction.ACCEPT, DecisionAction.WAIT)
        assert decision.signal.meta.risk_reward == pytest.approx(2.5)
        assert decision.signal.meta.probability_tp_first > 0.55

    def test_below_threshold_is_regime_rejection(self, trending_candles, portfolio, make_regime):
        orchestrator = MasterOrchestrator()
        when = last_time(trending_candles)
        entry = float(trending_candles['close'].iloc[-1])
        regime = make_regime('shock_down', timestamp=when)
        snapshot = MarketSnapshot(candles=trending_candles, current_price=entry)
        orchestrator.adaptive_engine.state.thresholds['shock_down'].threshold = 0.2

        decision = orchestrator.evaluate_candidate(
            self._candidate(entry, when, strength=3.0, confidence=0.4), snapshot, regime, None, portfolio, when
        ).decision
        assert decision.action is DecisionAction.REJECT
        assert decision.reasoning[0].category is ReasonCategory.REGIME_THRESHOLD
        assert decision.edge is not None
        assert decision.barriers is None
