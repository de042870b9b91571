"""
Master Orchestrator

Runs one decision cycle per market snapshot:

    detect regime → analyze microstructure (optional) → generate candidates
    → per candidate: barriers → meta prediction → enhancement
      → regime-adaptive gate → microstructure gate / timing
    → select best → scenarios, warnings, suggestions, KPIs

The per-regime threshold and learning maps live in an injectable
AdaptiveState; everything else the orchestrator owns is a bounded history.
"""

import dataclasses
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional

from edgeflow.adaptive.config import AdaptiveConfig
from edgeflow.adaptive.engine import RegimeAdaptiveEngine
from edgeflow.adaptive.schemas import AdaptiveDecision, TradeProposal
from edgeflow.adaptive.state import AdaptiveState
from edgeflow.barriers.calculator import DynamicBarrierCalculator
from edgeflow.barriers.config import BarrierConfig
from edgeflow.common.random_source import RandomSource, SeededRandomSource
from edgeflow.common.schemas import EPOCH, MarketSnapshot, PortfolioState, Reason, ReasonCategory
from edgeflow.microstructure.analyzer import MicrostructureAnalyzer
from edgeflow.microstructure.schemas import EntryTiming, MicrostructureRegime, MicrostructureState
from edgeflow.orchestrator.config import EngineConfig
from edgeflow.orchestrator.kpis import KPICalculator
from edgeflow.orchestrator.schemas import (
    AlternativeScenario,
    CounterfactualAnalysis,
    DecisionAction,
    ExecutionPlan,
    SystemDecision,
    SystemKPIs,
    TradingRecommendation,
)
from edgeflow.prediction.schemas import CandidateSignal, EnhancedSignal
from edgeflow.prediction.system import TwoLayerPredictionSystem
from edgeflow.regime.detector import RegimeDetector
from edgeflow.regime.schemas import MarketRegime, RegimeType

LOG = logging.getLogger(__name__)

REJECTION_SUGGESTIONS = [
    "Wait for better market conditions",
    "Monitor regime transitions for opportunities",
    "Review signal quality filters",
]


class MasterOrchestrator:
    """
    Decision engine facade.

    A decision cycle holds the orchestrator lock from start to finish, so
    one cycle completes its read-modify-write of the regime state before
    the next may start.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        adaptive_state: Optional[AdaptiveState] = None,
        random_source: Optional[RandomSource] = None
    ):
        self.config = config or EngineConfig()
        flags = self.config.orchestrator
        random_source = random_source or SeededRandomSource(self.config.mc_seed)

        self.regime_detector = RegimeDetector(self.config.regime)
        self.barrier_calculator = DynamicBarrierCalculator(self._barrier_config())
        self.microstructure = MicrostructureAnalyzer(self.config.microstructure)
        self.prediction = TwoLayerPredictionSystem(self.config.prediction, random_source)
        self.adaptive_engine = RegimeAdaptiveEngine(self._adaptive_config(), adaptive_state, random_source)
        self.kpi_calculator = KPICalculator()

        self._decisions: deque = deque(maxlen=flags.decision_history_size)
        self._counterfactuals: deque = deque(maxlen=flags.counterfactual_history_size)
        self._kpi_history: deque = deque(maxlen=flags.kpi_history_size)
        self._lock = threading.RLock()

        LOG.info(f"Master orchestrator initialized (config hash {self.config.get_config_hash()})")

    def _adaptive_config(self) -> AdaptiveConfig:
        """Orchestrator feature flags take precedence over the engine's own"""
        flags = self.config.orchestrator
        return dataclasses.replace(
            self.config.adaptive,
            online_learning_enabled=flags.continuous_learning,
            continuous_recalibration=flags.continuous_learning,
            adaptive_thresholds=flags.auto_threshold_adjustment,
            portfolio_optimization=flags.portfolio_optimization,
            rejection_feedback=flags.rejection_feedback,
        )

    def _barrier_config(self) -> BarrierConfig:
        """Static ATR barriers when dynamic barriers are switched off"""
        if self.config.orchestrator.dynamic_barriers:
            return self.config.barriers
        static = {
            name: dataclasses.replace(
                regime_cfg, dynamic_adjustment=False, path_dependent_exits=False, gamma_scaling=False
            )
            for name, regime_cfg in self.config.barriers.regimes.items()
        }
        return dataclasses.replace(self.config.barriers, regimes=static)

    # ========================================
    # DECISION CYCLE
    # ========================================

    def process_signal(
        self,
        snapshot: MarketSnapshot,
        portfolio: PortfolioState,
        pair: str = "EUR/USD"
    ) -> TradingRecommendation:
        """
        Run one full decision cycle.

        Args:
            snapshot: Candles, price, optional order book / trades / news
            portfolio: Portfolio snapshot used for sizing and gating
            pair: Trading pair identifier

        Returns:
            TradingRecommendation; rejections are normal results

        Raises:
            InvalidMarketDataError: Malformed market snapshot
            InvalidPortfolioStateError: Malformed portfolio snapshot
        """
        snapshot.validate()
        portfolio.validate()
        now = snapshot.timestamp

        with self._lock:
            regime = self.regime_detector.detect(snapshot.candles, snapshot.volume, snapshot.news, as_of=now)
            micro_state = self._analyze_microstructure(snapshot, now)

            candidates = self.prediction.detect_candidates(
                snapshot.candles,
                regime,
                pair,
                as_of=now,
                feature_weights=self.adaptive_engine.get_feature_weights(regime.type.value),
            )

            if not candidates:
                LOG.debug(f"No candidates for {pair} in {regime.type.value} regime")
                recommendation = self._rejection(
                    Reason(ReasonCategory.INSUFFICIENT_CONFLUENCE, "No candidate signals detected"),
                    regime, micro_state, now,
                )
            else:
                recommendations = [
                    self.evaluate_candidate(candidate, snapshot, regime, micro_state, portfolio, now)
                    for candidate in candidates
                ]
                recommendation = self.select_best(recommendations)

            recommendation = self._finalize(recommendation)

        decision = recommendation.decision
        LOG.info(
            f"{pair} decision: {decision.action.value} "
            f"(confidence {decision.confidence:.2f}, regime {regime.type.value})"
        )
        return recommendation

    def _analyze_microstructure(self, snapshot: MarketSnapshot, now: datetime) -> Optional[MicrostructureState]:
        if not self.config.orchestrator.microstructure_filtering:
            return None
        if snapshot.order_book is None or not snapshot.recent_trades:
            return None
        try:
            return self.microstructure.analyze(
                snapshot.order_book,
                snapshot.recent_trades,
                snapshot.candles,
                snapshot.current_price,
                as_of=now,
            )
        except (ValueError, ArithmeticError, IndexError) as e:
            LOG.warning(f"Microstructure analysis failed, continuing without it: {e}")
            return None

    def evaluate_candidate(
        self,
        candidate: CandidateSignal,
        snapshot: MarketSnapshot,
        regime: MarketRegime,
        micro_state: Optional[MicrostructureState],
        portfolio: PortfolioState,
        now: datetime
    ) -> TradingRecommendation:
        """
        Per-candidate pipeline: barriers, meta prediction, enhancement,
        regime-adaptive gate, then the microstructure gate and entry timing.
        """
        barriers = self.barrier_calculator.calculate(
            candidate.entry_price, candidate.direction, regime, snapshot.candles, as_of=now
        )
        meta = self.prediction.predict(candidate, snapshot.candles, regime, barriers, snapshot.news)
        signal = self.prediction.enhance(candidate, meta)

        proposal = TradeProposal(
            pair=candidate.pair,
            direction=candidate.direction,
            entry_price=candidate.entry_price,
            stop_loss=barriers.stop_loss,
            take_profit=barriers.take_profit,
            probability=meta.probability_tp_first,
            risk_reward=meta.risk_reward,
            confidence=candidate.confidence,
            signal_id=candidate.id,
        )
        gate = self.adaptive_engine.process_signal(
            proposal, regime, portfolio, snapshot.current_price, now, record=False
        )

        if not gate.accepted:
            category = (
                ReasonCategory.REGIME_THRESHOLD
                if gate.edge.net_edge < gate.threshold else ReasonCategory.PORTFOLIO
            )
            return self._rejection(Reason(category, gate.reason), regime, micro_state, now, signal, gate)

        order_size = self._order_size(gate)
        timing = None
        if micro_state is not None:
            verdict = self.microstructure.should_reject_trade(
                micro_state, order_size, meta.expected_outcome.expected_holding_time * 60
            )
            if verdict.reject:
                return self._rejection(
                    Reason(ReasonCategory.MICROSTRUCTURE, f"Microstructure rejection: {verdict.reason}"),
                    regime, micro_state, now, signal, gate,
                )
            timing = self.microstructure.get_optimal_entry_timing(micro_state, candidate.direction)

        reasoning: List[Reason] = []
        if timing is not None and timing.timing is EntryTiming.WAIT:
            action, confidence = DecisionAction.WAIT, 0.8
            reasoning.append(Reason(ReasonCategory.TIMING, f"Microstructure timing: {timing.reason}"))
        elif timing is not None and timing.timing is EntryTiming.POST_SWEEP:
            action, confidence = DecisionAction.WAIT, 0.9
            reasoning.append(Reason(ReasonCategory.TIMING, f"Wait for liquidity sweep: {timing.reason}"))
        else:
            action, confidence = DecisionAction.ACCEPT, signal.final_score
            reasoning.extend([
                Reason(ReasonCategory.ACCEPTANCE, f"Enhanced signal accepted with score: {signal.final_score:.3f}"),
                Reason(ReasonCategory.META_MODEL, f"Meta prediction: {meta.probability_tp_first * 100:.1f}% TP probability"),
                Reason(ReasonCategory.EDGE, f"Expected edge: {gate.edge.net_edge:.4f}"),
            ])

        execution = None
        if micro_state is not None:
            execution = ExecutionPlan(
                timing=timing.timing if action is DecisionAction.WAIT else EntryTiming.IMMEDIATE,
                order_size=order_size,
                slippage=micro_state.execution.expected_slippage,
                impact=micro_state.execution.market_impact,
            )

        decision = SystemDecision(
            action=action,
            confidence=float(confidence),
            expected_edge=gate.edge.expected_edge,
            risk_adjusted_edge=gate.edge.net_edge,
            reasoning=reasoning,
            regime=regime,
            microstructure=micro_state or MicrostructureState.default(now),
            kpis=SystemKPIs(),
            timestamp=now,
            signal=signal,
            barriers=barriers,
            execution=execution,
            edge=gate.edge,
        )
        return TradingRecommendation(
            decision=decision,
            alternative_scenarios=self.alternative_scenarios(signal, micro_state),
            risk_warnings=self.risk_warnings(signal, regime, micro_state),
            optimization_suggestions=self.optimization_suggestions(decision, portfolio),
            gate=gate,
        )

    def _order_size(self, gate: AdaptiveDecision) -> float:
        if gate.adapted_signal is not None:
            return gate.adapted_signal.position_units
        return self.config.orchestrator.default_order_units

    def _rejection(
        self,
        reason: Reason,
        regime: MarketRegime,
        micro_state: Optional[MicrostructureState],
        now: datetime,
        signal: Optional[EnhancedSignal] = None,
        gate: Optional[AdaptiveDecision] = None
    ) -> TradingRecommendation:
        """
        Rejected candidates keep their signal (not their barriers) so a
        later outcome can still be matched for counterfactual learning.
        """
        decision = SystemDecision(
            action=DecisionAction.REJECT,
            confidence=0.9,
            expected_edge=gate.edge.expected_edge if gate else 0.0,
            risk_adjusted_edge=gate.edge.net_edge if gate else 0.0,
            reasoning=[reason],
            regime=regime,
            microstructure=micro_state or MicrostructureState.default(now),
            kpis=SystemKPIs(),
            timestamp=now,
            signal=signal,
            edge=gate.edge if gate else None,
        )
        return TradingRecommendation(
            decision=decision,
            risk_warnings=[f"Signal rejected: {reason.message}"],
            optimization_suggestions=list(REJECTION_SUGGESTIONS),
            gate=gate,
        )

    @staticmethod
    def select_best(recommendations: List[TradingRecommendation]) -> TradingRecommendation:
        """
        Best accepted recommendation by risk-adjusted edge × confidence,
        else the most confident rejection or wait. Ties keep the earliest.
        """
        accepted = [r for r in recommendations if r.decision.action is DecisionAction.ACCEPT]
        if accepted:
            return max(accepted, key=lambda r: r.decision.risk_adjusted_edge * r.decision.confidence)
        return max(recommendations, key=lambda r: r.decision.confidence)

    def _finalize(self, recommendation: TradingRecommendation) -> TradingRecommendation:
        """
        Record the terminal decision: commit its gate verdict to the
        adaptive engine, then attach post-cycle KPIs. Candidates that lost
        in select_best leave no trace in the engine state.
        """
        decision = recommendation.decision
        if recommendation.gate is not None:
            self.adaptive_engine.commit(
                recommendation.gate, decision.timestamp, traded=decision.action is DecisionAction.ACCEPT
            )

        if self.config.orchestrator.realtime_kpi_tracking:
            kpis = self._compute_kpis(extra=decision)
            self._kpi_history.append(kpis)
        else:
            kpis = self._kpi_history[-1] if self._kpi_history else SystemKPIs()

        decision = dataclasses.replace(decision, kpis=kpis)
        self._decisions.append(decision)
        return dataclasses.replace(recommendation, decision=decision)

    # ========================================
    # EXPLAINABILITY
    # ========================================

    def alternative_scenarios(
        self,
        signal: EnhancedSignal,
        micro_state: Optional[MicrostructureState]
    ) -> List[AlternativeScenario]:
        p = signal.meta.probability_tp_first
        expected = signal.meta.expected_outcome.expected_return

        scenarios = [
            AlternativeScenario(
                "Optimistic: Signal performs as expected", p, expected * 1.2,
                "Take full position with standard risk management",
            ),
            AlternativeScenario(
                "Pessimistic: Signal fails quickly", 1 - p, expected * -0.5,
                "Reduce position size and tighten stops",
            ),
            AlternativeScenario(
                "Regime shift during trade", self.config.orchestrator.regime_shift_probability, expected * -0.2,
                "Monitor regime indicators closely",
            ),
        ]
        if micro_state is not None:
            scenarios.append(AlternativeScenario(
                "Liquidity conditions worsen", micro_state.liquidity.toxic_liquidity_score, expected * -0.3,
                "Exit if execution quality drops below 50",
            ))
        return scenarios

    @staticmethod
    def risk_warnings(
        signal: EnhancedSignal,
        regime: MarketRegime,
        micro_state: Optional[MicrostructureState]
    ) -> List[str]:
        warnings = []

        if regime.type.is_shock:
            warnings.append("Market in shock regime: increased volatility and unpredictability")
        if regime.type is RegimeType.LIQUIDITY_CRISIS:
            warnings.append("Liquidity crisis detected: execution risks elevated")
        if regime.volatility > 0.8:
            warnings.append("Extreme volatility detected: consider reducing position size")

        if signal.candidate.confidence < 0.6:
            warnings.append("Low signal confidence: monitor closely for early exit")
        if signal.meta.combined_risk > 0.7:
            warnings.append("High combined risk factors: consider waiting for better setup")

        if micro_state is not None:
            if micro_state.regime is MicrostructureRegime.TOXIC:
                warnings.append("Toxic liquidity environment: avoid trading")
            if micro_state.execution.liquidity_sweep_risk > 0.7:
                warnings.append("High liquidity sweep risk: price may gap through stops")
            if micro_state.execution.execution_score < 50:
                warnings.append("Poor execution conditions: expect higher costs")

        if signal.meta.event_risk > 0.6:
            warnings.append("High impact news events expected: increased volatility risk")

        return warnings

    def optimization_suggestions(self, decision: SystemDecision, portfolio: PortfolioState) -> List[str]:
        cfg = self.config.orchestrator
        suggestions = []

        if decision.signal is not None:
            suggestions.append(f"Optimal position size: {self.optimal_position_size(decision, portfolio):.0f} units")

        if decision.execution is not None and decision.execution.timing is not EntryTiming.IMMEDIATE:
            suggestions.append("Wait for optimal execution timing to minimize costs")

        if decision.barriers is not None:
            suggestions.append("Consider gamma scaling for partial profit taking")
            if decision.regime.volatility > 0.6:
                suggestions.append("Widen barriers in high volatility environment")

        if portfolio.utilization > cfg.high_utilization:
            suggestions.append("High portfolio utilization: consider reducing position sizes")

        if decision.regime.type.is_trending:
            suggestions.append("Trending regime: consider extending profit targets")
        elif decision.regime.type.is_ranging:
            suggestions.append("Ranging regime: focus on mean reversion strategies")

        return suggestions

    def optimal_position_size(self, decision: SystemDecision, portfolio: PortfolioState) -> float:
        """Kelly fraction of net edge capped at 25%, shrunk by liquidity toxicity"""
        cfg = self.config.orchestrator
        kelly = min(cfg.kelly_cap, decision.risk_adjusted_edge / cfg.kelly_edge_scale)
        toxicity = decision.microstructure.liquidity.toxic_liquidity_score
        return float(max(0.0, portfolio.total_capital * kelly * (1 - toxicity * 0.5)))

    # ========================================
    # FEEDBACK
    # ========================================

    def update_outcome(self, signal_id: str, actual_outcome: float) -> Optional[CounterfactualAnalysis]:
        """
        Feed back the realised return of a past signal.

        Args:
            signal_id: Candidate id carried by the decision
            actual_outcome: Realised return

        Returns:
            CounterfactualAnalysis, or None when the signal is unknown
        """
        with self._lock:
            decision = next((d for d in reversed(self._decisions) if d.signal_id == signal_id), None)
            if decision is None:
                LOG.debug(f"Outcome for unknown signal {signal_id} ignored")
                return None

            actual = float(actual_outcome)
            original = DecisionAction.ACCEPT if decision.action is DecisionAction.ACCEPT else DecisionAction.REJECT
            regime_key = decision.regime.type.value
            analysis = CounterfactualAnalysis(
                signal_id=signal_id,
                original_decision=original,
                actual_outcome=actual,
                counterfactual_outcome=decision.expected_edge,
                learning_value=abs(actual - decision.expected_edge),
                regime_context=regime_key,
            )
            self._counterfactuals.append(analysis)

            self.prediction.record_outcome(signal_id, actual)
            if original is DecisionAction.ACCEPT:
                self.adaptive_engine.record_trade_outcome(regime_key, actual, now=decision.timestamp)

            keys = self.config.prediction.base.category_weight_keys
            families = {keys.get(f.category.value, f.category.value) for f in decision.signal.candidate.factors}
            for family in sorted(families):
                self.regime_detector.update_factor_performance(family, regime_key, actual > 0, actual)

        LOG.info(f"Outcome recorded for {signal_id}: {actual:+.4f} ({original.value}, {regime_key})")
        return analysis

    # ========================================
    # MONITORING
    # ========================================

    def _compute_kpis(self, extra: Optional[SystemDecision] = None) -> SystemKPIs:
        cfg = self.config.orchestrator
        decisions = list(self._decisions)
        if extra is not None:
            decisions.append(extra)
        return self.kpi_calculator.compute(
            decisions[-cfg.kpi_window:],
            list(self._counterfactuals)[-cfg.counterfactual_window:],
            self.adaptive_engine.get_adaptive_thresholds().values(),
        )

    def get_current_kpis(self) -> SystemKPIs:
        with self._lock:
            return self._compute_kpis()

    def get_decision_history(self, limit: Optional[int] = None) -> List[SystemDecision]:
        with self._lock:
            history = list(self._decisions)
        return history[-limit:] if limit else history

    def get_system_performance(self) -> Dict:
        with self._lock:
            return {
                'current_kpis': self._compute_kpis().to_dict(),
                'historical_kpis': [k.to_dict() for k in self._kpi_history],
                'recent_decisions': [d.to_dict() for d in list(self._decisions)[-50:]],
                'counterfactual_insights': [c.to_dict() for c in list(self._counterfactuals)[-50:]],
            }

    def get_subsystem_states(self) -> Dict:
        """Read-only snapshot of every layer's bookkeeping"""
        with self._lock:
            return {
                'regime_detector': self.regime_detector.get_regime_stats(),
                'prediction': {
                    'performance': self.prediction.get_performance_metrics().to_dict(),
                    'signals': len(self.prediction.get_signal_history()),
                },
                'regime_adaptive': {
                    'thresholds': {k: v.to_dict() for k, v in self.adaptive_engine.get_adaptive_thresholds().items()},
                    'learning': {k: v.to_dict() for k, v in self.adaptive_engine.get_online_learning_states().items()},
                    'rejections': len(self.adaptive_engine.get_rejection_log()),
                    'analysis_passes': self.adaptive_engine.analysis_passes,
                },
                'microstructure': {
                    'sweeps': [s.to_dict() for s in self.microstructure.get_liquidity_sweeps()],
                    'observations': len(self.microstructure.get_historical_metrics()['execution']),
                },
            }

    def force_recalibration(self) -> SystemKPIs:
        """Re-run every regime's threshold update and snapshot KPIs"""
        with self._lock:
            now = self._decisions[-1].timestamp if self._decisions else EPOCH
            updated = 0
            for regime in list(self.adaptive_engine.get_adaptive_thresholds()):
                if self.adaptive_engine.force_threshold_update(regime, now) is not None:
                    updated += 1
            kpis = self._compute_kpis()
            self._kpi_history.append(kpis)

        LOG.info(f"Forced recalibration: {updated} regime thresholds updated")
        return kpis

    def get_configuration_status(self) -> Dict:
        flags = self.config.orchestrator
        recommendations = []
        if not flags.microstructure_filtering:
            recommendations.append("Enable microstructure filtering for better execution")
        if not flags.continuous_learning:
            recommendations.append("Enable continuous learning for adaptive performance")
        if not flags.portfolio_optimization:
            recommendations.append("Enable portfolio optimization for better risk management")

        return {
            'config_version': self.config.config_version,
            'config_hash': self.config.get_config_hash(),
            'flags': dataclasses.asdict(flags),
            'recommendations': recommendations,
        }
