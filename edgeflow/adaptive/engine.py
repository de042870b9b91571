"""
Regime-Adaptive Engine

Gates a trade proposal on regime-conditioned net edge:

    accept  iff  net_edge >= threshold[regime]  AND  portfolio gate passes

and keeps learning from what it sees:
- thresholds self-tune from realised performance (>= 10 trades, every 6h)
- every 50th rejection triggers a pattern pass over the last 100; a regime
  with more than 20 of them gets its threshold relaxed by 5%
- factor-family weights are recalibrated every 20 accepted trades or 7 days

All mutable state lives in an AdaptiveState that the caller may inject.
"""

import copy
import logging
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import numpy as np

from edgeflow.adaptive.config import AdaptiveConfig
from edgeflow.adaptive.edge import EdgeCalculator
from edgeflow.adaptive.portfolio import PortfolioGate
from edgeflow.adaptive.schemas import (
    AdaptedSignal,
    AdaptiveDecision,
    AdaptiveThreshold,
    EdgeMetrics,
    GateDecision,
    OnlineLearningState,
    PortfolioVerdict,
    RejectionEntry,
    TradeProposal,
)
from edgeflow.adaptive.state import AdaptiveState
from edgeflow.common.random_source import RandomSource
from edgeflow.common.schemas import EPOCH, PortfolioState
from edgeflow.regime.schemas import MarketRegime

LOG = logging.getLogger(__name__)


class RegimeAdaptiveEngine:
    """Edge calculation, adaptive threshold gate, rejection feedback and online learning"""

    def __init__(
        self,
        config: Optional[AdaptiveConfig] = None,
        state: Optional[AdaptiveState] = None,
        random_source: Optional[RandomSource] = None
    ):
        self.config = config or AdaptiveConfig()
        self.state = state or AdaptiveState.initial(self.config)
        self.edge_calculator = EdgeCalculator(self.config.edge, self.config.costs, random_source)
        self.portfolio_gate = PortfolioGate(self.config.portfolio)

        LOG.info(f"Regime-adaptive engine initialized with {len(self.state.thresholds)} regime thresholds")

    # ========================================
    # SIGNAL PROCESSING
    # ========================================

    def process_signal(
        self,
        proposal: TradeProposal,
        regime: MarketRegime,
        portfolio: PortfolioState,
        current_price: float,
        now: datetime,
        record: bool = True
    ) -> AdaptiveDecision:
        """
        Run the regime-adaptive gate for one proposal.

        Args:
            proposal: Candidate trade with probability and risk-reward
            regime: Current regime
            portfolio: Validated portfolio snapshot
            current_price: Latest price
            now: Decision time
            record: Commit the verdict immediately. Callers that resolve
                several proposals per cycle pass False and call commit()
                for the one they act on.

        Returns:
            AdaptiveDecision; accepted ones carry the regime-adapted signal
        """
        regime_key = regime.type.value
        with self.state.lock:
            edge = self.edge_calculator.calculate(proposal, current_price, regime, portfolio, now)
            threshold = self._current_threshold(regime_key, now)

            if self.config.portfolio_optimization:
                verdict = self.portfolio_gate.evaluate(proposal, portfolio, edge)
            else:
                verdict = PortfolioVerdict(True, "Portfolio optimization disabled")

            above = edge.net_edge >= threshold.threshold
            if above and verdict.accept:
                decision = GateDecision.ACCEPT
                reason = f"Regime-adapted acceptance: Edge {edge.net_edge:.3f} >= {threshold.threshold:.3f}"
            elif not above:
                decision = GateDecision.REJECT
                reason = f"Below adaptive threshold: {edge.net_edge:.3f} < {threshold.threshold:.3f}"
            else:
                decision = GateDecision.REJECT
                reason = f"Portfolio optimization rejected: {verdict.reason}"

            adapted = None
            if decision is GateDecision.ACCEPT:
                adapted = self.adapt_signal_to_regime(proposal, regime, edge)

            LOG.debug(f"{proposal.signal_id or proposal.pair} {decision.value}: {reason}")
            gate = AdaptiveDecision(
                decision=decision,
                edge=edge,
                threshold=threshold.threshold,
                portfolio=verdict,
                reason=reason,
                regime=regime_key,
                adapted_signal=adapted,
                proposal=proposal,
            )
            if record:
                self.commit(gate, now, traded=gate.accepted)
            return gate

    def commit(self, gate: AdaptiveDecision, now: datetime, traded: bool):
        """
        Record a resolved gate verdict: gate rejections go to the rejection
        log, and only a proposal that was actually traded counts towards
        the regime's trade count.
        """
        with self.state.lock:
            if not gate.accepted:
                self.log_rejection(gate.regime, gate.proposal, gate.reason, now)
            if self.config.online_learning_enabled:
                outcome = GateDecision.ACCEPT if traded else GateDecision.REJECT
                self._update_online_learning(gate.regime, outcome, now)

    def adapt_signal_to_regime(self, proposal: TradeProposal, regime: MarketRegime, edge: EdgeMetrics) -> AdaptedSignal:
        """Scale size by the regime risk multiplier and barrier distances by volatility"""
        risk_multiplier = regime.risk_multiplier if self.config.dynamic_risk_management else 1.0
        adjustment = 1 + (regime.volatility - 0.5) * self.config.volatility_barrier_scale
        entry = proposal.entry_price
        sign = proposal.direction.sign or 1

        return AdaptedSignal(
            direction=proposal.direction,
            entry_price=entry,
            stop_loss=entry - sign * abs(entry - proposal.stop_loss) * adjustment,
            take_profit=entry + sign * abs(proposal.take_profit - entry) * adjustment,
            position_units=self.config.base_position_units * risk_multiplier,
            volatility_adjustment=adjustment,
            regime=regime.type.value,
            risk_multiplier=risk_multiplier,
            edge=edge.net_edge,
            execution_quality=edge.execution_quality_factor,
        )

    # ========================================
    # ADAPTIVE THRESHOLDS
    # ========================================

    def _current_threshold(self, regime: str, now: datetime) -> AdaptiveThreshold:
        threshold = self.state.threshold_for(regime, self.config)
        if threshold.last_update is None:
            threshold.last_update = now
        elif self.config.adaptive_thresholds and self._update_due(threshold, now):
            self._update_threshold(threshold, now)
        return threshold

    def _update_due(self, threshold: AdaptiveThreshold, now: datetime) -> bool:
        interval = timedelta(hours=self.config.thresholds.update_interval_hours)
        return now - threshold.last_update >= interval

    def _update_threshold(self, threshold: AdaptiveThreshold, now: datetime) -> bool:
        cfg = self.config.thresholds
        learning = self.state.learning_states.get(threshold.regime)
        if learning is None or learning.total_trades < cfg.min_trades_for_update:
            return False

        gradient = self.performance_gradient(learning)
        adjustment = math.tanh(gradient) * cfg.max_adjustment
        updated = threshold.threshold * cfg.momentum + (threshold.threshold + adjustment) * cfg.learning_rate

        low, high = cfg.bounds
        threshold.threshold = min(high, max(low, updated))
        threshold.confidence = min(1.0, threshold.confidence + cfg.confidence_step)
        threshold.last_update = now

        LOG.info(f"Updated {threshold.regime} threshold: {threshold.threshold:.4f} (gradient: {gradient:.4f})")
        return True

    def performance_gradient(self, learning: OnlineLearningState) -> float:
        """Weighted Sharpe-like term, win-rate deviation and drawdown penalty"""
        cfg = self.config.thresholds
        sharpe = learning.avg_return / max(cfg.min_volatility, learning.volatility) - 1.0
        win_rate = learning.win_rate - cfg.target_win_rate
        drawdown = -cfg.drawdown_penalty if learning.total_trades > cfg.drawdown_penalty_trades else 0.0
        return sharpe * cfg.sharpe_weight + win_rate * cfg.win_rate_weight + drawdown * cfg.drawdown_weight

    def force_threshold_update(self, regime: str, now: Optional[datetime] = None) -> Optional[float]:
        """Apply a gradient step now, regardless of the update interval"""
        with self.state.lock:
            threshold = self.state.thresholds.get(regime)
            if threshold is None:
                return None
            self._update_threshold(threshold, now or threshold.last_update or EPOCH)
            return threshold.threshold

    # ========================================
    # REJECTION FEEDBACK LOOP
    # ========================================

    def log_rejection(self, regime: str, proposal: TradeProposal, reason: str, now: datetime):
        """Append to the capped rejection log; every Nth append runs one pattern pass"""
        state = self.state
        with state.lock:
            state.rejection_log.append(RejectionEntry(
                timestamp=now,
                reason=reason,
                regime=regime,
                signal=proposal.to_dict(),
            ))
            state.rejection_appends += 1
            if (self.config.rejection_feedback
                    and state.rejection_appends % self.config.rejection.analysis_interval == 0):
                self.analyze_rejection_patterns()

    def analyze_rejection_patterns(self) -> Dict[str, int]:
        cfg = self.config.rejection
        state = self.state
        with state.lock:
            state.analysis_passes += 1
            recent = list(state.rejection_log)[-cfg.analysis_window:]
            by_regime = Counter(entry.regime for entry in recent)
            by_reason = Counter(entry.reason.split(':')[0] for entry in recent)

            LOG.info(f"Rejection pattern analysis: {dict(by_regime)}, top reasons {by_reason.most_common(5)}")

            low, high = self.config.thresholds.bounds
            for regime, count in by_regime.items():
                if count <= cfg.over_rejection_count:
                    continue
                threshold = state.thresholds.get(regime)
                if threshold is not None:
                    threshold.threshold = min(high, max(low, threshold.threshold * cfg.relaxation_factor))
                    LOG.info(f"Auto-adjusted {regime} threshold to {threshold.threshold:.4f} due to over-rejection")
            return dict(by_regime)

    # ========================================
    # ONLINE LEARNING
    # ========================================

    def _update_online_learning(self, regime: str, decision: GateDecision, now: datetime):
        cfg = self.config.learning
        learning = self.state.learning_state_for(regime, self.config)
        accepted = decision is GateDecision.ACCEPT
        if accepted:
            learning.total_trades += 1

        if learning.last_calibration is None:
            learning.last_calibration = now

        trade_mark = accepted and learning.total_trades % cfg.recalibration_trades == 0
        stale = now - learning.last_calibration >= timedelta(days=cfg.recalibration_days)
        if self.config.continuous_recalibration and (trade_mark or stale):
            self.recalibrate(learning, now)

    def recalibrate(self, learning: OnlineLearningState, now: datetime):
        """Decay feature weights toward a clamped, nudged calibration"""
        cfg = self.config.learning
        low, high = cfg.weight_bounds
        calibrated = {k: min(high, max(low, w * cfg.calibration_nudge)) for k, w in learning.feature_weights.items()}
        for key, weight in calibrated.items():
            learning.feature_weights[key] = learning.feature_weights.get(key, 1.0) * cfg.weight_decay + weight * (1 - cfg.weight_decay)
        learning.last_calibration = now
        learning.calibrations += 1
        LOG.info(f"Recalibrated {learning.regime} model: {len(calibrated)} features updated")

    def record_trade_outcome(self, regime: str, realized_return: float, now: Optional[datetime] = None):
        """
        Feed a realised trade return into the regime's learning state and
        threshold performance.
        """
        with self.state.lock:
            learning = self.state.learning_state_for(regime, self.config)
            returns = self.state.realized_returns[regime]
            returns.append(float(realized_return))

            values = np.array(returns, dtype=float)
            learning.win_rate = float(np.mean(values > 0))
            learning.avg_return = float(values.mean())
            if len(values) >= 2:
                learning.volatility = float(values.std())

            cumulative = np.cumsum(values)
            drawdown = np.maximum.accumulate(np.maximum(cumulative, 0)) - cumulative

            threshold = self.state.threshold_for(regime, self.config)
            threshold.performance.accuracy = learning.win_rate
            threshold.performance.profitability = learning.avg_return
            threshold.performance.sharpe = learning.avg_return / max(self.config.thresholds.min_volatility, learning.volatility)
            threshold.performance.drawdown = float(drawdown.max())

            if now is not None and threshold.last_update is None:
                threshold.last_update = now

    # ========================================
    # PUBLIC GETTERS
    # ========================================

    def get_threshold(self, regime: str) -> float:
        with self.state.lock:
            return self.state.threshold_for(regime, self.config).threshold

    def get_feature_weights(self, regime: str) -> Dict[str, float]:
        with self.state.lock:
            return dict(self.state.learning_state_for(regime, self.config).feature_weights)

    def get_adaptive_thresholds(self) -> Dict[str, AdaptiveThreshold]:
        with self.state.lock:
            return copy.deepcopy(self.state.thresholds)

    def get_online_learning_states(self) -> Dict[str, OnlineLearningState]:
        with self.state.lock:
            return copy.deepcopy(self.state.learning_states)

    def get_rejection_log(self) -> List[RejectionEntry]:
        with self.state.lock:
            return list(self.state.rejection_log)

    @property
    def analysis_passes(self) -> int:
        return self.state.analysis_passes
