"""
System KPI calculation from the rolling decision and counterfactual histories.
"""

import math
from collections import defaultdict
from typing import Dict, Iterable, List

import numpy as np
from scipy import stats

from edgeflow.adaptive.schemas import AdaptiveThreshold
from edgeflow.orchestrator.schemas import (
    CounterfactualAnalysis,
    DecisionAction,
    SystemDecision,
    SystemKPIs,
)


class KPICalculator:
    """Stateless; every KPI is recomputed from the histories it is given"""

    def compute(
        self,
        decisions: List[SystemDecision],
        counterfactuals: List[CounterfactualAnalysis],
        thresholds: Iterable[AdaptiveThreshold]
    ) -> SystemKPIs:
        edge_decay = self.edge_decay(decisions)
        holding = self.average_holding_time(decisions)
        sharpe, drawdown, calmar = self.portfolio_metrics(counterfactuals)

        return SystemKPIs(
            edge_decay=edge_decay,
            signal_half_life=self.signal_half_life(edge_decay, holding),
            cost_absorption_ratio=self.cost_absorption_ratio(decisions),
            regime_performance_delta=self.regime_performance_delta(decisions),
            hit_rate_by_regime=self.hit_rate_by_regime(decisions),
            average_holding_time=holding,
            realized_edge_vs_expected=self.realized_vs_expected(counterfactuals),
            adaptive_threshold_performance=self.threshold_performance(thresholds),
            rejection_success_rate=self.rejection_success_rate(counterfactuals),
            portfolio_sharpe=sharpe,
            max_drawdown=drawdown,
            calmar_ratio=calmar,
        )

    @staticmethod
    def edge_decay(decisions: List[SystemDecision]) -> float:
        """
        Fractional loss of risk-adjusted edge per hour across accepted
        decisions, from a linear fit of edge against decision time.
        """
        accepted = [d for d in decisions if d.action is DecisionAction.ACCEPT]
        if len(accepted) < 2:
            return 0.0
        start = accepted[0].timestamp
        hours = np.array([(d.timestamp - start).total_seconds() / 3600 for d in accepted])
        edges = np.array([d.risk_adjusted_edge for d in accepted])
        scale = float(np.mean(np.abs(edges)))
        if np.ptp(hours) == 0 or scale == 0:
            return 0.0
        slope = stats.linregress(hours, edges).slope
        return float(max(0.0, -slope / scale))

    @staticmethod
    def signal_half_life(edge_decay: float, average_holding_time: float) -> float:
        """Hours until edge halves at the current decay rate"""
        if edge_decay > 0:
            return float(math.log(2) / edge_decay)
        return average_holding_time

    @staticmethod
    def cost_absorption_ratio(decisions: List[SystemDecision]) -> float:
        total_costs = sum(d.execution.slippage + d.execution.impact for d in decisions if d.execution)
        total_edge = sum(d.expected_edge for d in decisions)
        return float(1 - total_costs / total_edge) if total_edge > 0 else 0.0

    @staticmethod
    def regime_performance_delta(decisions: List[SystemDecision]) -> float:
        by_regime: Dict[str, List[float]] = defaultdict(list)
        for d in decisions:
            by_regime[d.regime.type.value].append(d.risk_adjusted_edge)
        averages = [float(np.mean(v)) for v in by_regime.values()]
        if len(averages) < 2:
            return 0.0
        return max(averages) - min(averages)

    @staticmethod
    def hit_rate_by_regime(decisions: List[SystemDecision]) -> Dict[str, float]:
        hits: Dict[str, int] = defaultdict(int)
        totals: Dict[str, int] = defaultdict(int)
        for d in decisions:
            regime = d.regime.type.value
            totals[regime] += 1
            if d.action is DecisionAction.ACCEPT and d.risk_adjusted_edge > 0:
                hits[regime] += 1
        return {regime: hits[regime] / total for regime, total in totals.items()}

    @staticmethod
    def average_holding_time(decisions: List[SystemDecision]) -> float:
        times = [d.signal.meta.expected_outcome.expected_holding_time for d in decisions if d.signal]
        return float(np.mean(times)) if times else 0.0

    @staticmethod
    def realized_vs_expected(counterfactuals: List[CounterfactualAnalysis]) -> float:
        if not counterfactuals:
            return 1.0
        ratios = [
            cf.actual_outcome / cf.counterfactual_outcome
            if cf.actual_outcome != 0 and cf.counterfactual_outcome != 0 else 1.0
            for cf in counterfactuals
        ]
        return float(np.mean(ratios))

    @staticmethod
    def threshold_performance(thresholds: Iterable[AdaptiveThreshold]) -> float:
        accuracies = [t.performance.accuracy for t in thresholds]
        return float(np.mean(accuracies)) if accuracies else 0.5

    @staticmethod
    def rejection_success_rate(counterfactuals: List[CounterfactualAnalysis]) -> float:
        rejections = [cf for cf in counterfactuals if cf.original_decision is DecisionAction.REJECT]
        if not rejections:
            return 0.5
        return sum(1 for cf in rejections if cf.actual_outcome < cf.counterfactual_outcome) / len(rejections)

    @staticmethod
    def portfolio_metrics(counterfactuals: List[CounterfactualAnalysis]):
        """Sharpe, max drawdown and Calmar over realised returns of accepted trades"""
        returns = np.array([
            cf.actual_outcome for cf in counterfactuals
            if cf.original_decision is DecisionAction.ACCEPT
        ], dtype=float)
        if len(returns) == 0:
            return 0.0, 0.0, 0.0

        std = float(returns.std())
        sharpe = float(returns.mean() / std) if std > 0 else 0.0
        cumulative = np.cumsum(returns)
        drawdown = float((np.maximum.accumulate(np.maximum(cumulative, 0)) - cumulative).max())
        calmar = float(cumulative[-1] / drawdown) if drawdown > 0 else 0.0
        return sharpe, drawdown, calmar
