"""
Enhanced Edge Calculation

Formula:
    base = p·R - (1-p)·L
    net  = (base - spread - slippage - impact) · EQF - OCF

Where:
- EQF = execution quality factor (regime, volatility, depth, session), [0.3, 1.5]
- OCF = opportunity cost factor (utilisation, crisis, holding time), [0, 0.01]

The confidence interval resamples p, R and costs from an injected random
source, so identical inputs always give the same interval.
"""

from datetime import datetime
from typing import Optional, Tuple

import numpy as np

from edgeflow.adaptive.config import CostModelConfig, EdgeConfig
from edgeflow.adaptive.schemas import EdgeMetrics, TradeProposal
from edgeflow.common.random_source import RandomSource, SeededRandomSource
from edgeflow.common.schemas import PortfolioState
from edgeflow.regime.schemas import MarketRegime, RegimeType


def _clip(value: float, low: float, high: float) -> float:
    return float(min(high, max(low, value)))


class EdgeCalculator:
    """Net edge of a proposal under the current regime"""

    def __init__(
        self,
        edge_config: Optional[EdgeConfig] = None,
        cost_config: Optional[CostModelConfig] = None,
        random_source: Optional[RandomSource] = None
    ):
        self.config = edge_config or EdgeConfig()
        self.costs = cost_config or CostModelConfig()
        self.random_source = random_source or SeededRandomSource()

    def calculate(
        self,
        proposal: TradeProposal,
        current_price: float,
        regime: MarketRegime,
        portfolio: PortfolioState,
        now: datetime
    ) -> EdgeMetrics:
        p = proposal.probability
        R = proposal.risk_reward
        L = self.config.loss_ratio

        spread = self.spread_cost(current_price, regime, now)
        slippage = self.slippage_cost(proposal.entry_price, regime)
        impact = self.market_impact_cost(proposal.position_size, regime)
        eqf = self.execution_quality_factor(regime, now)
        ocf = self.opportunity_cost_factor(portfolio, regime)

        base_edge = p * R - (1 - p) * L
        total_costs = spread + slippage + impact
        net_edge = (base_edge - total_costs) * eqf - ocf

        return EdgeMetrics(
            expected_edge=float(base_edge),
            execution_quality_factor=eqf,
            opportunity_cost_factor=ocf,
            spread_cost=spread,
            slippage_cost=slippage,
            market_impact_cost=impact,
            net_edge=float(net_edge),
            confidence_interval=self.confidence_interval(p, R, L, total_costs, eqf, ocf),
        )

    # ========================================
    # COSTS
    # ========================================

    def spread_cost(self, current_price: float, regime: MarketRegime, now: datetime) -> float:
        cfg = self.costs
        spread = cfg.base_spread
        if regime.type.is_crisis:
            spread *= cfg.stress_spread_multiplier
        elif regime.type.is_ranging:
            spread *= cfg.ranging_spread_multiplier

        if now.hour >= 22 or now.hour <= 6:
            spread *= cfg.asian_spread_multiplier

        return float(spread / current_price)

    def slippage_cost(self, entry_price: float, regime: MarketRegime) -> float:
        cfg = self.costs
        slippage = cfg.base_slippage
        if regime.type.is_shock:
            slippage *= cfg.shock_slippage_multiplier
        elif regime.microstructure.market_depth < cfg.thin_depth:
            slippage *= cfg.thin_book_slippage_multiplier
        return float(slippage / entry_price)

    def market_impact_cost(self, position_size: float, regime: MarketRegime) -> float:
        """Power law in size relative to depth, capped at 10 bps"""
        cfg = self.costs
        size = position_size or cfg.default_position_size
        depth = max(regime.microstructure.market_depth, 1e-6)
        impact = (size / depth) ** cfg.impact_exponent * cfg.impact_coefficient
        return float(min(cfg.impact_cap, impact))

    # ========================================
    # FACTORS
    # ========================================

    def execution_quality_factor(self, regime: MarketRegime, now: datetime) -> float:
        eqf = 1.0
        if regime.type.is_shock:
            eqf *= 0.7
        elif regime.type.is_trending:
            eqf *= 1.1
        elif regime.type.is_ranging:
            eqf *= 0.9

        if regime.volatility > 0.8:
            eqf *= 0.8
        elif regime.volatility < 0.3:
            eqf *= 1.05

        if regime.microstructure.market_depth < 0.5:
            eqf *= 0.75

        if 7 <= now.hour <= 16:
            eqf *= 1.1
        elif now.hour >= 22 or now.hour <= 6:
            eqf *= 0.9

        low, high = self.config.eqf_bounds
        return _clip(eqf, low, high)

    def opportunity_cost_factor(self, portfolio: PortfolioState, regime: MarketRegime) -> float:
        cfg = self.config
        ocf = portfolio.utilization * cfg.utilization_cost
        if regime.type.is_crisis:
            ocf += cfg.crisis_cost
        ocf += self.holding_hours(regime.type) / 24 * cfg.daily_holding_cost
        low, high = cfg.ocf_bounds
        return _clip(ocf, low, high)

    def holding_hours(self, regime_type: RegimeType) -> float:
        return self.config.holding_hours.get(regime_type.value, self.config.default_holding_hours)

    # ========================================
    # CONFIDENCE INTERVAL
    # ========================================

    def confidence_interval(
        self,
        p: float,
        R: float,
        L: float,
        costs: float,
        eqf: float,
        ocf: float
    ) -> Tuple[float, float]:
        cfg = self.config
        rng = self.random_source.generator()
        n = cfg.simulation_trials
        p_low, p_high = cfg.probability_bounds

        p_sim = np.clip(p + rng.uniform(-cfg.probability_noise, cfg.probability_noise, n), p_low, p_high)
        r_sim = np.maximum(cfg.min_reward, R + rng.uniform(-cfg.reward_noise, cfg.reward_noise, n))
        cost_sim = costs * (1 + rng.uniform(-cfg.cost_noise, cfg.cost_noise, n))

        edges = (p_sim * r_sim - (1 - p_sim) * L - cost_sim) * eqf - ocf
        lo_pct, hi_pct = cfg.interval_percentiles
        return float(np.percentile(edges, lo_pct)), float(np.percentile(edges, hi_pct))
