"""
Portfolio-level gate: correlation, Sharpe impact and risk concentration.
"""

from typing import Optional

from edgeflow.adaptive.config import PortfolioGateConfig
from edgeflow.adaptive.schemas import EdgeMetrics, PortfolioVerdict, TradeProposal
from edgeflow.common.schemas import PortfolioState


class PortfolioGate:
    """
    Rejects a proposal if it:
    - duplicates or hedges an open position in the same pair (|corr| > 0.7)
    - drags the portfolio Sharpe down by more than 0.05
    - carries more than 30% of the portfolio risk budget
    """

    def __init__(self, config: Optional[PortfolioGateConfig] = None):
        self.config = config or PortfolioGateConfig()

    def evaluate(self, proposal: TradeProposal, portfolio: PortfolioState, edge: EdgeMetrics) -> PortfolioVerdict:
        cfg = self.config

        correlation = self.correlation(proposal, portfolio)
        if correlation > cfg.max_correlation:
            return PortfolioVerdict(False, f"High correlation with existing positions: {correlation:.2f}",
                                    correlation=correlation)

        sharpe_impact = self.sharpe_impact(portfolio, edge)
        if sharpe_impact < cfg.min_sharpe_impact:
            return PortfolioVerdict(False, f"Negative Sharpe impact: {sharpe_impact:.3f}",
                                    correlation=correlation, sharpe_impact=sharpe_impact)

        concentration = self.risk_concentration(proposal, portfolio)
        if concentration > cfg.max_risk_concentration:
            return PortfolioVerdict(False, f"Risk concentration too high: {concentration:.2f}",
                                    correlation=correlation, sharpe_impact=sharpe_impact,
                                    risk_concentration=concentration)

        return PortfolioVerdict(True, "Portfolio optimization passed", correlation, sharpe_impact, concentration)

    def correlation(self, proposal: TradeProposal, portfolio: PortfolioState) -> float:
        """Same pair counts as fully correlated, in either direction"""
        worst = 0.0
        for position in portfolio.open_positions:
            if position.symbol == proposal.pair:
                worst = max(worst, self.config.same_pair_correlation)
        return worst

    def sharpe_impact(self, portfolio: PortfolioState, edge: EdgeMetrics) -> float:
        weight = self.config.position_weight
        current = portfolio.sharpe_ratio or 0.0
        signal_sharpe = edge.net_edge / max(0.01, edge.expected_edge * 0.1)
        updated = current * (1 - weight) + signal_sharpe * weight
        return float(updated - current)

    @staticmethod
    def risk_concentration(proposal: TradeProposal, portfolio: PortfolioState) -> float:
        signal_risk = abs(proposal.entry_price - proposal.stop_loss) / proposal.entry_price
        return float(signal_risk / (portfolio.total_risk or 1.0))
