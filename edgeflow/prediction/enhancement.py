"""
Signal enhancement: final score, recommendation tier and risk profile.
"""

from typing import Optional

from edgeflow.prediction.config import EnhancementConfig
from edgeflow.prediction.schemas import (
    CandidateSignal,
    EnhancedSignal,
    MetaPrediction,
    Recommendation,
    RiskProfile,
)


class SignalEnhancer:
    """Combines base confidence with the meta model's probability"""

    def __init__(self, config: Optional[EnhancementConfig] = None):
        self.config = config or EnhancementConfig()

    def enhance(self, candidate: CandidateSignal, meta: MetaPrediction) -> EnhancedSignal:
        cfg = self.config
        final_score = cfg.base_weight * candidate.confidence + cfg.meta_weight * meta.probability_tp_first
        risk_adjusted_score = final_score * (1 - cfg.risk_discount * meta.combined_risk)

        return EnhancedSignal(
            candidate=candidate,
            meta=meta,
            final_score=float(final_score),
            recommendation=self.recommendation(risk_adjusted_score, meta.expected_outcome.risk_adjusted_return),
            risk_profile=self.risk_profile(meta.combined_risk, meta.probability_tp_first),
        )

    @staticmethod
    def recommendation(score: float, risk_adjusted_return: float) -> Recommendation:
        """Tier table keyed on risk-adjusted score and risk-adjusted return"""
        if score >= 0.8 and risk_adjusted_return > 2:
            return Recommendation.STRONG_BUY
        if score >= 0.7 and risk_adjusted_return > 1:
            return Recommendation.BUY
        if score >= 0.6 and risk_adjusted_return > 0.5:
            return Recommendation.WEAK_BUY
        if score <= 0.2 and risk_adjusted_return < -2:
            return Recommendation.STRONG_SELL
        if score <= 0.3 and risk_adjusted_return < -1:
            return Recommendation.SELL
        if score <= 0.4 and risk_adjusted_return < -0.5:
            return Recommendation.WEAK_SELL
        return Recommendation.HOLD

    @staticmethod
    def risk_profile(combined_risk: float, probability: float) -> RiskProfile:
        if combined_risk <= 0.3 and probability >= 0.7:
            return RiskProfile.CONSERVATIVE
        if combined_risk <= 0.6 and probability >= 0.5:
            return RiskProfile.MODERATE
        return RiskProfile.AGGRESSIVE
