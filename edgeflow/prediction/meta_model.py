"""
Meta Model: Take-Profit-First Probability

For a candidate and its barriers, estimates the probability that the
take-profit is hit before the stop-loss, decomposes risk into volatility,
liquidity and event components, and derives the expected outcome.

Intervals come from a Monte-Carlo resampling of the probability and the
reward multiple, drawn from an injected random source.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from edgeflow.barriers.schemas import BarrierLevels
from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.random_source import RandomSource, SeededRandomSource
from edgeflow.common.schemas import Direction, NewsEvent, to_utc
from edgeflow.prediction.config import MetaModelConfig
from edgeflow.prediction.schemas import (
    CandidateSignal,
    ExpectedOutcome,
    MarketConditions,
    MetaPrediction,
    SignalRecord,
)
from edgeflow.regime.schemas import MarketRegime, RegimeType

LOG = logging.getLogger(__name__)


def _clip(value: float, low: float, high: float) -> float:
    return float(min(high, max(low, value)))


def is_asian_session(hour: int) -> bool:
    return hour >= 22 or hour <= 6


def is_active_session(hour: int) -> bool:
    return 7 <= hour <= 16


class MetaModel:
    """Layer 2 of the prediction system"""

    def __init__(self, config: Optional[MetaModelConfig] = None, random_source: Optional[RandomSource] = None):
        self.config = config or MetaModelConfig()
        self.random_source = random_source or SeededRandomSource()

    def predict(
        self,
        candidate: CandidateSignal,
        candles: pd.DataFrame,
        regime: MarketRegime,
        barriers: BarrierLevels,
        news: Optional[Sequence[NewsEvent]] = None,
        history: Optional[List[SignalRecord]] = None
    ) -> MetaPrediction:
        """
        Build the meta prediction for one candidate.

        Args:
            candidate: Candidate from the base model
            candles: Recent candles
            regime: Current regime
            barriers: Stop-loss / take-profit for the candidate
            news: Upcoming and recent events
            history: Past enhanced signals for the historical adjustment

        Returns:
            MetaPrediction with probability in [0.05, 0.95]
        """
        cfg = self.config
        news = list(news or [])
        now = candidate.timestamp

        volatility_risk = self.volatility_risk(candles, regime)
        liquidity_risk = self.liquidity_risk(regime, candles, now)
        event_risk = self.event_risk(news, now)
        weights = cfg.risk_weights
        combined_risk = (volatility_risk * weights['volatility']
                         + liquidity_risk * weights['liquidity']
                         + event_risk * weights['event'])

        risk_reward = barriers.risk_reward or cfg.default_risk_reward
        base = self.base_probability(candidate, risk_reward, regime, history or [])
        adjustment = self.risk_adjustment(volatility_risk, liquidity_risk, event_risk, regime)
        low, high = cfg.probability_bounds
        probability = _clip(base * adjustment, low, high)

        outcome = self.expected_outcome(candidate, probability, barriers, regime)
        interval, expectancy = self.monte_carlo_intervals(probability, risk_reward, combined_risk)

        LOG.debug(f"Meta prediction {candidate.id}: p={probability:.3f} risk={combined_risk:.2f}")

        return MetaPrediction(
            signal_id=candidate.id,
            probability_tp_first=probability,
            volatility_risk=volatility_risk,
            liquidity_risk=liquidity_risk,
            event_risk=event_risk,
            combined_risk=float(combined_risk),
            expected_outcome=outcome,
            confidence_interval=interval,
            expectancy_interval=expectancy,
            risk_reward=float(risk_reward),
            regime=regime.type.value,
            market_conditions=self.market_conditions(regime, news, now),
        )

    # ========================================
    # RISK DECOMPOSITION
    # ========================================

    def volatility_risk(self, candles: pd.DataFrame, regime: MarketRegime) -> float:
        """ATR ratio, regime volatility and recent return dispersion"""
        cfg = self.config
        risk = 0.0
        if candles is not None and len(candles) >= 2:
            price = float(candles['close'].iloc[-1])
            atr = PrimitiveTransforms.latest_atr(candles, cfg.atr_period, 0.0)
            atr_pct = atr / price if price > 0 else 0.0
            if atr_pct > 0.015:
                risk += 0.3
            elif atr_pct > 0.01:
                risk += 0.15

            returns = PrimitiveTransforms.simple_returns(candles['close'].astype(float)).iloc[-cfg.dispersion_window:]
            if len(returns) and float(returns.abs().mean()) > 0.005:
                risk += 0.2

        risk += regime.volatility * 0.4
        return _clip(risk, 0.0, 1.0)

    def liquidity_risk(self, regime: MarketRegime, candles: pd.DataFrame, now: datetime) -> float:
        """Regime type, session hour and recent-vs-average volume"""
        risk = 0.0
        if regime.type is RegimeType.LIQUIDITY_CRISIS:
            risk += 0.6
        elif regime.type.is_shock:
            risk += 0.4
        elif regime.microstructure.market_depth < 0.5:
            risk += 0.3

        if is_asian_session(now.hour):
            risk += 0.2
        elif is_active_session(now.hour):
            risk -= 0.1

        if candles is not None and len(candles) >= 20:
            volume = candles['volume'].astype(float)
            if volume.iloc[-5:].mean() < volume.iloc[-20:].mean() * 0.6:
                risk += 0.25

        return _clip(risk, 0.0, 1.0)

    def event_risk(self, news: Sequence[NewsEvent], now: datetime) -> float:
        """High-impact events due within 24h and released in the last 6h"""
        cfg = self.config
        ahead = now + timedelta(hours=cfg.event_lookahead_hours)
        behind = now - timedelta(hours=cfg.event_lookback_hours)
        risk = 0.0
        for event in news:
            when = to_utc(event.time)
            impact = abs(event.impact)
            if now <= when <= ahead:
                if impact >= cfg.high_impact:
                    risk += 0.4
                elif impact >= cfg.medium_impact:
                    risk += 0.2
            if behind <= when <= now and impact >= cfg.high_impact:
                risk += 0.3
        return _clip(risk, 0.0, 1.0)

    # ========================================
    # PROBABILITY
    # ========================================

    def base_probability(
        self,
        candidate: CandidateSignal,
        risk_reward: float,
        regime: MarketRegime,
        history: List[SignalRecord]
    ) -> float:
        """
        Hit probability before risk adjustment.

        0.5 plus: factor strength above 5 (x0.02), confluence bonus (up to
        0.1), risk-reward penalty/bonus, regime suitability and the
        historical adjustment from comparable past signals.
        """
        factors = candidate.factors
        avg_strength = sum(f.strength for f in factors) / len(factors) if factors else 0.0

        probability = 0.5
        probability += (avg_strength - 5) * 0.02
        probability += min(0.1, len(factors) * 0.015)

        if risk_reward < 1.5:
            probability -= 0.05
        elif risk_reward > 3:
            probability += 0.03

        probability += self.regime_suitability(candidate, regime)
        probability += self.historical_adjustment(candidate, regime, history)

        low, high = self.config.base_probability_bounds
        return _clip(probability, low, high)

    @staticmethod
    def regime_suitability(candidate: CandidateSignal, regime: MarketRegime) -> float:
        suitability = 0.0
        direction = candidate.direction
        if ((regime.type is RegimeType.TRENDING_BULLISH and direction is Direction.BUY)
                or (regime.type is RegimeType.TRENDING_BEARISH and direction is Direction.SELL)):
            suitability += 0.08

        if regime.type.is_ranging:
            momentum = next((f for f in candidate.factors if 'Momentum' in f.name), None)
            if momentum is not None and momentum.direction.sign == -direction.sign and momentum.direction.sign != 0:
                suitability += 0.06

        if regime.type.is_shock:
            suitability -= 0.1
        return suitability

    def historical_adjustment(self, candidate: CandidateSignal, regime: MarketRegime, history: List[SignalRecord]) -> float:
        """Success-rate and average-return nudge from at least five comparable signals"""
        cfg = self.config
        similar = [
            record for record in history
            if record.direction is candidate.direction
            and record.regime == regime.type.value
            and abs(record.confidence - candidate.confidence) < cfg.similar_confidence_gap
        ]
        if len(similar) < cfg.min_similar_signals:
            return 0.0
        success_rate = sum(1 for r in similar if r.success) / len(similar)
        avg_return = sum(r.outcome_return for r in similar) / len(similar)
        return (success_rate - 0.5) * 0.1 + avg_return * 0.5

    def risk_adjustment(self, volatility_risk: float, liquidity_risk: float, event_risk: float, regime: MarketRegime) -> float:
        adjustment = 1.0 - volatility_risk * 0.15 - liquidity_risk * 0.1 - event_risk * 0.2
        if regime.type.is_trending:
            adjustment += 0.05
        elif regime.type.is_shock:
            adjustment -= 0.15
        low, high = self.config.risk_adjustment_bounds
        return _clip(adjustment, low, high)

    # ========================================
    # OUTCOME & CONDITIONS
    # ========================================

    def holding_hours(self, regime: MarketRegime) -> float:
        return self.config.holding_hours.get(regime.type.value, self.config.default_holding_hours)

    def expected_outcome(
        self,
        candidate: CandidateSignal,
        probability: float,
        barriers: BarrierLevels,
        regime: MarketRegime
    ) -> ExpectedOutcome:
        entry = candidate.entry_price
        sign = candidate.direction.sign or 1
        tp_return = sign * (barriers.take_profit - entry) / entry
        sl_return = sign * (barriers.stop_loss - entry) / entry

        expected_return = probability * tp_return + (1 - probability) * sl_return
        holding = self.holding_hours(regime) * (1 + (regime.volatility - 0.5))
        risk_adjusted = expected_return / max(0.01, regime.volatility * 0.1)

        return ExpectedOutcome(
            expected_return=float(expected_return),
            expected_holding_time=float(holding),
            risk_adjusted_return=float(risk_adjusted),
            max_drawdown_risk=float(abs(sl_return) * (1 - probability) * 1.2),
        )

    def market_conditions(self, regime: MarketRegime, news: Sequence[NewsEvent], now: datetime) -> MarketConditions:
        vol = regime.volatility
        if vol < 0.3:
            volatility_regime = 'low'
        elif vol < 0.6:
            volatility_regime = 'medium'
        elif vol < 0.8:
            volatility_regime = 'high'
        else:
            volatility_regime = 'extreme'

        depth = regime.microstructure.market_depth
        if depth > 0.8:
            liquidity = 'excellent'
        elif depth > 0.6:
            liquidity = 'good'
        elif depth > 0.3:
            liquidity = 'poor'
        else:
            liquidity = 'very_poor'

        since = now - timedelta(hours=24)
        high_impact = sum(
            1 for e in news
            if abs(e.impact) >= self.config.high_impact and since < to_utc(e.time) <= now
        )
        if high_impact == 0:
            environment = 'calm'
        elif high_impact <= 2:
            environment = 'moderate'
        elif high_impact <= 4:
            environment = 'high_impact'
        else:
            environment = 'extreme'

        return MarketConditions(
            volatility_regime=volatility_regime,
            liquidity_condition=liquidity,
            news_environment=environment,
        )

    # ========================================
    # MONTE CARLO
    # ========================================

    def monte_carlo_intervals(
        self,
        probability: float,
        risk_reward: float,
        combined_risk: float
    ) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """
        Percentile intervals for the probability and the R-multiple expectancy.

        The probability is perturbed by +/- 10% scaled up by combined risk;
        the reward multiple by +/- 0.5. The probability interval always
        contains the point estimate.
        """
        cfg = self.config
        rng = self.random_source.generator()
        n = cfg.monte_carlo_trials
        lo_pct, hi_pct = cfg.interval_percentiles
        p_low, p_high = cfg.probability_bounds

        width = cfg.probability_noise * (1 + combined_risk)
        p_samples = np.clip(probability * (1 + rng.uniform(-width, width, n)), p_low, p_high)
        r_samples = np.maximum(0.0, risk_reward + rng.uniform(-cfg.reward_noise, cfg.reward_noise, n))
        expectancy = p_samples * r_samples - (1 - p_samples)

        lower = min(float(np.percentile(p_samples, lo_pct)), probability)
        upper = max(float(np.percentile(p_samples, hi_pct)), probability)
        return (
            (lower, upper),
            (float(np.percentile(expectancy, lo_pct)), float(np.percentile(expectancy, hi_pct))),
        )
