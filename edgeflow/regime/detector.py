"""
Regime Detector

Classifies recent market behaviour into one of ten regimes using
hidden-state style emission likelihoods over a short window of
normalised observations.

Detection is a pure function of its inputs. The detector keeps only
bookkeeping state: the transition log, per-regime factor performance and
the adaptive factor weights those feed.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.schemas import EPOCH, NewsEvent, candle_timestamps, last_candle_time, to_utc
from edgeflow.regime.config import FACTOR_TYPES, RegimeConfig
from edgeflow.regime.schemas import (
    DETECTABLE_REGIMES,
    FactorPerformance,
    MarketObservation,
    MarketRegime,
    OrderFlowBias,
    RegimeMicrostructure,
    RegimeTransition,
    RegimeType,
)

LOG = logging.getLogger(__name__)


def _clip(value: float, low: float, high: float) -> float:
    return float(min(high, max(low, value)))


def _g(x: float, mean: float, std: float) -> float:
    return float(stats.norm.pdf(x, loc=mean, scale=std))


# ========================================
# EMISSION FUNCTIONS
# ========================================

def _trending_bullish(o: MarketObservation) -> float:
    return (_g(o.price_move, 0.002, 0.001) * _g(o.momentum, 0.7, 0.2)
            * _g(o.trend, 0.8, 0.15) * (1 + o.volume * 0.3))


def _trending_bearish(o: MarketObservation) -> float:
    return (_g(o.price_move, -0.002, 0.001) * _g(o.momentum, -0.7, 0.2)
            * _g(o.trend, -0.8, 0.15) * (1 + o.volume * 0.3))


def _ranging_tight(o: MarketObservation) -> float:
    return (_g(o.price_move, 0, 0.0005) * _g(o.volatility, 0.3, 0.1)
            * _g(o.momentum, 0, 0.2) * (1 - abs(o.trend) * 0.5))


def _ranging_volatile(o: MarketObservation) -> float:
    return (_g(o.volatility, 0.8, 0.2) * _g(o.momentum, 0, 0.4)
            * (1 - abs(o.trend) * 0.3) * max(0.1, 1 - abs(o.price_move) * 500))


def _shock_up(o: MarketObservation) -> float:
    if o.price_move <= 0.005:
        return 0.0
    return _g(o.volatility, 1.0, 0.3) * (1 + o.volume * 0.5) * (1 + max(0.0, o.news) * 0.4)


def _shock_down(o: MarketObservation) -> float:
    if o.price_move >= -0.005:
        return 0.0
    return _g(o.volatility, 1.0, 0.3) * (1 + o.volume * 0.5) * (1 + max(0.0, -o.news) * 0.4)


def _liquidity_crisis(o: MarketObservation) -> float:
    return (_g(o.volatility, 1.2, 0.4) * max(0.1, 1 - o.volume)
            * (1 + abs(o.news) * 0.6) * np.exp(-abs(o.momentum) * 2))


def _news_driven(o: MarketObservation) -> float:
    return (max(0.1, abs(o.news)) * _g(o.volatility, 0.9, 0.3)
            * (1 + o.volume * 0.4) * (1 + abs(o.price_move) * 200))


def _breakout(o: MarketObservation) -> float:
    return (max(0.0, o.breakout) * _g(o.volume, 1.2, 0.3)
            * (1 + abs(o.momentum) * 0.5) * np.exp(-o.reversal * 2))


def _consolidation(o: MarketObservation) -> float:
    return (_g(o.volatility, 0.4, 0.15) * _g(o.momentum, 0, 0.15)
            * _g(o.price_move, 0, 0.0003) * np.exp(-o.breakout * 3))


EMISSIONS = {
    RegimeType.TRENDING_BULLISH: _trending_bullish,
    RegimeType.TRENDING_BEARISH: _trending_bearish,
    RegimeType.RANGING_TIGHT: _ranging_tight,
    RegimeType.RANGING_VOLATILE: _ranging_volatile,
    RegimeType.SHOCK_UP: _shock_up,
    RegimeType.SHOCK_DOWN: _shock_down,
    RegimeType.LIQUIDITY_CRISIS: _liquidity_crisis,
    RegimeType.NEWS_DRIVEN: _news_driven,
    RegimeType.BREAKOUT: _breakout,
    RegimeType.CONSOLIDATION: _consolidation,
}


class RegimeDetector:
    """
    Regime detector.

    Scores each regime's log-likelihood over the last few observations,
    favours the regime that explained the earlier part of the window
    (persistence), and reports the softmax posterior of the winner as
    confidence.
    """

    def __init__(self, config: Optional[RegimeConfig] = None):
        self.config = config or RegimeConfig()

        self._weights: Dict[str, Dict[str, float]] = {
            regime: dict(weights) for regime, weights in self.config.adaptive_weights.items()
        }
        self._performance: Dict[str, FactorPerformance] = {}
        self._transitions: deque = deque(maxlen=self.config.transition_history_size)
        self._last_type: Optional[RegimeType] = None
        self._current: Optional[MarketRegime] = None
        self._lock = threading.RLock()

        LOG.info("RegimeDetector initialized")

    # ========================================
    # DETECTION
    # ========================================

    def detect(
        self,
        candles: pd.DataFrame,
        volume: Optional[Sequence[float]] = None,
        news: Optional[List[NewsEvent]] = None,
        as_of: Optional[datetime] = None
    ) -> MarketRegime:
        """
        Classify the current regime.

        Args:
            candles: OHLCV frame, oldest first
            volume: Optional volume series overriding the candle volume
            news: Optional news events with sentiment
            as_of: Decision time (defaults to the last candle time)

        Returns:
            MarketRegime (neutral and low confidence when data is short)
        """
        timestamp = self._resolve_time(candles, as_of)

        if candles is None or len(candles) < self.config.min_candles:
            LOG.debug(f"Insufficient candles for regime detection: {0 if candles is None else len(candles)}")
            return self.neutral_regime(timestamp)

        frame = candles.reset_index(drop=True)
        if volume is not None and len(volume) == len(frame):
            frame = frame.copy()
            frame['volume'] = np.asarray(volume, dtype=float)

        observations = self.build_observations(frame, news or [])
        scores = self._score(observations)

        log_likelihood = np.array([scores[r] for r in DETECTABLE_REGIMES])
        if not np.isfinite(log_likelihood).any():
            regime_type = RegimeType.RANGING_TIGHT
            posteriors = {r.value: (1.0 if r is regime_type else 0.0) for r in DETECTABLE_REGIMES}
        else:
            shifted = np.exp(log_likelihood - np.max(log_likelihood))
            probs = shifted / shifted.sum()
            regime_type = DETECTABLE_REGIMES[int(np.argmax(probs))]
            posteriors = {r.value: float(p) for r, p in zip(DETECTABLE_REGIMES, probs)}

        confidence = _clip(posteriors[regime_type.value], self.config.min_confidence, 1.0)
        latest = observations[-1]

        with self._lock:
            if self._last_type is not None and self._last_type != regime_type:
                self._record_transition(self._last_type, regime_type, latest, confidence, timestamp)
                self._adapt_weights(regime_type)
            self._last_type = regime_type
            weights = dict(self._weights.get(regime_type.value, {}))

            regime = self._build_regime(regime_type, latest, confidence, weights, posteriors, timestamp)
            self._current = regime

        LOG.debug(f"Detected regime {regime_type.value} (confidence {confidence:.2f})")
        return regime

    def neutral_regime(self, timestamp: datetime = EPOCH) -> MarketRegime:
        """Low-confidence regime used when there is too little data"""
        return MarketRegime(
            type=RegimeType.NEUTRAL,
            strength=0.0,
            confidence=self.config.min_confidence,
            volatility=0.5,
            momentum=0.0,
            volume=1.0,
            microstructure=RegimeMicrostructure(
                bid_ask_spread=0.05,
                market_depth=1.0,
                order_flow=OrderFlowBias.NEUTRAL,
                institutional_activity=0.5,
            ),
            adjustment_factors={factor: 1.0 for factor in FACTOR_TYPES},
            risk_multiplier=self.config.default_risk_multiplier,
            expected_duration=0.0,
            transition_probabilities={},
            timestamp=timestamp,
        )

    def _resolve_time(self, candles: pd.DataFrame, as_of: Optional[datetime]) -> datetime:
        if as_of is not None:
            return to_utc(as_of)
        last = last_candle_time(candles)
        return last if last is not None else EPOCH

    # ========================================
    # OBSERVATIONS
    # ========================================

    def build_observations(self, candles: pd.DataFrame, news: List[NewsEvent]) -> List[MarketObservation]:
        """
        Normalised observations for the bars closing the window.

        Each observation uses the last `window` bars up to and including
        its bar, so no observation sees later data.
        """
        cfg = self.config.observation
        n = len(candles)
        stamps = candle_timestamps(candles)
        first_end = max(cfg.window, n - cfg.observation_count + 1)

        observations = []
        for end in range(first_end, n + 1):
            window = candles.iloc[end - cfg.window:end]
            stamp = stamps[end - 1] if stamps is not None else None
            observations.append(self._observe(window, news, stamp))
        return observations

    def _observe(self, window: pd.DataFrame, news: List[NewsEvent], stamp) -> MarketObservation:
        cfg = self.config.observation
        close = window['close'].astype(float)
        high = window['high'].astype(float)
        low = window['low'].astype(float)
        vol = window['volume'].astype(float)
        price = float(close.iloc[-1])

        price_move = _clip(price / float(close.iloc[-2]) - 1, -0.1, 0.1)

        returns = PrimitiveTransforms.simple_returns(close).to_numpy()
        annual = float(np.sqrt(np.mean(np.square(returns)))) * np.sqrt(cfg.annualisation) if len(returns) else 0.0
        volatility = _clip(annual / cfg.volatility_scale, 0.0, 2.0)

        avg_volume = float(vol.mean())
        volume = _clip(float(vol.iloc[-1]) / avg_volume, 0.1, 3.0) if avg_volume > 0 else 1.0

        highest, lowest = float(high.max()), float(low.min())
        span = highest - lowest
        momentum = _clip(((price - lowest) / span - 0.5) * 2, -1.0, 1.0) if span > 0 else 0.0

        recent = close.iloc[-cfg.trend_window:]
        mean_close = float(recent.mean())
        trend = _clip(PrimitiveTransforms.slope(recent.to_numpy()) / mean_close * 1000, -1.0, 1.0) if mean_close > 0 else 0.0

        rsi_series = PrimitiveTransforms.rsi(close, cfg.rsi_period).dropna()
        reversal = 0.0
        if len(rsi_series):
            rsi = float(rsi_series.iloc[-1])
            if rsi > 70 or rsi < 30:
                reversal = abs(rsi - 50) / 50

        prior = window.iloc[:-1]
        prior_high, prior_low = float(prior['high'].max()), float(prior['low'].min())
        breakout = 0.0
        if price > prior_high:
            breakout = (price / prior_high - 1) * 100 / 5
        elif price < prior_low:
            breakout = (prior_low / price - 1) * 100 / 5
        breakout = _clip(breakout, 0.0, 1.0)

        news_score = 0.0
        if news:
            news_score = _clip(float(np.mean([e.sentiment for e in news])) / 10, -1.0, 1.0)

        if stamp is not None:
            time_of_day = (stamp.hour * 60 + stamp.minute) / 1440
            day_of_week = stamp.dayofweek / 6
        else:
            time_of_day = day_of_week = 0.5

        return MarketObservation(
            price_move=price_move,
            volatility=volatility,
            volume=volume,
            momentum=momentum,
            trend=trend,
            reversal=reversal,
            breakout=breakout,
            news=news_score,
            time_of_day=float(time_of_day),
            day_of_week=float(day_of_week),
        )

    # ========================================
    # SCORING
    # ========================================

    def _log_likelihoods(self, observations: List[MarketObservation]) -> Dict[RegimeType, float]:
        scores = {}
        with np.errstate(divide='ignore'):
            for regime, emission in EMISSIONS.items():
                values = np.array([max(0.0, emission(o)) for o in observations])
                scores[regime] = float(np.sum(np.log(values)))
        return scores

    def _score(self, observations: List[MarketObservation]) -> Dict[RegimeType, float]:
        scores = self._log_likelihoods(observations)
        if len(observations) > 1:
            earlier = self._log_likelihoods(observations[:-1])
            if any(np.isfinite(v) for v in earlier.values()):
                prevailing = max(DETECTABLE_REGIMES, key=lambda r: earlier[r])
                scores[prevailing] += float(np.log(self.config.persistence_bonus))
        return scores

    # ========================================
    # REGIME PROPERTIES
    # ========================================

    def _build_regime(
        self,
        regime_type: RegimeType,
        obs: MarketObservation,
        confidence: float,
        weights: Dict[str, float],
        posteriors: Dict[str, float],
        timestamp: datetime
    ) -> MarketRegime:
        cfg = self.config
        if obs.momentum > 0.1:
            flow = OrderFlowBias.BUYING
        elif obs.momentum < -0.1:
            flow = OrderFlowBias.SELLING
        else:
            flow = OrderFlowBias.NEUTRAL

        base_risk = cfg.risk_multipliers.get(regime_type.value, cfg.default_risk_multiplier)
        risk_multiplier = base_risk * max(0.1, 1 - obs.volatility / 2) * max(0.5, confidence)

        return MarketRegime(
            type=regime_type,
            strength=self._strength(regime_type, obs),
            confidence=confidence,
            volatility=min(1.0, obs.volatility),
            momentum=obs.momentum,
            volume=obs.volume,
            microstructure=RegimeMicrostructure(
                bid_ask_spread=obs.volatility * 0.1,
                market_depth=_clip(2 - obs.volatility, 0.1, 1.0),
                order_flow=flow,
                institutional_activity=0.8 if obs.volume > 1.5 else 0.3,
            ),
            adjustment_factors=weights,
            risk_multiplier=float(risk_multiplier),
            expected_duration=cfg.duration_means.get(regime_type.value, 0.0) * cfg.candle_minutes,
            transition_probabilities=dict(cfg.transition_probabilities.get(regime_type.value, {})),
            timestamp=timestamp,
            trigger_factors=self.identify_triggers(obs),
            regime_scores=posteriors,
        )

    @staticmethod
    def _strength(regime_type: RegimeType, obs: MarketObservation) -> float:
        if regime_type is RegimeType.TRENDING_BULLISH:
            return _clip((obs.momentum + 1) / 2 + obs.trend + obs.volume / 3, 0.0, 1.0)
        if regime_type is RegimeType.TRENDING_BEARISH:
            return _clip((1 - obs.momentum) / 2 - obs.trend + obs.volume / 3, 0.0, 1.0)
        if regime_type is RegimeType.RANGING_TIGHT:
            return _clip(1 - abs(obs.momentum) - abs(obs.trend) - obs.volatility / 2, 0.0, 1.0)
        if regime_type.is_shock:
            return _clip(obs.volatility + obs.volume / 2 + abs(obs.price_move) * 10, 0.0, 1.0)
        return 0.5

    @staticmethod
    def identify_triggers(obs: MarketObservation) -> List[str]:
        """Observation features that stand out enough to explain a regime change"""
        triggers = []
        if abs(obs.price_move) > 0.01:
            triggers.append('large_price_move')
        if obs.volatility > 1.5:
            triggers.append('volatility_spike')
        if obs.volume > 2:
            triggers.append('volume_surge')
        if abs(obs.momentum) > 0.8:
            triggers.append('momentum_shift')
        if abs(obs.news) > 0.5:
            triggers.append('news_event')
        if obs.breakout > 0.5:
            triggers.append('breakout')
        if obs.reversal > 0.7:
            triggers.append('reversal_signal')
        return triggers

    # ========================================
    # TRANSITIONS & ADAPTIVE WEIGHTS
    # ========================================

    def _record_transition(
        self,
        from_regime: RegimeType,
        to_regime: RegimeType,
        obs: MarketObservation,
        confidence: float,
        timestamp: datetime
    ):
        transition = RegimeTransition(
            from_regime=from_regime,
            to_regime=to_regime,
            timestamp=timestamp,
            trigger_factors=self.identify_triggers(obs),
            confidence=confidence,
            price_change=obs.price_move,
            volume_change=obs.volume - 1,
            volatility_change=obs.volatility - 0.5,
            news_impact=obs.news,
        )
        self._transitions.append(transition)
        LOG.info(f"Regime transition: {from_regime.value} -> {to_regime.value} (confidence {confidence:.2f})")

    def _adapt_weights(self, regime_type: RegimeType):
        weights = self._weights.get(regime_type.value)
        if not weights:
            return
        cfg = self.config
        low, high = cfg.weight_bounds

        for factor, weight in weights.items():
            perf = self._performance.get(f"{regime_type.value}_{factor}")
            if perf is None or perf.trades < cfg.min_performance_samples:
                continue
            score = (perf.win_rate - 0.5) * perf.avg_return
            weights[factor] = _clip(weight * np.exp(cfg.weight_learning_rate * score), low, high)

        total = sum(weights.values())
        if total > 0:
            scale = len(weights) / total
            for factor in weights:
                weights[factor] *= scale

    def update_factor_performance(self, factor_type: str, regime_type: str, was_win: bool, return_amount: float):
        """
        Record one trade outcome for a factor family in a regime.

        Args:
            factor_type: Weight key (technical, pattern, volume, ...)
            regime_type: Regime the trade was taken in
            was_win: Whether the trade was profitable
            return_amount: Realised return
        """
        key = f"{regime_type}_{factor_type}"
        with self._lock:
            perf = self._performance.setdefault(key, FactorPerformance())
            perf.trades += 1
            if was_win:
                perf.wins += 1
            perf.total_return += float(return_amount)

    def get_adaptive_weights(self, regime_type: str) -> Dict[str, float]:
        with self._lock:
            return dict(self._weights.get(regime_type, {}))

    def get_current_regime(self) -> Optional[MarketRegime]:
        return self._current

    def get_transition_history(self, limit: int = 100) -> List[RegimeTransition]:
        with self._lock:
            return list(self._transitions)[-limit:]

    def get_regime_stats(self) -> Dict:
        """
        Snapshot of detector bookkeeping.

        Average duration of a regime is measured from a transition into it
        to the next transition out of it.
        """
        with self._lock:
            transitions = list(self._transitions)
            durations: Dict[str, List[float]] = {}
            for i, entered in enumerate(transitions):
                for later in transitions[i + 1:]:
                    if later.from_regime == entered.to_regime:
                        minutes = (later.timestamp - entered.timestamp).total_seconds() / 60
                        durations.setdefault(entered.to_regime.value, []).append(minutes)
                        break

            return {
                'current_regime': self._current.to_dict() if self._current else None,
                'regime_history': [t.to_dict() for t in transitions[-100:]],
                'average_regime_duration': {k: float(np.mean(v)) for k, v in durations.items()},
                'transition_matrix': {
                    source.value: {
                        target.value: self.config.transition_probabilities.get(source.value, {}).get(target.value, 0.01)
                        for target in DETECTABLE_REGIMES
                    }
                    for source in DETECTABLE_REGIMES
                },
                'regime_performance': {k: v.to_dict() for k, v in self._performance.items()},
                'adaptive_weights': {k: dict(v) for k, v in self._weights.items()},
            }
