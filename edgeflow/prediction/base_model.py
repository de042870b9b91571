"""
Base Model: Candidate Detector

Scans technical, candlestick pattern, volume and momentum factors and
emits a candidate for each direction with enough confluence. This layer
over-generates on purpose; the meta model and the gates downstream do
the filtering.
"""

import hashlib
import logging
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.schemas import Direction, to_utc
from edgeflow.prediction.config import BaseModelConfig
from edgeflow.prediction.schemas import CandidateSignal, FactorCategory, TechnicalFactor
from edgeflow.regime.schemas import MarketRegime

LOG = logging.getLogger(__name__)


def candidate_id(pair: str, direction: Direction, timestamp: datetime) -> str:
    """Deterministic id: first 16 hex chars of sha256(pair|direction|timestamp)"""
    payload = f"{pair}|{direction.value}|{timestamp.isoformat()}"
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


class CandidateDetector:
    """
    Layer 1 of the prediction system.

    Factor strengths are scaled by the regime's adjustment factor and by
    the learned feature weight for the factor's family; factors weaker
    than the minimum strength after scaling are dropped.
    """

    def __init__(self, config: Optional[BaseModelConfig] = None):
        self.config = config or BaseModelConfig()

    def detect(
        self,
        candles: pd.DataFrame,
        regime: MarketRegime,
        pair: str = "EUR/USD",
        as_of: Optional[datetime] = None,
        feature_weights: Optional[Dict[str, float]] = None
    ) -> List[CandidateSignal]:
        """
        Detect candidate signals.

        Args:
            candles: OHLCV frame, oldest first
            regime: Current regime
            pair: Trading pair identifier
            as_of: Decision time (defaults to the regime timestamp)
            feature_weights: Learned multipliers per factor family

        Returns:
            Zero, one or two candidates (buy and/or sell)
        """
        cfg = self.config
        if candles is None or len(candles) < cfg.min_candles:
            return []

        frame = candles.reset_index(drop=True)
        factors = (
            self.technical_factors(frame)
            + self.pattern_factors(frame)
            + self.volume_factors(frame)
            + self.momentum_factors(frame)
        )
        filtered = self.apply_regime_filter(factors, regime, feature_weights or {})

        timestamp = to_utc(as_of) if as_of is not None else regime.timestamp
        entry = float(frame['close'].iloc[-1])

        candidates = []
        for direction in (Direction.BUY, Direction.SELL):
            agreeing = [f for f in filtered if f.direction is direction]
            if len(agreeing) < cfg.min_agreeing_factors:
                continue
            candidate = self._create_candidate(direction, entry, agreeing, pair, timestamp)
            if candidate.confidence >= cfg.min_candidate_confidence:
                candidates.append(candidate)

        LOG.debug(f"{len(factors)} factors, {len(filtered)} after regime filter, {len(candidates)} candidates")
        return candidates

    def apply_regime_filter(
        self,
        factors: List[TechnicalFactor],
        regime: MarketRegime,
        feature_weights: Dict[str, float]
    ) -> List[TechnicalFactor]:
        cfg = self.config
        confidence_boost = min(cfg.max_confidence_boost, regime.confidence + 0.3)
        filtered = []
        for factor in factors:
            key = cfg.category_weight_keys.get(factor.category.value, factor.category.value)
            strength = factor.strength * regime.adjustment_for(key) * feature_weights.get(key, 1.0)
            if strength <= cfg.min_factor_strength:
                continue
            filtered.append(TechnicalFactor(
                category=factor.category,
                name=factor.name,
                direction=factor.direction,
                strength=strength,
                confidence=min(1.0, factor.confidence * confidence_boost),
            ))
        return filtered

    @staticmethod
    def _create_candidate(
        direction: Direction,
        entry: float,
        factors: List[TechnicalFactor],
        pair: str,
        timestamp: datetime
    ) -> CandidateSignal:
        return CandidateSignal(
            id=candidate_id(pair, direction, timestamp),
            timestamp=timestamp,
            pair=pair,
            direction=direction,
            entry_price=entry,
            confidence=sum(f.confidence for f in factors) / len(factors),
            factors=tuple(factors),
            raw_strength=sum(f.strength for f in factors) / len(factors),
        )

    # ========================================
    # FACTOR ANALYZERS
    # ========================================

    def technical_factors(self, candles: pd.DataFrame) -> List[TechnicalFactor]:
        """RSI, MACD cross, moving-average alignment, Bollinger touch, stochastic"""
        cfg = self.config
        close = candles['close'].astype(float)
        price = float(close.iloc[-1])
        factors = []

        rsi = PrimitiveTransforms.rsi(close, cfg.rsi_period).dropna()
        if len(rsi):
            value = float(rsi.iloc[-1])
            if value < cfg.rsi_oversold:
                factors.append(TechnicalFactor(FactorCategory.OSCILLATOR, 'RSI Oversold', Direction.BUY,
                                               max(1.0, (cfg.rsi_oversold - value) / 5), 0.7))
            elif value > cfg.rsi_overbought:
                factors.append(TechnicalFactor(FactorCategory.OSCILLATOR, 'RSI Overbought', Direction.SELL,
                                               max(1.0, (value - cfg.rsi_overbought) / 5), 0.7))

        macd = PrimitiveTransforms.macd(close)
        if len(macd) > 1:
            cur, prev = macd.iloc[-1], macd.iloc[-2]
            strength = min(10.0, abs(cur['macd'] - cur['signal']) * 1000)
            if cur['macd'] > cur['signal'] and prev['macd'] <= prev['signal']:
                factors.append(TechnicalFactor(FactorCategory.MOMENTUM, 'MACD Bullish Cross', Direction.BUY, strength, 0.8))
            elif cur['macd'] < cur['signal'] and prev['macd'] >= prev['signal']:
                factors.append(TechnicalFactor(FactorCategory.MOMENTUM, 'MACD Bearish Cross', Direction.SELL, strength, 0.8))

        sma20 = PrimitiveTransforms.rolling_mean(close, 20).dropna()
        sma50 = PrimitiveTransforms.rolling_mean(close, 50).dropna()
        if len(sma20) and len(sma50):
            fast, slow = float(sma20.iloc[-1]), float(sma50.iloc[-1])
            if fast > slow and price > fast:
                factors.append(TechnicalFactor(FactorCategory.TREND, 'Golden Cross Above', Direction.BUY, 7.0, 0.75))
            elif fast < slow and price < fast:
                factors.append(TechnicalFactor(FactorCategory.TREND, 'Death Cross Below', Direction.SELL, 7.0, 0.75))

        bands = PrimitiveTransforms.bollinger_bands(close, 20, 2.0)
        if len(bands):
            band = bands.iloc[-1]
            if price <= band['lower']:
                factors.append(TechnicalFactor(FactorCategory.VOLATILITY, 'BB Lower Touch', Direction.BUY, 8.0, 0.65))
            elif price >= band['upper']:
                factors.append(TechnicalFactor(FactorCategory.VOLATILITY, 'BB Upper Touch', Direction.SELL, 8.0, 0.65))

        stoch = PrimitiveTransforms.stochastic(candles['high'].astype(float), candles['low'].astype(float), close)
        if len(stoch):
            k, d = float(stoch['k'].iloc[-1]), float(stoch['d'].iloc[-1])
            if k < cfg.stochastic_oversold and d < cfg.stochastic_oversold:
                factors.append(TechnicalFactor(FactorCategory.OSCILLATOR, 'Stochastic Oversold', Direction.BUY, 6.0, 0.6))
            elif k > cfg.stochastic_overbought and d > cfg.stochastic_overbought:
                factors.append(TechnicalFactor(FactorCategory.OSCILLATOR, 'Stochastic Overbought', Direction.SELL, 6.0, 0.6))

        return factors

    def pattern_factors(self, candles: pd.DataFrame) -> List[TechnicalFactor]:
        """Doji, hammer and shooting star over the last few candles"""
        factors = []
        for _, bar in candles.iloc[-self.config.pattern_lookback:].iterrows():
            body = abs(bar['close'] - bar['open'])
            bar_range = bar['high'] - bar['low']
            upper = bar['high'] - max(bar['open'], bar['close'])
            lower = min(bar['open'], bar['close']) - bar['low']

            if body < bar_range * 0.1:
                factors.append(TechnicalFactor(FactorCategory.PATTERN, 'Doji', Direction.NEUTRAL, 5.0, 0.5))
            if lower > body * 2 and upper < body * 0.5:
                factors.append(TechnicalFactor(FactorCategory.PATTERN, 'Hammer', Direction.BUY, 7.0, 0.7))
            if upper > body * 2 and lower < body * 0.5:
                factors.append(TechnicalFactor(FactorCategory.PATTERN, 'Shooting Star', Direction.SELL, 7.0, 0.7))
        return factors

    def volume_factors(self, candles: pd.DataFrame) -> List[TechnicalFactor]:
        """Volume spike with a price move, and on-balance-volume trend"""
        cfg = self.config
        factors = []
        volume = candles['volume'].astype(float)
        last = candles.iloc[-1]

        avg_volume = float(volume.iloc[-cfg.volume_window:].mean())
        if avg_volume > 0:
            ratio = float(last['volume']) / avg_volume
            move = (last['close'] - last['open']) / last['open']
            if ratio > cfg.volume_spike_ratio and abs(move) > cfg.volume_spike_move:
                direction = Direction.BUY if move > 0 else Direction.SELL
                factors.append(TechnicalFactor(FactorCategory.VOLUME, 'Volume Breakout', direction,
                                               min(10.0, ratio * 2), 0.8))

        obv = PrimitiveTransforms.obv(candles['close'].astype(float), volume)
        if len(obv) > cfg.obv_window:
            slope = PrimitiveTransforms.slope(obv.iloc[-cfg.obv_window:].to_numpy())
            if abs(slope) > cfg.obv_min_slope:
                direction = Direction.BUY if slope > 0 else Direction.SELL
                factors.append(TechnicalFactor(FactorCategory.VOLUME, 'OBV Trend', direction,
                                               min(8.0, abs(slope) * 10), 0.6))
        return factors

    def momentum_factors(self, candles: pd.DataFrame) -> List[TechnicalFactor]:
        """Price momentum and rate of change"""
        cfg = self.config
        close = candles['close'].astype(float)
        factors = []

        if len(close) >= cfg.momentum_lookback:
            past = float(close.iloc[-cfg.momentum_lookback])
            momentum = (float(close.iloc[-1]) - past) / past
            if abs(momentum) > cfg.momentum_threshold:
                direction = Direction.BUY if momentum > 0 else Direction.SELL
                factors.append(TechnicalFactor(FactorCategory.MOMENTUM, 'Price Momentum', direction,
                                               min(10.0, abs(momentum) * 100), 0.6))

        roc = PrimitiveTransforms.rate_of_change(close, cfg.roc_period)
        if len(roc):
            value = float(roc.iloc[-1])
            if abs(value) > cfg.roc_threshold:
                direction = Direction.BUY if value > 0 else Direction.SELL
                factors.append(TechnicalFactor(FactorCategory.MOMENTUM, 'Rate of Change', direction,
                                               min(8.0, abs(value) / 2), 0.65))
        return factors
