"""
Tests for the Regime Detector.
"""

import numpy as np
import pytest

from edgeflow.common.schemas import EPOCH, NewsEvent
from edgeflow.regime.config import RegimeConfig
from edgeflow.regime.detector import RegimeDetector
from edgeflow.regime.schemas import DETECTABLE_REGIMES, RegimeType

from conftest import BASE_TIME, build_candles


@pytest.fixture
def detector():
    return RegimeDetector()


@pytest.fixture
def bearish_candles():
    np.random.seed(42)
    return build_candles(-np.random.normal(0.0015, 0.0003, 200), wick=0.0002)


class TestInsufficientData:
    """Short input degrades to a neutral regime instead of raising."""

    def test_empty_candles(self, detector, empty_candles):
        regime = detector.detect(empty_candles)
        assert regime.type is RegimeType.NEUTRAL
        assert regime.confidence == pytest.approx(detector.config.min_confidence)
        assert regime.timestamp == EPOCH

    def test_short_candles(self, detector, short_candles):
        regime = detector.detect(short_candles)
        assert regime.type is RegimeType.NEUTRAL
        assert regime.confidence <= 0.2
        assert regime.timestamp == short_candles['timestamp'].iloc[-1].to_pydatetime()

    def test_none_candles(self, detector):
        assert detector.detect(None).type is RegimeType.NEUTRAL


class TestClassification:
    """Test regime classification on synthetic trends."""

    def test_uptrend_is_trending_bullish(self, detector, trending_candles):
        regime = detector.detect(trending_candles)
        assert regime.type is RegimeType.TRENDING_BULLISH
        assert regime.type.is_trending
        assert regime.momentum > 0.5

    def test_downtrend_is_trending_bearish(self, detector, bearish_candles):
        regime = detector.detect(bearish_candles)
        assert regime.type is RegimeType.TRENDING_BEARISH
        assert regime.momentum < -0.5

    def test_regime_bounds(self, detector, random_candles):
        regime = detector.detect(random_candles)
        assert regime.type in DETECTABLE_REGIMES
        assert 0.0 <= regime.confidence <= 1.0
        assert 0.0 <= regime.volatility <= 1.0
        assert 0.0 <= regime.strength <= 1.0
        assert 0.1 <= regime.microstructure.market_depth <= 1.0
        assert sum(regime.regime_scores.values()) == pytest.approx(1.0)

    def test_confidence_is_posterior_of_winner(self, detector, trending_candles):
        regime = detector.detect(trending_candles)
        assert regime.confidence == pytest.approx(max(regime.regime_scores.values()))

    def test_detection_is_deterministic(self, trending_candles):
        first = RegimeDetector().detect(trending_candles)
        second = RegimeDetector().detect(trending_candles)
        assert first.type is second.type
        assert first.confidence == second.confidence
        assert first.regime_scores == second.regime_scores

    def test_as_of_overrides_candle_time(self, detector, trending_candles):
        as_of = BASE_TIME.replace(year=2025)
        assert detector.detect(trending_candles, as_of=as_of).timestamp == as_of

    def test_news_accepted(self, detector, random_candles):
        news = [NewsEvent(time=BASE_TIME, currency="USD", impact=8, sentiment=-5)]
        regime = detector.detect(random_candles, news=news)
        assert regime.type in DETECTABLE_REGIMES

    def test_risk_multiplier_uses_regime_table(self, detector, trending_candles):
        regime = detector.detect(trending_candles)
        base = detector.config.risk_multipliers['trending_bullish']
        assert 0 < regime.risk_multiplier <= base


class TestTransitionsAndWeights:
    """Test transition log and adaptive factor weights."""

    def test_transition_recorded(self, detector, trending_candles, bearish_candles):
        detector.detect(trending_candles)
        detector.detect(bearish_candles)

        history = detector.get_transition_history()
        assert len(history) == 1
        assert history[0].from_regime is RegimeType.TRENDING_BULLISH
        assert history[0].to_regime is RegimeType.TRENDING_BEARISH

    def test_no_transition_for_same_regime(self, detector, trending_candles):
        detector.detect(trending_candles)
        detector.detect(trending_candles)
        assert detector.get_transition_history() == []

    def test_transition_log_is_capped(self, trending_candles, bearish_candles):
        detector = RegimeDetector(RegimeConfig(transition_history_size=3))
        for _ in range(4):
            detector.detect(trending_candles)
            detector.detect(bearish_candles)
        assert len(detector.get_transition_history()) == 3

    def test_winning_factor_gains_weight(self, detector, trending_candles, bearish_candles):
        before = detector.get_adaptive_weights('trending_bullish')
        for _ in range(5):
            detector.update_factor_performance('technical', 'trending_bullish', True, 1.0)

        detector.detect(bearish_candles)
        detector.detect(trending_candles)

        after = detector.get_adaptive_weights('trending_bullish')
        assert after['technical'] / after['pattern'] > before['technical'] / before['pattern']
        assert np.mean(list(after.values())) == pytest.approx(1.0)

    def test_too_few_samples_keep_ratios(self, detector, trending_candles, bearish_candles):
        before = detector.get_adaptive_weights('trending_bullish')
        detector.update_factor_performance('technical', 'trending_bullish', True, 1.0)

        detector.detect(bearish_candles)
        detector.detect(trending_candles)

        after = detector.get_adaptive_weights('trending_bullish')
        assert after['technical'] / after['pattern'] == pytest.approx(before['technical'] / before['pattern'])

    def test_regime_stats(self, detector, trending_candles, bearish_candles):
        detector.detect(trending_candles)
        detector.detect(bearish_candles)
        stats = detector.get_regime_stats()
        assert stats['current_regime']['type'] == 'trending_bearish'
        assert len(stats['regime_history']) == 1
        assert set(stats['transition_matrix']) == {r.value for r in DETECTABLE_REGIMES}
