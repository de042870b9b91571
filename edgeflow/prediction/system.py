"""
Two-Layer Prediction System

Layer 1 (CandidateDetector) over-generates candidates from factor
confluence. Layer 2 (MetaModel) estimates the probability that the
take-profit is hit first. The enhancer scores and tiers the pair.

Candidates, meta predictions and enhanced signals are kept in bounded
histories; realised outcomes fed back through record_outcome drive the
historical adjustment and the performance metrics.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from edgeflow.barriers.schemas import BarrierLevels
from edgeflow.common.random_source import RandomSource
from edgeflow.common.schemas import NewsEvent
from edgeflow.prediction.base_model import CandidateDetector
from edgeflow.prediction.config import PredictionConfig
from edgeflow.prediction.enhancement import SignalEnhancer
from edgeflow.prediction.meta_model import MetaModel
from edgeflow.prediction.schemas import (
    CandidateSignal,
    EnhancedSignal,
    MetaPrediction,
    ModelPerformance,
    SignalRecord,
)
from edgeflow.regime.schemas import MarketRegime

LOG = logging.getLogger(__name__)


class TwoLayerPredictionSystem:
    """Base model, meta model and enhancement with bounded histories"""

    def __init__(self, config: Optional[PredictionConfig] = None, random_source: Optional[RandomSource] = None):
        self.config = config or PredictionConfig()
        self.base_model = CandidateDetector(self.config.base)
        self.meta_model = MetaModel(self.config.meta, random_source)
        self.enhancer = SignalEnhancer(self.config.enhancement)

        size = self.config.history_size
        self.candidates: deque = deque(maxlen=size)
        self.meta_predictions: deque = deque(maxlen=size)
        self.enhanced_signals: deque = deque(maxlen=size)
        self.outcomes: Dict[str, float] = {}
        self._lock = threading.RLock()

        LOG.info("Two-layer prediction system initialized")

    # ========================================
    # PIPELINE
    # ========================================

    def detect_candidates(
        self,
        candles: pd.DataFrame,
        regime: MarketRegime,
        pair: str = "EUR/USD",
        as_of: Optional[datetime] = None,
        feature_weights: Optional[Dict[str, float]] = None
    ) -> List[CandidateSignal]:
        candidates = self.base_model.detect(candles, regime, pair, as_of, feature_weights)
        with self._lock:
            self.candidates.extend(candidates)
        return candidates

    def predict(
        self,
        candidate: CandidateSignal,
        candles: pd.DataFrame,
        regime: MarketRegime,
        barriers: BarrierLevels,
        news: Optional[Sequence[NewsEvent]] = None
    ) -> MetaPrediction:
        prediction = self.meta_model.predict(candidate, candles, regime, barriers, news, self.signal_records())
        with self._lock:
            self.meta_predictions.append(prediction)
        return prediction

    def enhance(self, candidate: CandidateSignal, meta: MetaPrediction) -> EnhancedSignal:
        signal = self.enhancer.enhance(candidate, meta)
        with self._lock:
            self.enhanced_signals.append(signal)
        return signal

    # ========================================
    # FEEDBACK
    # ========================================

    def record_outcome(self, signal_id: str, realized_return: float) -> bool:
        """
        Attach a realised return to a past enhanced signal.

        Returns:
            True if the signal is still in the history
        """
        with self._lock:
            known = any(s.id == signal_id for s in self.enhanced_signals)
            if known:
                self.outcomes[signal_id] = float(realized_return)
                live = {s.id for s in self.enhanced_signals}
                for stale in [k for k in self.outcomes if k not in live]:
                    del self.outcomes[stale]
            return known

    def signal_records(self) -> List[SignalRecord]:
        with self._lock:
            return [
                SignalRecord(
                    direction=s.direction,
                    regime=s.regime,
                    confidence=s.candidate.confidence,
                    probability_tp_first=s.meta.probability_tp_first,
                    expected_return=s.meta.expected_outcome.expected_return,
                    realized_return=self.outcomes.get(s.id),
                )
                for s in self.enhanced_signals
            ]

    def get_signal_history(self, limit: Optional[int] = None) -> List[EnhancedSignal]:
        with self._lock:
            history = list(self.enhanced_signals)
        return history[-limit:] if limit else history

    # ========================================
    # PERFORMANCE
    # ========================================

    def get_performance_metrics(self) -> ModelPerformance:
        """
        Metrics over signals with realised outcomes.

        Base model: accuracy of confidence > 0.5 as a win call, and the
        share of such calls that lost. Meta model: Brier score of the
        take-profit-first probability (calibration = 1 - Brier) and the
        MSE of the expected return. Combined: win rate, average return,
        Sharpe (mean / std) and max drawdown of cumulative returns.
        """
        performance = ModelPerformance()
        with self._lock:
            realised = [(s, self.outcomes[s.id]) for s in self.enhanced_signals if s.id in self.outcomes]
            total = len(self.enhanced_signals)

        performance.base_model['total_signals'] = total
        performance.meta_model['total_predictions'] = total
        if not realised:
            return performance

        wins = np.array([r > 0 for _, r in realised], dtype=float)
        returns = np.array([r for _, r in realised], dtype=float)
        confident = np.array([s.candidate.confidence > 0.5 for s, _ in realised])
        probabilities = np.array([s.meta.probability_tp_first for s, _ in realised])
        expected = np.array([s.meta.expected_outcome.expected_return for s, _ in realised])

        performance.base_model['signal_accuracy'] = float(np.mean(confident == (wins > 0)))
        if confident.any():
            performance.base_model['false_positive_rate'] = float(np.mean(wins[confident] == 0))

        brier = float(np.mean((probabilities - wins) ** 2))
        performance.meta_model['brier_score'] = brier
        performance.meta_model['probability_calibration'] = 1 - brier
        performance.meta_model['return_prediction_mse'] = float(np.mean((expected - returns) ** 2))

        std = float(np.std(returns))
        cumulative = np.cumsum(returns)
        drawdown = np.maximum.accumulate(np.maximum(cumulative, 0)) - cumulative
        performance.combined.update({
            'win_rate': float(wins.mean()),
            'avg_return': float(returns.mean()),
            'sharpe_ratio': float(returns.mean() / std) if std > 0 else 0.0,
            'max_drawdown': float(drawdown.max()),
            'realized_outcomes': len(realised),
        })
        return performance
