"""
Per-regime mutable state of the Regime-Adaptive Engine.

Held in one injectable object so the orchestrator owns it and tests can
build isolated instances. All reads and writes go through the engine while
holding ``lock``.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict

from edgeflow.adaptive.config import AdaptiveConfig
from edgeflow.adaptive.schemas import AdaptiveThreshold, OnlineLearningState
from edgeflow.regime.schemas import DETECTABLE_REGIMES


@dataclass
class AdaptiveState:
    thresholds: Dict[str, AdaptiveThreshold] = field(default_factory=dict)
    learning_states: Dict[str, OnlineLearningState] = field(default_factory=dict)
    realized_returns: Dict[str, Deque[float]] = field(default_factory=dict)
    rejection_log: Deque = field(default_factory=lambda: deque(maxlen=1000))
    rejection_appends: int = 0
    analysis_passes: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def initial(cls, config: AdaptiveConfig) -> 'AdaptiveState':
        """Seed thresholds and learning states for every detectable regime"""
        state = cls(rejection_log=deque(maxlen=config.rejection.log_size))
        for regime in DETECTABLE_REGIMES:
            state.threshold_for(regime.value, config)
            state.learning_state_for(regime.value, config)
        return state

    def threshold_for(self, regime: str, config: AdaptiveConfig) -> AdaptiveThreshold:
        threshold = self.thresholds.get(regime)
        if threshold is None:
            cfg = config.thresholds
            threshold = AdaptiveThreshold(
                regime=regime,
                threshold=cfg.defaults.get(regime, cfg.default_threshold),
                confidence=cfg.initial_confidence,
            )
            self.thresholds[regime] = threshold
        return threshold

    def learning_state_for(self, regime: str, config: AdaptiveConfig) -> OnlineLearningState:
        learning = self.learning_states.get(regime)
        if learning is None:
            cfg = config.learning
            learning = OnlineLearningState(
                regime=regime,
                win_rate=cfg.initial_win_rate,
                avg_return=cfg.initial_avg_return,
                volatility=cfg.initial_volatility,
                feature_weights={key: 1.0 for key in cfg.feature_keys},
            )
            self.learning_states[regime] = learning
            self.realized_returns[regime] = deque(maxlen=cfg.returns_window)
        return learning
