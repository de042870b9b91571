"""
Regime Detector

Classifies current market behaviour into a discrete regime with confidence,
risk multiplier and per-factor adjustment weights.

Flow:
    Candles + Volume + News → Observations → Emission likelihoods → MarketRegime
"""

from edgeflow.regime.config import RegimeConfig, ObservationConfig, FACTOR_TYPES
from edgeflow.regime.detector import RegimeDetector
from edgeflow.regime.schemas import (
    RegimeType,
    OrderFlowBias,
    MarketObservation,
    RegimeMicrostructure,
    MarketRegime,
    RegimeTransition,
    FactorPerformance,
    DETECTABLE_REGIMES,
)

__version__ = "1.0.0"

__all__ = [
    'RegimeConfig',
    'ObservationConfig',
    'FACTOR_TYPES',
    'RegimeDetector',
    'RegimeType',
    'OrderFlowBias',
    'MarketObservation',
    'RegimeMicrostructure',
    'MarketRegime',
    'RegimeTransition',
    'FactorPerformance',
    'DETECTABLE_REGIMES',
]
