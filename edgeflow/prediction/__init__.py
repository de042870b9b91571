"""
Two-Layer Prediction System

Flow:
    Candles + Regime → Factors → Candidates → Meta prediction → Enhanced signal
"""

from edgeflow.prediction.config import (
    PredictionConfig,
    BaseModelConfig,
    MetaModelConfig,
    EnhancementConfig,
)
from edgeflow.prediction.schemas import (
    FactorCategory,
    Recommendation,
    RiskProfile,
    TechnicalFactor,
    CandidateSignal,
    ExpectedOutcome,
    MarketConditions,
    MetaPrediction,
    EnhancedSignal,
    ModelPerformance,
    SignalRecord,
)
from edgeflow.prediction.base_model import CandidateDetector, candidate_id
from edgeflow.prediction.meta_model import MetaModel
from edgeflow.prediction.enhancement import SignalEnhancer
from edgeflow.prediction.system import TwoLayerPredictionSystem

__version__ = "1.0.0"

__all__ = [
    'PredictionConfig',
    'BaseModelConfig',
    'MetaModelConfig',
    'EnhancementConfig',
    'FactorCategory',
    'Recommendation',
    'RiskProfile',
    'TechnicalFactor',
    'CandidateSignal',
    'ExpectedOutcome',
    'MarketConditions',
    'MetaPrediction',
    'EnhancedSignal',
    'ModelPerformance',
    'SignalRecord',
    'CandidateDetector',
    'candidate_id',
    'MetaModel',
    'SignalEnhancer',
    'TwoLayerPredictionSystem',
]
