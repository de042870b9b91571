"""
Master Orchestrator

Drives one decision cycle across every layer, attaches scenarios, warnings
and suggestions, and tracks system KPIs from the rolling histories.

Flow:
    Snapshot → Regime → Microstructure → Candidates → Barriers → Meta → Gates → Best → Recommendation
"""

from edgeflow.orchestrator.config import EngineConfig, OrchestratorConfig
from edgeflow.orchestrator.schemas import (
    DecisionAction,
    ExecutionPlan,
    SystemKPIs,
    SystemDecision,
    AlternativeScenario,
    TradingRecommendation,
    CounterfactualAnalysis,
)
from edgeflow.orchestrator.kpis import KPICalculator
from edgeflow.orchestrator.engine import MasterOrchestrator

__version__ = "1.0.0"

__all__ = [
    'EngineConfig',
    'OrchestratorConfig',
    'DecisionAction',
    'ExecutionPlan',
    'SystemKPIs',
    'SystemDecision',
    'AlternativeScenario',
    'TradingRecommendation',
    'CounterfactualAnalysis',
    'KPICalculator',
    'MasterOrchestrator',
]
