"""
Edgeflow

Regime-adaptive trading decision engine.

Flow:
    MarketSnapshot + PortfolioState → MasterOrchestrator → TradingRecommendation
"""

from edgeflow.common.errors import EdgeflowError, InvalidMarketDataError, InvalidPortfolioStateError
from edgeflow.common.schemas import (
    Direction,
    MarketSnapshot,
    NewsEvent,
    OpenPosition,
    OrderBook,
    OrderBookLevel,
    PortfolioState,
    Reason,
    ReasonCategory,
    Trade,
    candles_from_records,
)
from edgeflow.orchestrator import (
    DecisionAction,
    EngineConfig,
    MasterOrchestrator,
    SystemDecision,
    TradingRecommendation,
)

__version__ = "1.0.0"

__all__ = [
    'EdgeflowError',
    'InvalidMarketDataError',
    'InvalidPortfolioStateError',
    'Direction',
    'MarketSnapshot',
    'NewsEvent',
    'OpenPosition',
    'OrderBook',
    'OrderBookLevel',
    'PortfolioState',
    'Reason',
    'ReasonCategory',
    'Trade',
    'candles_from_records',
    'DecisionAction',
    'EngineConfig',
    'MasterOrchestrator',
    'SystemDecision',
    'TradingRecommendation',
]
