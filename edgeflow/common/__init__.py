"""
Common - shared inputs, errors, explainability and indicator primitives.
"""

from edgeflow.common.errors import (
    EdgeflowError,
    InvalidPortfolioStateError,
    InvalidMarketDataError,
)
from edgeflow.common.schemas import (
    Direction,
    ReasonCategory,
    Reason,
    OrderBookLevel,
    OrderBook,
    Trade,
    NewsEvent,
    OpenPosition,
    PortfolioState,
    MarketSnapshot,
    candles_from_records,
)
from edgeflow.common.primitives import PrimitiveTransforms
from edgeflow.common.random_source import RandomSource, SeededRandomSource, EntropyRandomSource

__all__ = [
    'EdgeflowError',
    'InvalidPortfolioStateError',
    'InvalidMarketDataError',
    'Direction',
    'ReasonCategory',
    'Reason',
    'OrderBookLevel',
    'OrderBook',
    'Trade',
    'NewsEvent',
    'OpenPosition',
    'PortfolioState',
    'MarketSnapshot',
    'candles_from_records',
    'PrimitiveTransforms',
    'RandomSource',
    'SeededRandomSource',
    'EntropyRandomSource',
]
