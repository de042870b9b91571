"""
Typed errors raised for invalid caller input.

Rejections and insufficient data are normal outcomes and never raise.
"""


class EdgeflowError(Exception):
    """Base class for all edgeflow errors"""
    pass


class InvalidPortfolioStateError(EdgeflowError, ValueError):
    """Portfolio snapshot cannot be used for sizing or risk gating"""
    pass


class InvalidMarketDataError(EdgeflowError, ValueError):
    """Market snapshot is malformed (missing columns, non-positive prices)"""
    pass
