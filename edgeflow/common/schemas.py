"""
Shared Input Schemas

Plain data consumed from the ingestion layer: candles, order book snapshots,
trade prints, news events and the portfolio snapshot. Also holds the
structured reason type used for decision explainability.

Candles are a pandas DataFrame with columns open, high, low, close, volume
and either a 'timestamp' column or a DatetimeIndex.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence

import pandas as pd

from edgeflow.common.errors import InvalidMarketDataError, InvalidPortfolioStateError

CANDLE_COLUMNS = ['open', 'high', 'low', 'close', 'volume']

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Direction(str, Enum):
    """Trade or factor direction"""
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"

    @property
    def sign(self) -> int:
        if self is Direction.BUY:
            return 1
        if self is Direction.SELL:
            return -1
        return 0


class ReasonCategory(str, Enum):
    """Tag attached to every reasoning line of a decision"""
    INSUFFICIENT_CONFLUENCE = "insufficient_confluence"
    REGIME_THRESHOLD = "regime_threshold"
    PORTFOLIO = "portfolio"
    MICROSTRUCTURE = "microstructure"
    TIMING = "timing"
    ACCEPTANCE = "acceptance"
    META_MODEL = "meta_model"
    EDGE = "edge"


@dataclass(frozen=True)
class Reason:
    """One tagged, human-readable line of decision reasoning"""
    category: ReasonCategory
    message: str

    def to_dict(self) -> dict:
        return {'category': self.category.value, 'message': self.message}

    def __str__(self) -> str:
        return self.message


def to_utc(ts) -> datetime:
    """Coerce a datetime-like value to an aware UTC datetime"""
    stamp = pd.Timestamp(ts)
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize('UTC')
    else:
        stamp = stamp.tz_convert('UTC')
    return stamp.to_pydatetime()


def candle_timestamps(candles: pd.DataFrame) -> Optional[pd.DatetimeIndex]:
    """Timestamps of a candle frame, or None when the frame carries none"""
    if candles is None or candles.empty:
        return None
    if 'timestamp' in candles.columns:
        return pd.DatetimeIndex(pd.to_datetime(candles['timestamp'], utc=True))
    if isinstance(candles.index, pd.DatetimeIndex):
        index = candles.index
        return index.tz_localize('UTC') if index.tz is None else index.tz_convert('UTC')
    return None


def last_candle_time(candles: pd.DataFrame) -> Optional[datetime]:
    """Timestamp of the most recent candle"""
    stamps = candle_timestamps(candles)
    if stamps is None or len(stamps) == 0:
        return None
    return stamps[-1].to_pydatetime()


def candles_from_records(records: Sequence[Dict]) -> pd.DataFrame:
    """
    Build a candle frame from a list of dict records.

    Args:
        records: Dicts with open/high/low/close/volume and optional timestamp

    Returns:
        DataFrame with float OHLCV columns (and timestamp when provided)
    """
    frame = pd.DataFrame(list(records))
    if frame.empty:
        return pd.DataFrame(columns=CANDLE_COLUMNS)
    if 'volume' not in frame.columns:
        frame['volume'] = 0.0
    for col in CANDLE_COLUMNS:
        if col in frame.columns:
            frame[col] = frame[col].astype(float)
    if 'timestamp' in frame.columns:
        frame['timestamp'] = pd.to_datetime(frame['timestamp'], utc=True)
    return frame.reset_index(drop=True)


@dataclass(frozen=True)
class OrderBookLevel:
    """Single price level of the order book"""
    price: float
    size: float
    count: int = 1


@dataclass
class OrderBook:
    """Order book snapshot, best levels first"""
    bids: List[OrderBookLevel]
    asks: List[OrderBookLevel]
    timestamp: datetime
    spread: Optional[float] = None

    def __post_init__(self):
        if self.spread is None:
            if self.bids and self.asks:
                self.spread = self.asks[0].price - self.bids[0].price
            else:
                self.spread = 0.0

    @property
    def mid(self) -> float:
        if self.bids and self.asks:
            return (self.bids[0].price + self.asks[0].price) / 2
        return 0.0

    @property
    def total_size(self) -> float:
        return sum(level.size for level in self.bids) + sum(level.size for level in self.asks)


@dataclass(frozen=True)
class Trade:
    """Executed trade print"""
    price: float
    size: float
    side: Direction
    timestamp: datetime


@dataclass(frozen=True)
class NewsEvent:
    """Economic or news event with impact on a 0-10 scale"""
    time: datetime
    currency: str = ""
    impact: float = 0.0
    sentiment: float = 0.0


@dataclass(frozen=True)
class OpenPosition:
    """Open position held by the portfolio"""
    symbol: str
    side: Direction
    size: float = 0.0
    entry_price: float = 0.0


@dataclass
class PortfolioState:
    """Portfolio snapshot supplied by the bookkeeping layer"""
    balance: float
    equity: float
    total_capital: float
    allocated_capital: float = 0.0
    total_risk: float = 1.0
    sharpe_ratio: float = 0.0
    open_positions: List[OpenPosition] = field(default_factory=list)

    @property
    def utilization(self) -> float:
        return self.allocated_capital / self.total_capital

    def validate(self) -> 'PortfolioState':
        """
        Check the snapshot is usable.

        Raises:
            InvalidPortfolioStateError: non-finite values, non-positive
                capital or risk budget, negative allocation
        """
        numbers = {
            'balance': self.balance,
            'equity': self.equity,
            'total_capital': self.total_capital,
            'allocated_capital': self.allocated_capital,
            'total_risk': self.total_risk,
            'sharpe_ratio': self.sharpe_ratio,
        }
        for name, value in numbers.items():
            if value is None or not math.isfinite(float(value)):
                raise InvalidPortfolioStateError(f"{name} must be a finite number, got {value!r}")
        if self.total_capital <= 0:
            raise InvalidPortfolioStateError(f"total_capital must be positive, got {self.total_capital}")
        if self.allocated_capital < 0:
            raise InvalidPortfolioStateError(f"allocated_capital cannot be negative, got {self.allocated_capital}")
        if self.total_risk <= 0:
            raise InvalidPortfolioStateError(f"total_risk must be positive, got {self.total_risk}")
        return self

    def to_dict(self) -> dict:
        return {
            'balance': float(self.balance),
            'equity': float(self.equity),
            'total_capital': float(self.total_capital),
            'allocated_capital': float(self.allocated_capital),
            'total_risk': float(self.total_risk),
            'sharpe_ratio': float(self.sharpe_ratio),
            'open_positions': [
                {'symbol': p.symbol, 'side': p.side.value, 'size': p.size, 'entry_price': p.entry_price}
                for p in self.open_positions
            ],
        }


@dataclass
class MarketSnapshot:
    """Everything the pipeline needs for one decision cycle"""
    candles: pd.DataFrame
    current_price: float
    volume: Optional[List[float]] = None
    order_book: Optional[OrderBook] = None
    recent_trades: Optional[List[Trade]] = None
    news: List[NewsEvent] = field(default_factory=list)
    as_of: Optional[datetime] = None

    @property
    def timestamp(self) -> datetime:
        """Decision time: explicit as_of, else last candle, else order book, else epoch"""
        if self.as_of is not None:
            return to_utc(self.as_of)
        last = last_candle_time(self.candles)
        if last is not None:
            return last
        if self.order_book is not None:
            return to_utc(self.order_book.timestamp)
        return EPOCH

    @property
    def volume_series(self) -> List[float]:
        if self.volume is not None:
            return list(self.volume)
        if self.candles is None or self.candles.empty:
            return []
        return self.candles['volume'].astype(float).tolist()

    def validate(self) -> 'MarketSnapshot':
        """
        Check the snapshot is well formed.

        Raises:
            InvalidMarketDataError: missing candle columns or non-positive prices
        """
        if self.candles is None:
            raise InvalidMarketDataError("candles must be a DataFrame (possibly empty)")
        if not self.candles.empty:
            missing = [c for c in CANDLE_COLUMNS if c not in self.candles.columns]
            if missing:
                raise InvalidMarketDataError(f"candles missing columns: {missing}")
            prices = self.candles[['open', 'high', 'low', 'close']]
            if (prices <= 0).any().any():
                raise InvalidMarketDataError("candle prices must be positive")
        if not self.current_price or self.current_price <= 0:
            raise InvalidMarketDataError(f"current_price must be positive, got {self.current_price}")
        return self
