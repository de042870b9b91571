"""
Shared fixtures: synthetic hourly UTC candles and portfolio snapshots.
"""

from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest

from edgeflow.common.schemas import PortfolioState

BASE_TIME = datetime(2024, 1, 8, tzinfo=timezone.utc)


def build_candles(returns, start_price: float = 1.10, wick: float = 0.0003, volume=None) -> pd.DataFrame:
    """Hourly candles whose closes follow the given simple returns"""
    returns = np.asarray(returns, dtype=float)
    n = len(returns)
    close = start_price * np.cumprod(1 + returns)
    open_ = np.concatenate([[start_price], close[:-1]])
    if volume is None:
        volume = np.full(n, 2000.0)
    return pd.DataFrame({
        'timestamp': pd.date_range(BASE_TIME, periods=n, freq='h'),
        'open': open_,
        'high': np.maximum(open_, close) + wick,
        'low': np.minimum(open_, close) - wick,
        'close': close,
        'volume': np.asarray(volume, dtype=float),
    })


@pytest.fixture
def random_candles():
    """200 bars of noisy, driftless prices"""
    np.random.seed(42)
    return build_candles(np.random.normal(0, 0.0008, 200), volume=np.random.uniform(1000, 5000, 200))


@pytest.fixture
def trending_candles():
    """200 bars with a strong, steady uptrend"""
    np.random.seed(42)
    returns = np.random.normal(0.0015, 0.0003, 200)
    return build_candles(returns, wick=0.0002, volume=np.random.uniform(1500, 2500, 200))


@pytest.fixture
def short_candles():
    """Fewer bars than any layer needs"""
    np.random.seed(42)
    return build_candles(np.random.normal(0, 0.0008, 10))


@pytest.fixture
def empty_candles():
    return pd.DataFrame(columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])


@pytest.fixture
def portfolio():
    return PortfolioState(
        balance=100000.0,
        equity=100000.0,
        total_capital=100000.0,
        allocated_capital=20000.0,
        total_risk=1.0,
        sharpe_ratio=1.0,
    )


@pytest.fixture
def make_regime():
    """Factory for hand-built regimes on top of the neutral regime"""
    from dataclasses import replace

    from edgeflow.regime.detector import RegimeDetector
    from edgeflow.regime.schemas import RegimeType

    def _make(regime_type: str = 'trending_bullish', timestamp: datetime = None, **overrides):
        base = RegimeDetector().neutral_regime(timestamp or BASE_TIME.replace(hour=12))
        fields = {'type': RegimeType(regime_type), 'confidence': 0.8, 'risk_multiplier': 1.0}
        fields.update(overrides)
        return replace(base, **fields)

    return _make
