"""
Primitive Transform Module

Indicator building blocks shared by the regime detector, the base model,
the meta model and the barrier calculator.
All transforms are causal (no lookahead) and deterministic.
"""

import logging
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import stats

LOG = logging.getLogger(__name__)


class PrimitiveTransforms:
    """
    Primitive transforms over candle columns.

    All functions:
        - Accept pandas Series (or array-likes where noted)
        - Use only data <= t for the value at t
        - Are deterministic
    """

    @staticmethod
    def rolling_mean(series: pd.Series, window: int) -> pd.Series:
        """Rolling mean ending at each timestamp (NaN for first window-1 values)"""
        return series.rolling(window=window, min_periods=window).mean()

    @staticmethod
    def rolling_max(series: pd.Series, window: int) -> pd.Series:
        """Rolling maximum ending at each timestamp"""
        return series.rolling(window=window, min_periods=window).max()

    @staticmethod
    def rolling_min(series: pd.Series, window: int) -> pd.Series:
        """Rolling minimum ending at each timestamp"""
        return series.rolling(window=window, min_periods=window).min()

    @staticmethod
    def simple_returns(close: pd.Series) -> pd.Series:
        """Bar-to-bar simple returns, first bar dropped"""
        return close.pct_change().iloc[1:]

    @staticmethod
    def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
        """
        True Range for every bar after the first.

        TR = max(high - low, |high - close_prev|, |low - close_prev|)
        """
        prev_close = close.shift(1)
        hl = high - low
        hc = (high - prev_close).abs()
        lc = (low - prev_close).abs()
        tr = pd.concat([hl, hc, lc], axis=1).max(axis=1)
        return tr.iloc[1:]

    @staticmethod
    def latest_atr(candles: pd.DataFrame, period: int, default: float = 0.0) -> float:
        """
        Average of the last `period` true ranges.

        Args:
            candles: Candle frame
            period: Number of true ranges averaged
            default: Value returned when fewer than period+1 candles exist

        Returns:
            ATR in price units
        """
        if candles is None or len(candles) < period + 1:
            return default
        tr = PrimitiveTransforms.true_range(candles['high'], candles['low'], candles['close'])
        return float(tr.iloc[-period:].mean())

    @staticmethod
    def rsi(close: pd.Series, period: int = 14) -> pd.Series:
        """
        Relative Strength Index with simple averages of gains and losses.

        RSI = 100 - 100 / (1 + avg_gain / avg_loss); 100 when avg_loss is zero.
        """
        change = close.diff().iloc[1:]
        gains = change.clip(lower=0)
        losses = (-change).clip(lower=0)
        avg_gain = PrimitiveTransforms.rolling_mean(gains, period)
        avg_loss = PrimitiveTransforms.rolling_mean(losses, period)
        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - 100 / (1 + rs)
        rsi = rsi.where(avg_loss != 0, 100.0)
        return rsi.where(avg_gain.notna())

    @staticmethod
    def ema(series: pd.Series, period: int) -> pd.Series:
        """
        Exponential moving average seeded with the SMA of the first `period` values.

        Values before the seed are NaN.
        """
        values = series.to_numpy(dtype=float)
        out = np.full(len(values), np.nan)
        if len(values) < period:
            return pd.Series(out, index=series.index)
        multiplier = 2.0 / (period + 1)
        out[period - 1] = values[:period].mean()
        for i in range(period, len(values)):
            out[i] = (values[i] - out[i - 1]) * multiplier + out[i - 1]
        return pd.Series(out, index=series.index)

    @staticmethod
    def macd(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
        """
        MACD line, signal line and histogram.

        Rows before the signal line exists are dropped.
        """
        macd_line = (PrimitiveTransforms.ema(close, fast) - PrimitiveTransforms.ema(close, slow)).dropna()
        signal_line = PrimitiveTransforms.ema(macd_line, signal)
        frame = pd.DataFrame({'macd': macd_line, 'signal': signal_line}).dropna()
        frame['histogram'] = frame['macd'] - frame['signal']
        return frame

    @staticmethod
    def bollinger_bands(close: pd.Series, period: int = 20, num_std: float = 2.0) -> pd.DataFrame:
        """Bollinger bands using the population standard deviation"""
        middle = PrimitiveTransforms.rolling_mean(close, period)
        std = close.rolling(window=period, min_periods=period).std(ddof=0)
        frame = pd.DataFrame({
            'upper': middle + num_std * std,
            'middle': middle,
            'lower': middle - num_std * std,
        })
        return frame.dropna()

    @staticmethod
    def stochastic(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        k_period: int = 14,
        d_period: int = 3,
        smooth: int = 3
    ) -> pd.DataFrame:
        """
        Slow stochastic oscillator.

        %K_raw = (close - lowest_low) / (highest_high - lowest_low) * 100
        %K = SMA(%K_raw, smooth), %D = SMA(%K, d_period)
        A flat window yields a neutral 50.
        """
        highest = PrimitiveTransforms.rolling_max(high, k_period)
        lowest = PrimitiveTransforms.rolling_min(low, k_period)
        span = (highest - lowest).replace(0, np.nan)
        raw_k = ((close - lowest) / span * 100).where(highest.notna())
        raw_k = raw_k.fillna(50.0).where(highest.notna())
        k = PrimitiveTransforms.rolling_mean(raw_k, smooth)
        d = PrimitiveTransforms.rolling_mean(k, d_period)
        return pd.DataFrame({'k': k, 'd': d}).dropna()

    @staticmethod
    def obv(close: pd.Series, volume: pd.Series) -> pd.Series:
        """On-balance volume seeded with the first bar's volume"""
        direction = np.sign(close.diff().fillna(0.0))
        signed = direction * volume
        signed.iloc[0] = volume.iloc[0]
        return signed.cumsum()

    @staticmethod
    def rate_of_change(close: pd.Series, period: int = 14) -> pd.Series:
        """Percent change over `period` bars"""
        return ((close / close.shift(period) - 1) * 100).dropna()

    @staticmethod
    def slope(values: Sequence[float]) -> float:
        """Least-squares slope against bar index"""
        y = np.asarray(values, dtype=float)
        if len(y) < 2:
            return 0.0
        x = np.arange(len(y), dtype=float)
        return float(stats.linregress(x, y).slope)

    @staticmethod
    def realized_volatility(close: pd.Series) -> float:
        """Root-mean-square of simple returns (not annualised)"""
        returns = PrimitiveTransforms.simple_returns(close)
        if len(returns) == 0:
            return 0.0
        return float(np.sqrt(np.mean(np.square(returns.to_numpy()))))
