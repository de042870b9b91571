"""
Decision Engine Demo

Runs the master orchestrator over synthetic market scenarios and feeds a
realised outcome back for counterfactual learning.
"""

import logging
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd

from edgeflow.common.schemas import (
    Direction,
    MarketSnapshot,
    OrderBook,
    OrderBookLevel,
    PortfolioState,
    Trade,
)
from edgeflow.orchestrator.config import EngineConfig
from edgeflow.orchestrator.engine import MasterOrchestrator

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

BASE_TIME = datetime(2024, 1, 8, tzinfo=timezone.utc)


def create_synthetic_candles(n_bars: int = 200, scenario: str = "trending_up") -> pd.DataFrame:
    """
    Create synthetic hourly candles.

    Scenarios:
        - trending_up: steady drift higher with small noise
        - ranging: mean-reverting around 1.10
        - shock: calm market followed by a sharp drop
    """
    np.random.seed(42)

    if scenario == "trending_up":
        returns = np.random.normal(0.0008, 0.0006, n_bars)
    elif scenario == "ranging":
        returns = np.random.normal(0.0, 0.0008, n_bars)
        returns -= np.convolve(returns, np.ones(5) / 5, mode='same')
    elif scenario == "shock":
        returns = np.random.normal(0.0, 0.0004, n_bars)
        returns[-5:] = -0.006
    else:
        raise ValueError(f"Unknown scenario: {scenario}")

    close = 1.10 * np.exp(np.cumsum(returns))
    open_ = np.concatenate([[1.10], close[:-1]])
    spread = np.abs(np.random.normal(0, 0.0004, n_bars))

    return pd.DataFrame({
        'timestamp': pd.date_range(BASE_TIME, periods=n_bars, freq='h'),
        'open': open_,
        'high': np.maximum(open_, close) + spread,
        'low': np.minimum(open_, close) - spread,
        'close': close,
        'volume': np.random.uniform(1000, 5000, n_bars),
    })


def create_order_book(price: float, size: float, when: datetime) -> OrderBook:
    return OrderBook(
        bids=[OrderBookLevel(price - 0.0001 * (i + 1), size) for i in range(5)],
        asks=[OrderBookLevel(price + 0.0001 * (i + 1), size) for i in range(5)],
        timestamp=when,
    )


def create_trades(price: float, when: datetime, n: int = 30):
    np.random.seed(7)
    return [
        Trade(
            price=price + np.random.normal(0, 0.0001),
            size=float(np.random.uniform(10000, 50000)),
            side=Direction.BUY if i % 3 else Direction.SELL,
            timestamp=when - timedelta(minutes=n - i),
        )
        for i in range(n)
    ]


def print_recommendation(title: str, recommendation):
    decision = recommendation.decision
    print("\n" + "=" * 80)
    print(f" {title}")
    print("=" * 80)
    print(f"Action:              {decision.action.value.upper()}")
    print(f"Confidence:          {decision.confidence:.3f}")
    print(f"Regime:              {decision.regime.type.value} (confidence {decision.regime.confidence:.2f})")
    print(f"Expected edge:       {decision.expected_edge:.5f}")
    print(f"Risk-adjusted edge:  {decision.risk_adjusted_edge:.5f}")
    print(f"Microstructure:      {decision.microstructure.regime.value}")

    if decision.signal:
        meta = decision.signal.meta
        print(f"Signal:              {decision.signal.id} {decision.signal.direction.value}")
        print(f"TP-first prob:       {meta.probability_tp_first:.3f} CI {meta.confidence_interval}")

    print("\nReasoning:")
    for reason in decision.reasoning:
        print(f"  [{reason.category.value}] {reason.message}")
    if recommendation.risk_warnings:
        print("\nRisk warnings:")
        for warning in recommendation.risk_warnings:
            print(f"  - {warning}")
    if recommendation.optimization_suggestions:
        print("\nSuggestions:")
        for suggestion in recommendation.optimization_suggestions:
            print(f"  - {suggestion}")


def main():
    config = EngineConfig(mc_seed=42)
    orchestrator = MasterOrchestrator(config)

    portfolio = PortfolioState(
        balance=100000.0,
        equity=100000.0,
        total_capital=100000.0,
        allocated_capital=20000.0,
        sharpe_ratio=1.1,
    )

    # Scenario 1: trending market, no order book
    candles = create_synthetic_candles(scenario="trending_up")
    snapshot = MarketSnapshot(candles=candles, current_price=float(candles['close'].iloc[-1]))
    trending = orchestrator.process_signal(snapshot, portfolio)
    print_recommendation("SCENARIO 1: TRENDING MARKET", trending)

    # Scenario 2: ranging market with a thin order book
    candles = create_synthetic_candles(scenario="ranging")
    price = float(candles['close'].iloc[-1])
    when = candles['timestamp'].iloc[-1].to_pydatetime()
    snapshot = MarketSnapshot(
        candles=candles,
        current_price=price,
        order_book=create_order_book(price, 500.0, when),
        recent_trades=create_trades(price, when),
    )
    print_recommendation("SCENARIO 2: RANGING MARKET, THIN BOOK", orchestrator.process_signal(snapshot, portfolio))

    # Scenario 3: not enough data
    empty = MarketSnapshot(candles=candles.iloc[:10], current_price=price)
    print_recommendation("SCENARIO 3: INSUFFICIENT DATA", orchestrator.process_signal(empty, portfolio))

    # Feedback loop
    signal_id = trending.decision.signal_id
    if signal_id:
        analysis = orchestrator.update_outcome(signal_id, 0.012)
        print(f"\nCounterfactual for {signal_id}: {analysis.to_dict()}")

    kpis = orchestrator.get_current_kpis()
    print("\nSystem KPIs:")
    for name, value in kpis.to_dict().items():
        print(f"  {name}: {value}")

    print(f"\nConfiguration: {orchestrator.get_configuration_status()}")


if __name__ == "__main__":
    main()
