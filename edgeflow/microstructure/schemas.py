"""
Microstructure Schemas

Order flow, liquidity and execution quality metrics, the microstructure
state built from them, and the verdicts returned to the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from edgeflow.common.schemas import EPOCH


class MicrostructureRegime(str, Enum):
    NORMAL = "normal"
    STRESSED = "stressed"
    ILLIQUID = "illiquid"
    TOXIC = "toxic"
    SWEEP_ZONE = "sweep_zone"


class SweepDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class EntryTiming(str, Enum):
    IMMEDIATE = "immediate"
    WAIT = "wait"
    POST_SWEEP = "post_sweep"


@dataclass(frozen=True)
class OrderFlowMetrics:
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    net_order_flow: float = 0.0
    vwap: float = 0.0
    order_imbalance: float = 0.0      # [-1, 1]
    aggressive_ratio: float = 0.0
    liquidity_taken_ratio: float = 0.0

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class LiquidityMetrics:
    bid_liquidity: float = 0.0
    ask_liquidity: float = 0.0
    total_liquidity: float = 0.0
    liquidity_imbalance: float = 0.0
    average_order_size: float = 0.0
    order_book_depth: int = 0
    resilience: float = 0.5
    toxic_liquidity_score: float = 0.0   # [0, 1]

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class ExecutionQuality:
    expected_slippage: float = 0.0
    market_impact: float = 0.0
    timing_risk: float = 0.5
    liquidity_sweep_risk: float = 0.0
    execution_score: float = 50.0        # [0, 100]
    execution_delay_minutes: float = 0.0
    recommended_order_size: float = 10000.0

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class LiquiditySweep:
    """Anticipated run through resting liquidity at S/R levels"""
    direction: SweepDirection
    levels: List[float]
    estimated_volume: float
    probability: float
    time_window: float  # minutes
    trigger_price: float

    def to_dict(self) -> dict:
        return {
            'direction': self.direction.value,
            'levels': [float(x) for x in self.levels],
            'estimated_volume': float(self.estimated_volume),
            'probability': float(self.probability),
            'time_window': float(self.time_window),
            'trigger_price': float(self.trigger_price),
        }


@dataclass(frozen=True)
class MicrostructureState:
    """Microstructure picture for one order book snapshot"""
    order_flow: OrderFlowMetrics
    liquidity: LiquidityMetrics
    execution: ExecutionQuality
    regime: MicrostructureRegime
    confidence: float
    timestamp: datetime
    sweeps: List[LiquiditySweep] = field(default_factory=list)

    @property
    def optimal_execution_time(self) -> datetime:
        return self.timestamp + timedelta(minutes=self.execution.execution_delay_minutes)

    @classmethod
    def default(cls, timestamp: datetime = EPOCH) -> 'MicrostructureState':
        """Neutral state used when no order book data is available"""
        return cls(
            order_flow=OrderFlowMetrics(),
            liquidity=LiquidityMetrics(),
            execution=ExecutionQuality(),
            regime=MicrostructureRegime.NORMAL,
            confidence=0.0,
            timestamp=timestamp,
        )

    def to_dict(self) -> dict:
        return {
            'order_flow': self.order_flow.to_dict(),
            'liquidity': self.liquidity.to_dict(),
            'execution': self.execution.to_dict(),
            'regime': self.regime.value,
            'confidence': float(self.confidence),
            'timestamp': self.timestamp.isoformat(),
            'optimal_execution_time': self.optimal_execution_time.isoformat(),
            'sweeps': [s.to_dict() for s in self.sweeps],
        }


@dataclass(frozen=True)
class RejectionVerdict:
    reject: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {'reject': self.reject, 'reason': self.reason}


@dataclass(frozen=True)
class TimingAdvice:
    timing: EntryTiming
    reason: str
    wait_minutes: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'timing': self.timing.value,
            'reason': self.reason,
            'wait_minutes': None if self.wait_minutes is None else float(self.wait_minutes),
        }
