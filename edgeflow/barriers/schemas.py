"""
Barrier Schemas
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from edgeflow.common.schemas import Direction


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIME_EXIT = "time_exit"
    HIGH_VOLATILITY = "high_volatility"
    LOW_EFFICIENCY = "low_efficiency"
    ADVERSE_EXCURSION = "adverse_excursion"
    TIME_DECAY = "time_decay"


@dataclass(frozen=True)
class BarrierLevels:
    """Stop-loss, take-profit and time exit for one trade"""
    take_profit: float
    stop_loss: float
    entry_price: float
    direction: Direction
    entry_time: datetime
    time_exit: datetime
    current_atr: float
    regime: str
    confidence: float

    @property
    def tp_distance(self) -> float:
        return abs(self.take_profit - self.entry_price)

    @property
    def sl_distance(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    @property
    def risk_reward(self) -> Optional[float]:
        """Reward per unit risk, None when the stop sits on the entry"""
        if self.sl_distance <= 0:
            return None
        return self.tp_distance / self.sl_distance

    @property
    def holding_hours(self) -> float:
        return (self.time_exit - self.entry_time).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            'take_profit': float(self.take_profit),
            'stop_loss': float(self.stop_loss),
            'entry_price': float(self.entry_price),
            'direction': self.direction.value,
            'entry_time': self.entry_time.isoformat(),
            'time_exit': self.time_exit.isoformat(),
            'current_atr': float(self.current_atr),
            'regime': self.regime,
            'confidence': float(self.confidence),
            'risk_reward': None if self.risk_reward is None else float(self.risk_reward),
        }


@dataclass(frozen=True)
class PathMetrics:
    """Excursion and efficiency statistics of the price path since entry"""
    max_favorable: float = 0.0
    max_adverse: float = 0.0
    realized_volatility: float = 0.0
    directional_efficiency: float = 0.0
    current_return: float = 0.0
    path_length: int = 0
    time_decay: float = 0.0

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class BarrierProgress:
    """Outcome of one monitoring step"""
    should_exit: bool
    path_metrics: PathMetrics
    exit_reason: Optional[ExitReason] = None
    message: str = ""
    new_barriers: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'should_exit': self.should_exit,
            'exit_reason': self.exit_reason.value if self.exit_reason else None,
            'message': self.message,
            'new_barriers': {k: float(v) for k, v in self.new_barriers.items()},
            'path_metrics': self.path_metrics.to_dict(),
        }
