"""
Master Engine Configuration

Composes every layer's configuration into one versioned object.
Configuration hash is used for reproducibility of decisions.
"""

import dataclasses
import hashlib
import json
import logging
import os
import typing
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from edgeflow.adaptive.config import AdaptiveConfig
from edgeflow.barriers.config import BarrierConfig
from edgeflow.microstructure.config import MicrostructureConfig
from edgeflow.prediction.config import PredictionConfig
from edgeflow.regime.config import RegimeConfig

LOG = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """Feature flags and history capacities of the master orchestrator"""

    microstructure_filtering: bool = True
    dynamic_barriers: bool = True
    continuous_learning: bool = True
    portfolio_optimization: bool = True
    auto_threshold_adjustment: bool = True
    rejection_feedback: bool = True
    realtime_kpi_tracking: bool = True

    decision_history_size: int = 1000
    counterfactual_history_size: int = 1000
    kpi_history_size: int = 100
    kpi_window: int = 100
    counterfactual_window: int = 50

    default_order_units: float = 10000.0
    kelly_cap: float = 0.25
    kelly_edge_scale: float = 0.1
    regime_shift_probability: float = 0.15
    high_utilization: float = 0.8


def _unwrap(hint):
    """Optional[X] → X"""
    args = [a for a in typing.get_args(hint) if a is not type(None)]
    if typing.get_origin(hint) is typing.Union and len(args) == 1:
        return args[0]
    return hint


def _build(cls, data: Dict):
    """Rebuild a (possibly nested) config dataclass from plain JSON data"""
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        hint = _unwrap(hints.get(f.name))
        if dataclasses.is_dataclass(hint) and isinstance(value, dict):
            value = _build(hint, value)
        elif typing.get_origin(hint) in (dict, Dict) and isinstance(value, dict):
            inner = typing.get_args(hint)[1] if typing.get_args(hint) else None
            if dataclasses.is_dataclass(inner):
                value = {k: _build(inner, v) for k, v in value.items()}
        elif isinstance(f.default, tuple) and isinstance(value, list):
            value = tuple(value)
        kwargs[f.name] = value
    return cls(**kwargs)


@dataclass
class EngineConfig:
    """
    Master configuration for the decision engine.

    Every illustrative constant (impact lambda, spread base, Monte-Carlo
    trial count) is a parameter here so it can be calibrated without code
    changes.
    """

    config_version: str = "1.0.0"

    regime: RegimeConfig = field(default_factory=RegimeConfig)
    barriers: BarrierConfig = field(default_factory=BarrierConfig)
    microstructure: MicrostructureConfig = field(default_factory=MicrostructureConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    # Simulation randomness
    mc_seed: int = 42
    mc_trials: Optional[int] = None  # overrides both Monte-Carlo trial counts when set

    def __post_init__(self):
        if self.mc_trials is not None:
            self.prediction.meta.monte_carlo_trials = int(self.mc_trials)
            self.adaptive.edge.simulation_trials = int(self.mc_trials)

    def get_config_hash(self) -> str:
        """Deterministic hash of the configuration"""
        config_str = json.dumps(self._to_dict_no_hash(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    def _to_dict_no_hash(self) -> dict:
        return dataclasses.asdict(self)

    def to_dict(self) -> dict:
        d = self._to_dict_no_hash()
        d["config_hash"] = self.get_config_hash()
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'EngineConfig':
        """Create config from dictionary (config_hash is ignored)"""
        data = {k: v for k, v in config_dict.items() if k != "config_hash"}
        return _build(cls, data)

    @classmethod
    def from_file(cls, path: str) -> 'EngineConfig':
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """
        Load configuration from the environment (and a .env file).

        EDGEFLOW_CONFIG_PATH: JSON config file
        EDGEFLOW_MC_SEED: Monte-Carlo seed
        EDGEFLOW_MC_TRIALS: Monte-Carlo trial count
        """
        load_dotenv()
        path = os.getenv("EDGEFLOW_CONFIG_PATH")
        config = cls.from_file(path) if path else cls()

        seed = os.getenv("EDGEFLOW_MC_SEED")
        if seed:
            config.mc_seed = int(seed)
        trials = os.getenv("EDGEFLOW_MC_TRIALS")
        if trials:
            config.mc_trials = int(trials)
            config.__post_init__()

        LOG.info(f"Engine config loaded (hash {config.get_config_hash()}, seed {config.mc_seed})")
        return config

