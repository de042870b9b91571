"""
Random sources for Monte-Carlo simulation.

Simulations never draw from global state. Each simulation asks its source
for a generator, so a seeded source replays the same draws for the same
inputs and decisions stay reproducible.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np


class RandomSource(ABC):
    """Supplies numpy generators to simulation code"""

    @abstractmethod
    def generator(self) -> np.random.Generator:
        """Generator for one simulation"""


class SeededRandomSource(RandomSource):
    """Fresh generator with a fixed seed for every simulation"""

    def __init__(self, seed: int = 42):
        self.seed = seed

    def generator(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)

    def __repr__(self) -> str:
        return f"SeededRandomSource(seed={self.seed})"


class EntropyRandomSource(RandomSource):
    """Unseeded source for live exploration; decisions are not reproducible"""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self._rng = rng or np.random.default_rng()

    def generator(self) -> np.random.Generator:
        return self._rng
