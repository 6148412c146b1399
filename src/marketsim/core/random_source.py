"""Injectable randomness for the generators."""

import random
from abc import ABC, abstractmethod
from typing import Optional


class RandomSource(ABC):
    """Source of uniform draws used by every generator."""

    @abstractmethod
    def uniform(self, low: float, high: float) -> float:
        """Return a float in ``[low, high]``."""

    @abstractmethod
    def randint(self, low: int, high: int) -> int:
        """Return an integer in ``[low, high]``."""

    def random(self) -> float:
        return self.uniform(0.0, 1.0)


class SeededRandomSource(RandomSource):
    """``random.Random`` wrapper; the same seed replays the same series."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = random.Random(seed)

    def uniform(self, low: float, high: float) -> float:
        return self._rng.uniform(low, high)

    def randint(self, low: int, high: int) -> int:
        return self._rng.randint(low, high)

    def random(self) -> float:
        return self._rng.random()
