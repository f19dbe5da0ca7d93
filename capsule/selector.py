"""Index selection for message discovery.

Discovery is browsing, not a lottery: the default selector is a pure function
of the stored seed and the clock, so anyone reading state can predict it.
"""

from abc import ABC, abstractmethod


class RandomSelector(ABC):
    """Interface for discovery index generators.

    ``select`` receives the stored seed, the current height and the number of
    messages (always > 0) and returns ``(next_seed, index)``.
    """

    @abstractmethod
    def select(self, seed: int, height: int, total: int) -> tuple[int, int]:
        ...


class SeedSelector(RandomSelector):
    """Pick ``seed mod total`` and advance the seed by the height."""

    def select(self, seed: int, height: int, total: int) -> tuple[int, int]:
        return seed + height, seed % total
