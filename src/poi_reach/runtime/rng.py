# poi_reach/runtime/rng.py
from zlib import crc32

import numpy as np

_MASK = 0xFFFFFFFF


def _word(part: object) -> int:
    """One 32-bit entropy word per key part; ints map to themselves."""
    if isinstance(part, (int, np.integer)) and not isinstance(part, bool):
        return int(part) & _MASK
    text = part if isinstance(part, str) else repr(part)
    return crc32(text.encode("utf-8")) & _MASK


class RNGRegistry:
    """
    Named numpy Generators for synthetic datasets (POI scatters, road grids,
    query centers).

    A generator depends only on (master_seed, dataset, name, *parts), so POIs
    and roads can be drawn independently and in any order. Asking for the
    same key twice returns the same Generator, continuing its sequence.
    """

    def __init__(self, master_seed: int, *, dataset: str | int = 0):
        self.master_seed, self.dataset = int(master_seed) & _MASK, dataset
        self._generators: dict[tuple[int, ...], np.random.Generator] = {}

    def _entropy(self, name: str, parts: tuple) -> tuple[int, ...]:
        return (self.master_seed, _word(str(self.dataset)), _word(name), *map(_word, parts))

    def substream(self, name: str, *parts: object) -> np.random.Generator:
        key = self._entropy(name, parts)
        gen = self._generators.get(key)
        if gen is None:
            gen = np.random.Generator(np.random.PCG64(np.random.SeedSequence(list(key))))
            self._generators[key] = gen
        return gen

    def stream(self, name: str) -> np.random.Generator:
        return self.substream(name)
