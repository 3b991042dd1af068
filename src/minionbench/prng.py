# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import math
import time
from typing import List, MutableSequence, Optional, Sequence, TypeVar

from .errors import EmptyInputError

T = TypeVar("T")

_MASK = 0xFFFFFFFF
_GOLDEN = 0x6D2B79F5


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK


def time_seed() -> int:
    """Seed derived from the wall clock (ms), reduced to 32 bits."""
    return int(time.time() * 1000) & _MASK


class SeededRandom:
    """Mulberry32 generator.

    The whole state is one unsigned 32-bit integer advanced by a fixed odd increment on
    every draw; the output is a mix of that counter. Outputs are bit-identical to other
    Mulberry32 implementations fed the same seed and call sequence, which is what makes
    workloads reproducible across runs and hosts.
    """

    def __init__(self, seed: Optional[int] = None):
        self.initial_seed = time_seed() if seed is None else int(seed) & _MASK
        self._state = self.initial_seed
        self.draws = 0

    def next(self) -> float:
        """Float in [0, 1)."""
        self._state = (self._state + _GOLDEN) & _MASK
        self.draws += 1
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK
        return ((t ^ (t >> 14)) & _MASK) / 4294967296.0

    def int(self, min_: int, max_: int) -> int:
        """Integer in [min_, max_)."""
        if max_ <= min_:
            raise ValueError(f"empty range [{min_}, {max_})")
        return math.floor(self.next() * (max_ - min_)) + min_

    def float(self, min_: float, max_: float) -> float:
        """Float in [min_, max_)."""
        return self.next() * (max_ - min_) + min_

    def pick(self, seq: Sequence[T]) -> T:
        if len(seq) == 0:
            raise EmptyInputError("cannot pick from an empty sequence")
        return seq[self.int(0, len(seq))]

    def shuffle(self, items: MutableSequence[T]) -> MutableSequence[T]:
        """Fisher-Yates shuffle in place; consumes exactly len(items) - 1 draws."""
        for i in range(len(items) - 1, 0, -1):
            j = self.int(0, i + 1)
            items[i], items[j] = items[j], items[i]
        return items

    def sample(self, seq: Sequence[T], k: int) -> List[T]:
        return list(self.shuffle(list(seq)))[:k]
