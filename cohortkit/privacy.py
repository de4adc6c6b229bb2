"""Laplace mechanism for differentially private counts and values."""

import math
import random
import sys
from typing import Optional, Protocol


class RandomSource(Protocol):
    def random(self) -> float:
        """Return a float uniformly drawn from [0.0, 1.0)."""


def default_random_source() -> random.Random:
    return random.SystemRandom()


def laplace_noise(scale: float, rng: Optional[RandomSource] = None) -> float:
    """Draw one sample from Laplace(0, scale) by inverse transform sampling.

    A source whose ``random()`` returns 0.5 always yields zero noise.
    """
    rng = rng or default_random_source()
    u = rng.random() - 0.5
    if u == 0:
        return 0.0
    # random() may return exactly 0.0, which would put log() at zero
    tail = max(1 - 2 * abs(u), sys.float_info.min)
    return -scale * math.copysign(1.0, u) * math.log(tail)


def noisy_count(value: int, scale: float, rng: Optional[RandomSource] = None) -> int:
    return max(0, round(value + laplace_noise(scale, rng)))


def noisy_value(value: float, scale: float, rng: Optional[RandomSource] = None) -> float:
    return max(0.0, value + laplace_noise(scale, rng))
