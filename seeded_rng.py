# seeded_rng.py
# Minimal Lehmer (Park–Miller) generator for reproducible inflow perturbations.

import numpy as np


MODULUS = 2147483647
MULTIPLIER = 16807


class SeededRNG:
    """
    Multiplicative LCG: seed <- seed * 16807 mod (2^31 - 1).

    next()          -> uniform in (0, 1)
    next_gaussian() -> Box-Muller deviate; non-finite if the first uniform is 0
    """

    def __init__(self, seed: int = 12345):
        if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)):
            raise ValueError(f"seed must be an integer, got {type(seed).__name__}")
        seed = int(seed)
        if not 1 <= seed <= MODULUS - 1:
            raise ValueError(f"seed must lie in [1, {MODULUS - 1}], got {seed}")
        self.seed = seed

    def next(self) -> float:
        self.seed = (self.seed * MULTIPLIER) % MODULUS
        return (self.seed - 1) / (MODULUS - 1)

    def next_gaussian(self) -> float:
        u1 = self.next()
        u2 = self.next()
        with np.errstate(divide="ignore", invalid="ignore"):
            return float(np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2))
