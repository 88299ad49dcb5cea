"""Mersenne Twister pseudo-random numbers, as used for address randomisation."""

from __future__ import annotations

import secrets
import time

_N = 624
_M = 397
_MATRIX_A = 0x9908B0DF
_UPPER_MASK = 0x80000000
_LOWER_MASK = 0x7FFFFFFF
_U32_MASK = 0xFFFFFFFF
_INIT_MULTIPLIER = 1812433253


def _entropy_seed() -> int:
    """Mix two timestamp readings with a hardware-quality random value."""
    first = time.perf_counter_ns() & _U32_MASK
    second = time.perf_counter_ns() & _U32_MASK
    seed = ((0xC597060C * first) & _U32_MASK) * 0xCE86D624 & _U32_MASK
    seed ^= (0xEE0DA130 * second) & _U32_MASK
    seed = (seed * (seed ^ secrets.randbits(32))) & _U32_MASK
    return seed


class MersenneTwister:
    """A 32-bit MT19937 generator.

    Without an explicit seed the generator seeds itself from timestamps and
    the system's random source.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._state: list[int] = []
        self._index = _N
        self.seed(_entropy_seed() if seed is None else seed)

    def seed(self, value: int) -> None:
        """Reset the generator state from a 32-bit seed."""
        state = [value & _U32_MASK]
        for i in range(1, _N):
            prev = state[-1]
            state.append((_INIT_MULTIPLIER * (prev ^ (prev >> 30)) + i) & _U32_MASK)
        self._state = state
        self._index = _N

    def _twist(self) -> None:
        s = self._state
        for kk in range(_N):
            y = (s[kk] & _UPPER_MASK) | (s[(kk + 1) % _N] & _LOWER_MASK)
            s[kk] = s[(kk + _M) % _N] ^ (y >> 1) ^ (_MATRIX_A if y & 1 else 0)
        self._index = 0

    def rand32(self) -> int:
        """Return the next 32-bit random value."""
        if self._index >= _N:
            self._twist()
        y = self._state[self._index]
        self._index += 1

        y ^= y >> 11
        y ^= (y << 7) & 0x9D2C5680
        y ^= (y << 15) & 0xEFC60000
        y ^= y >> 18
        return y & _U32_MASK

    def rand64(self) -> int:
        """Return a 64-bit value built from two 32-bit draws, high half first."""
        high = self.rand32()
        low = self.rand32()
        return (high << 32) | low