from __future__ import annotations

LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2**32
LCG_MAX = 0xFFFFFFFF


class LCG:
    """Seeded linear congruential generator; the only randomness the pipeline uses."""

    def __init__(self, seed: int):
        self.state = int(seed) % LCG_MODULUS

    def next_uint(self) -> int:
        self.state = (LCG_MULTIPLIER * self.state + LCG_INCREMENT) % LCG_MODULUS
        return self.state

    def random(self) -> float:
        return self.next_uint() / LCG_MAX

    def randint(self, n: int) -> int:
        """Index in ``[0, n)``."""
        if n <= 0:
            raise ValueError("n must be positive")
        return min(n - 1, int(self.random() * n))

    def sample_indices(self, n: int, k: int) -> list[int]:
        """``k`` distinct indices out of ``range(n)`` in draw order."""
        if k > n:
            raise ValueError(f"cannot sample {k} distinct indices from {n}")
        pool = list(range(n))
        out: list[int] = []
        for _ in range(k):
            pos = self.randint(len(pool))
            out.append(pool.pop(pos))
        return out
