# host_data.py - seeded host inputs and reference for vec add
import numpy as np
from typing import Tuple

DEFAULT_SEED = 123


def generate_inputs(n: int, seed: int = DEFAULT_SEED) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Draw two float32 vectors uniform over [-1, 1) and their host-side sum.

    A and B come from one PCG64 stream, A first, so the same (n, seed) always
    reproduces the same bits.

    Returns:
        (a, b, ref) with ref = a + b, all float32 of length n
    """
    if n < 1:
        raise ValueError(f"Problem size must be >= 1, got {n}")

    rng = np.random.default_rng(seed)
    # 2x - 1 is exact in float32, so 1.0 can never appear
    a = 2.0 * rng.random(n, dtype=np.float32) - 1.0
    b = 2.0 * rng.random(n, dtype=np.float32) - 1.0
    a = a.astype(np.float32, copy=False)
    b = b.astype(np.float32, copy=False)

    ref = a + b
    return a, b, ref
