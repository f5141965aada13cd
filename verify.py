# verify.py - compare device output against the host reference
import numpy as np
from typing import Tuple

TOLERANCE = 1e-6


def max_abs_error(y: np.ndarray, ref: np.ndarray) -> float:
    """Largest |y[i] - ref[i]|, computed in float64."""
    if y.shape != ref.shape:
        raise ValueError(f"Shape mismatch: output {y.shape} vs reference {ref.shape}")
    if y.size == 0:
        return 0.0
    diff = np.abs(y.astype(np.float64) - ref.astype(np.float64))
    return float(diff.max())


def check_result(y: np.ndarray, ref: np.ndarray, tol: float = TOLERANCE) -> Tuple[float, bool]:
    """
    Reduce the output to a single error and a pass/fail verdict.

    A NaN anywhere in the output makes the error NaN, which fails.
    """
    err = max_abs_error(y, ref)
    ok = err <= tol
    return err, ok
