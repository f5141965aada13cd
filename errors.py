# errors.py - failure categories for the vec-add pipeline
"""
Every device-side fault is fatal for a run: nothing here is retried. Only
ValidationFailure is raised after the device buffers have been released.
"""
from typing import Optional


class VecAddError(Exception):
    """Base class. ``op`` names the pipeline step that failed."""

    def __init__(self, message: str, op: Optional[str] = None):
        super().__init__(message)
        self.op = op


class AllocationError(VecAddError):
    pass


class TransferError(VecAddError):
    pass


class LaunchError(VecAddError):
    pass


class ValidationFailure(VecAddError):
    def __init__(self, max_abs_err: float, tolerance: float):
        super().__init__(
            f"max abs err {max_abs_err:e} exceeds tolerance {tolerance:e}",
            op="verify",
        )
        self.max_abs_err = max_abs_err
        self.tolerance = tolerance
