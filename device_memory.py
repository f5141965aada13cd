# device_memory.py - device buffers for one vec-add run
"""
DeviceBuffers owns the three device vectors (a, b, y) for a single pipeline
run and is the only thing that moves data across the host/device boundary.

Lifecycle:
    allocate -> upload -> (kernel) -> download -> release

release() runs exactly once per allocation attempt, on every exit path:
a failed allocate() releases what it managed to create before raising, and
the context manager releases on normal exit and on any exception.
"""
import numpy as np
import torch
from typing import Optional, Union

from errors import AllocationError, TransferError


class DeviceBuffers:
    def __init__(self, n: int, device: Union[str, torch.device]):
        if n < 1:
            raise ValueError(f"Problem size must be >= 1, got {n}")
        self.n = n
        self.device = torch.device(device)
        self.a: Optional[torch.Tensor] = None
        self.b: Optional[torch.Tensor] = None
        self.y: Optional[torch.Tensor] = None
        self._allocated = False
        self._released = False

    def __enter__(self) -> "DeviceBuffers":
        self.allocate()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def allocate(self) -> None:
        if self._allocated or self._released:
            raise RuntimeError("DeviceBuffers can only be allocated once")
        self._allocated = True

        if self.device.type == "cuda" and not torch.cuda.is_available():
            self.release()
            raise AllocationError(f"No CUDA device available for {self.device}", op="allocate")

        try:
            self.a = torch.empty(self.n, device=self.device, dtype=torch.float32)
            self.b = torch.empty(self.n, device=self.device, dtype=torch.float32)
            self.y = torch.empty(self.n, device=self.device, dtype=torch.float32)
        except RuntimeError as e:
            # torch.cuda.OutOfMemoryError is a RuntimeError
            self.release()
            raise AllocationError(
                f"Could not allocate 3 x {self.n} float32 on {self.device}: {e}", op="allocate"
            ) from e

    def upload(self, host_a: np.ndarray, host_b: np.ndarray) -> None:
        self._check_live()
        for name, host in (("a", host_a), ("b", host_b)):
            if host.shape != (self.n,):
                raise ValueError(f"Host vector {name} has shape {host.shape}, expected ({self.n},)")

        try:
            self.a.copy_(torch.from_numpy(np.ascontiguousarray(host_a, dtype=np.float32)))
            self.b.copy_(torch.from_numpy(np.ascontiguousarray(host_b, dtype=np.float32)))
        except RuntimeError as e:
            raise TransferError(f"Host to {self.device} copy failed: {e}", op="upload") from e

    def download(self) -> np.ndarray:
        self._check_live()
        try:
            # .cpu() copies synchronously into fresh host memory
            host_y = self.y.cpu().numpy()
        except RuntimeError as e:
            raise TransferError(f"{self.device} to host copy failed: {e}", op="download") from e
        if self.device.type == "cpu":
            host_y = host_y.copy()
        return host_y

    def release(self) -> None:
        if self._released:
            raise RuntimeError("DeviceBuffers released twice")
        self._released = True
        self.a = self.b = self.y = None

    @property
    def released(self) -> bool:
        return self._released

    def _check_live(self) -> None:
        if not self._allocated or self._released or self.y is None:
            raise RuntimeError("DeviceBuffers used outside its allocate/release window")
