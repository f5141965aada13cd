# vec_add.py - grid-stride vector add (Triton on CUDA, thread pool on CPU)
import os
from concurrent.futures import ThreadPoolExecutor

import torch
import triton
import triton.language as tl

from errors import LaunchError

WARP_SIZE = 32


@triton.jit
def vec_add_kernel(a_ptr, b_ptr, y_ptr, n_elements, BLOCK: tl.constexpr):
    # Each program covers BLOCK lanes, then jumps by the whole grid's width,
    # so a grid smaller than n still visits every index exactly once.
    pid = tl.program_id(0)
    stride = tl.num_programs(0) * BLOCK
    start = pid * BLOCK
    while start < n_elements:
        offsets = start + tl.arange(0, BLOCK)
        mask = offsets < n_elements
        a = tl.load(a_ptr + offsets, mask=mask, other=0.0)
        b = tl.load(b_ptr + offsets, mask=mask, other=0.0)
        tl.store(y_ptr + offsets, a + b, mask=mask)
        start += stride


def num_warps_for(block_size: int) -> int:
    """One lane per element: a block of 256 runs as 8 warps."""
    return max(block_size // WARP_SIZE, 1)


def program_indices(pid: int, n_elements: int, grid_size: int, block_size: int) -> torch.Tensor:
    """
    Indices program ``pid`` visits under the grid-stride scheme.

    Lane t of program pid handles pid * block_size + t + k * grid_size * block_size
    for k = 0, 1, ... while the index is below n_elements.
    """
    first = pid * block_size
    if first >= n_elements:
        return torch.empty(0, dtype=torch.int64)
    stride = grid_size * block_size
    starts = torch.arange(first, n_elements, stride, dtype=torch.int64)
    offsets = (starts[:, None] + torch.arange(block_size, dtype=torch.int64)).reshape(-1)
    return offsets[offsets < n_elements]


def _run_program_cpu(pid, a, b, y, n_elements, grid_size, block_size):
    idx = program_indices(pid, n_elements, grid_size, block_size)
    if idx.numel():
        y.index_copy_(0, idx, a.index_select(0, idx) + b.index_select(0, idx))


def _launch_cpu(a, b, y, n_elements, grid_size, block_size):
    workers = min(grid_size, os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        # list() re-raises the first failing program's exception
        list(pool.map(
            lambda pid: _run_program_cpu(pid, a, b, y, n_elements, grid_size, block_size),
            range(grid_size),
        ))


def launch_vec_add(bufs, grid_size: int, block_size: int) -> None:
    """Dispatch y = a + b over ``grid_size`` programs of ``block_size`` lanes."""
    if grid_size < 1:
        raise ValueError(f"grid_size must be >= 1, got {grid_size}")

    try:
        if bufs.device.type == "cuda":
            vec_add_kernel[(grid_size,)](
                bufs.a, bufs.b, bufs.y, bufs.n,
                BLOCK=block_size,
                num_warps=num_warps_for(block_size),
            )
        else:
            _launch_cpu(bufs.a, bufs.b, bufs.y, bufs.n, grid_size, block_size)
    except Exception as e:
        raise LaunchError(
            f"vec_add launch with grid={grid_size} block={block_size} failed: {e}", op="launch"
        ) from e


def synchronize(device: torch.device) -> None:
    """Block until outstanding work on ``device`` is done."""
    if device.type != "cuda":
        return
    try:
        torch.cuda.synchronize(device)
    except RuntimeError as e:
        raise LaunchError(f"Synchronizing {device} after launch failed: {e}", op="synchronize") from e


if __name__ == "__main__":
    from device_memory import DeviceBuffers
    from launch_config import configure_launch

    n = 1_000_000
    device = "cuda" if torch.cuda.is_available() else "cpu"
    x = torch.randn(n, dtype=torch.float32)
    z = torch.randn(n, dtype=torch.float32)
    with DeviceBuffers(n, device) as bufs:
        bufs.upload(x.numpy(), z.numpy())
        grid, block = configure_launch(bufs)
        launch_vec_add(bufs, grid, block)
        synchronize(bufs.device)
        out = torch.from_numpy(bufs.download())
    torch.testing.assert_close(out, x + z, rtol=0, atol=0)
    print(f"OK ✅ vec_add correct on {device} (grid={grid}, block={block})")
