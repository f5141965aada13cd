# launch_config.py - occupancy-derived launch geometry for vec_add
"""
Pick (grid_size, block_size) for one vec_add launch from live device limits.

    ceiling  = sm_count * blocks_per_sm      # what can be resident at once
    coverage = cdiv(n, block_size)           # what one-element-per-lane needs
    grid     = max(min(ceiling, coverage), 1)

The kernel is grid-stride, so a grid below coverage is still correct; the
ceiling only keeps the launch proportionate to the hardware. blocks_per_sm
depends on the block size, so the query and the derivation always run
together for the block size actually launched.
"""
import os
from typing import Dict, Tuple

import torch
import triton

from errors import LaunchError
from vec_add import WARP_SIZE, num_warps_for, vec_add_kernel

BLOCK_SIZE = 256

# CPU backend: logical cores stand in for SMs, this many programs per core
CPU_PROGRAMS_PER_CORE = 4


def validate_block_size(block_size: int) -> None:
    if block_size < 1 or block_size & (block_size - 1):
        raise ValueError(f"Block size must be a positive power of two, got {block_size}")


def derive_grid_size(n_elements: int, block_size: int, sm_count: int, blocks_per_sm: int) -> int:
    if n_elements < 1:
        raise ValueError(f"Problem size must be >= 1, got {n_elements}")
    if block_size < 1:
        raise ValueError(f"Block size must be >= 1, got {block_size}")

    ceiling = max(sm_count, 0) * max(blocks_per_sm, 0)
    coverage = triton.cdiv(n_elements, block_size)
    return max(min(ceiling, coverage), 1)


def resident_blocks_per_sm(block_size: int, n_regs: int, shared_bytes: int,
                           limits: Dict[str, int]) -> int:
    """
    Blocks of ``block_size`` lanes that fit on one SM at once.

    Args:
        block_size: Elements (lanes) per block
        n_regs: Registers per thread used by the compiled kernel
        shared_bytes: Shared memory per block used by the compiled kernel
        limits: Per-SM limits with keys max_threads_per_sm, max_regs_per_sm,
            max_shared_per_sm

    Returns:
        The tightest of the thread, register and shared-memory bounds
    """
    threads = num_warps_for(block_size) * WARP_SIZE
    bounds = [limits["max_threads_per_sm"] // threads]
    if n_regs > 0:
        bounds.append(limits["max_regs_per_sm"] // (n_regs * threads))
    if shared_bytes > 0:
        bounds.append(limits["max_shared_per_sm"] // shared_bytes)
    return min(bounds)


def _cpu_limits() -> Tuple[int, int]:
    return os.cpu_count() or 1, CPU_PROGRAMS_PER_CORE


def _cuda_limits(bufs, block_size: int) -> Tuple[int, int]:
    index = bufs.device.index if bufs.device.index is not None else torch.cuda.current_device()
    props = torch.cuda.get_device_properties(index)

    # Register/shared usage of the kernel as compiled for this block size
    compiled = vec_add_kernel.warmup(
        bufs.a, bufs.b, bufs.y, bufs.n,
        BLOCK=block_size, num_warps=num_warps_for(block_size), grid=(1,),
    )
    compiled._init_handles()

    # Per-SM limits, not the per-block ones
    limits = {
        "max_threads_per_sm": props.max_threads_per_multi_processor,
        "max_regs_per_sm": props.regs_per_multiprocessor,
        "max_shared_per_sm": props.shared_memory_per_multiprocessor,
    }
    blocks = resident_blocks_per_sm(block_size, compiled.n_regs, compiled.metadata.shared, limits)
    return props.multi_processor_count, blocks


def query_device_limits(bufs, block_size: int) -> Tuple[int, int]:
    """Return (sm_count, blocks_per_sm) for ``block_size`` on the buffers' device."""
    if bufs.device.type != "cuda":
        return _cpu_limits()
    try:
        return _cuda_limits(bufs, block_size)
    except Exception as e:
        raise LaunchError(f"Occupancy query on {bufs.device} failed: {e}", op="occupancy") from e


def configure_launch(bufs, block_size: int = BLOCK_SIZE) -> Tuple[int, int]:
    """Query the device and derive (grid_size, block_size) for this run."""
    validate_block_size(block_size)
    sm_count, blocks_per_sm = query_device_limits(bufs, block_size)
    grid_size = derive_grid_size(bufs.n, block_size, sm_count, blocks_per_sm)
    return grid_size, block_size
