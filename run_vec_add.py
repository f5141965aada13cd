#!/usr/bin/env python3
# run_vec_add.py - end-to-end vec add: generate, upload, launch, download, verify

import argparse
import os
import sys
import traceback
from typing import List, Optional

import torch
from rich.console import Console
from rich.markup import escape

from device_memory import DeviceBuffers
from errors import ValidationFailure, VecAddError
from host_data import DEFAULT_SEED, generate_inputs
from launch_config import BLOCK_SIZE, configure_launch
from vec_add import launch_vec_add, synchronize
from verify import TOLERANCE, check_result

DEFAULT_N = 1 << 24

err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def log(*args, **kwargs):
    err_console.print(*args, **kwargs)


def resolve_device(name: str) -> torch.device:
    if name == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    if name not in ("cuda", "cpu"):
        raise ValueError(f"Unknown device: {name}")
    return torch.device(name)


def run_pipeline(n: int,
                 seed: int = DEFAULT_SEED,
                 device: str = "auto",
                 block_size: int = BLOCK_SIZE,
                 verbose: bool = False) -> float:
    """
    Run one vec-add pass and return the max abs error against the host reference.

    Buffers are released before verification, so a ValidationFailure is only
    raised once device memory is already back. Device faults propagate as
    AllocationError / TransferError / LaunchError; the buffers' context manager
    releases on the way out.
    """
    dev = resolve_device(device)
    host_a, host_b, ref = generate_inputs(n, seed)

    with DeviceBuffers(n, dev) as bufs:
        bufs.upload(host_a, host_b)
        grid_size, block_size = configure_launch(bufs, block_size)
        if verbose:
            name = torch.cuda.get_device_name(dev) if dev.type == "cuda" else f"cpu x{os.cpu_count()}"
            log(f"[cyan]device[/cyan] {name}  [cyan]grid[/cyan] {grid_size}  [cyan]block[/cyan] {block_size}")
        launch_vec_add(bufs, grid_size, block_size)
        synchronize(bufs.device)
        host_y = bufs.download()

    max_abs_err, ok = check_result(host_y, ref, TOLERANCE)
    if not ok:
        raise ValidationFailure(max_abs_err, TOLERANCE)
    return max_abs_err


def _where(exc: BaseException) -> str:
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "<unknown>"
    frame = frames[-1]
    return f"{os.path.basename(frame.filename)}:{frame.lineno}"


def positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {text}")
    return value


def power_of_two(text: str) -> int:
    value = positive_int(text)
    if value & (value - 1):
        raise argparse.ArgumentTypeError(f"must be a power of two, got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Occupancy-sized grid-stride vector add with host validation")
    parser.add_argument("n", nargs="?", type=positive_int, default=DEFAULT_N,
                        help=f"number of elements (default {DEFAULT_N})")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="random seed for the inputs")
    parser.add_argument("--device", choices=["auto", "cuda", "cpu"], default="auto",
                        help="auto picks CUDA when available")
    parser.add_argument("--block", type=power_of_two, default=BLOCK_SIZE,
                        help="lanes per block (power of two)")
    parser.add_argument("-v", "--verbose", action="store_true", help="log device and launch geometry to stderr")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    print(f"N = {args.n}")
    try:
        max_abs_err = run_pipeline(args.n, args.seed, args.device, args.block, args.verbose)
    except ValidationFailure as e:
        print(f"max abs err = {e.max_abs_err:e}")
        log(f"[red]Validation failed:[/red] {escape(str(e))}")
        return 1
    except VecAddError as e:
        log(f"[red]{type(e).__name__}[/red] during {e.op or 'run'}: {escape(str(e))} ({_where(e)})")
        return 1

    print(f"max abs err = {max_abs_err:e}")
    print("OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
