"""
Kernel dispatch.

`launch_config` maps an element count to a 1-D (blocks, threads) launch
configuration; `launch_elementwise` issues one kernel over `n` logical
threads on a driver. The grid may overshoot `n`; kernels guard their linear
index against the element count.
"""

from __future__ import annotations

import ctypes
import math
from typing import Optional, Tuple

from ..._config import get_config
from ...domain._driver import IDriver
from .kernels import DeviceKernel, launch_dims


def launch_config(n: int, threads_per_block: Optional[int] = None) -> Tuple[int, int]:
    """
    Compute a 1-D launch configuration covering `n` elements.

    Parameters
    ----------
    n : int
        Number of logical threads (elements). Must be >= 0.
    threads_per_block : int, optional
        Block size cap; `CUARRAYS_THREADS_PER_BLOCK` (default 256) when None.

    Returns
    -------
    (blocks, threads) : tuple[int, int]
        `threads = min(n, threads_per_block)` and `blocks = ceil(n / threads)`;
        `(0, 0)` for `n == 0`.
    """
    n = int(n)
    if n < 0:
        raise ValueError(f"element count must be >= 0, got {n}")
    cap = get_config().threads_per_block if threads_per_block is None else int(threads_per_block)
    if cap <= 0:
        raise ValueError(f"threads_per_block must be > 0, got {cap}")
    if n == 0:
        return 0, 0
    threads = min(n, cap)
    blocks = math.ceil(n / threads)
    return blocks, threads


def launch_elementwise(
    driver: IDriver,
    kernel: DeviceKernel,
    variant: str,
    n: int,
    params: ctypes.Structure,
    *,
    sync: bool = True,
) -> None:
    """
    Launch `kernel` over `n` logical threads.

    Does nothing for `n == 0`. Synchronizes the driver afterwards unless
    `sync=False`.
    """
    blocks, threads = launch_config(n)
    if blocks == 0:
        return
    grid, block = launch_dims(blocks, threads)
    driver.launch(kernel, variant, grid, block, params)
    if sync:
        driver.synchronize()
