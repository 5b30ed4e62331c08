"""
Device kernel definitions.

Each `DeviceKernel` bundles:

- CUDA C++ source compiled by `CudaDriver` through NVRTC
- a by-value parameter struct (`ctypes.Structure`) mirrored in that source
- a NumPy emulation executed by `HostDriver`

Every kernel follows the same dispatch pattern, both on device and in the
emulation:

    linear index -> bounds guard -> elementwise predicate -> write

Kernels are specialised on element *width* only ("u8", "u16", "u32", "u64"):
zeroing and bit-pattern fills are identical for every integer and IEEE
floating type of a given size.

Indexing convention: row-major, 0-based. A matrix of shape (rows, cols) is
unravelled as `i = li // cols`, `j = li % cols`.
"""

from __future__ import annotations

import ctypes
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

# Element width (bytes) -> kernel variant / emulation word type.
VARIANTS: Dict[int, str] = {1: "u8", 2: "u16", 4: "u32", 8: "u64"}
VARIANT_WORDS: Dict[str, np.dtype] = {
    "u8": np.dtype(np.uint8),
    "u16": np.dtype(np.uint16),
    "u32": np.dtype(np.uint32),
    "u64": np.dtype(np.uint64),
}

MemoryView = Callable[[int, int], np.ndarray]
"""`memory(ptr, nbytes)` -> writable uint8 view of emulated device memory."""


# ---------------------------------------------------------------------
# Parameter structs (passed by value to the launch primitive)
# ---------------------------------------------------------------------


class TriangularParams(ctypes.Structure):
    """Parameters of the triangular zero-masking kernels."""

    _fields_ = [
        ("data", ctypes.c_uint64),  # device address of element (0, 0)
        ("rows", ctypes.c_int64),
        ("cols", ctypes.c_int64),
        ("k", ctypes.c_int64),  # diagonal offset
    ]


class FillParams(ctypes.Structure):
    """Parameters of the per-element fill kernel."""

    _fields_ = [
        ("data", ctypes.c_uint64),
        ("count", ctypes.c_int64),
        ("pattern", ctypes.c_uint64),  # bit pattern, truncated to the word width
    ]


@dataclass(frozen=True)
class DeviceKernel:
    """
    A device kernel with a CUDA implementation and a host emulation.

    Attributes
    ----------
    name : str
        Base symbol name; the CUDA entrypoint for a variant is
        `"{name}_{variant}"`.
    source : str
        CUDA C++ source defining every variant.
    params_type : type
        `ctypes.Structure` subclass accepted by the kernel.
    emulate : callable
        `emulate(memory, li, params, word)` where `li` holds the linear
        thread indices of the whole grid and `word` the variant's dtype.
    """

    name: str
    source: str
    params_type: type
    emulate: Callable[[MemoryView, np.ndarray, ctypes.Structure, np.dtype], None]

    def symbol(self, variant: str) -> str:
        if variant not in VARIANT_WORDS:
            raise ValueError(f"Unknown kernel variant {variant!r} for {self.name}")
        return f"{self.name}_{variant}"


# ---------------------------------------------------------------------
# CUDA sources
# ---------------------------------------------------------------------

_PRELUDE = r"""
typedef unsigned char u8;
typedef unsigned short u16;
typedef unsigned int u32;
typedef unsigned long long u64;

struct TriangularParams {
    u64 data;
    long long rows;
    long long cols;
    long long k;
};

struct FillParams {
    u64 data;
    long long count;
    u64 pattern;
};
"""

_TRIANGULAR_SOURCE = _PRELUDE + r"""
#define DEFINE_TRIANGULAR(NAME, T, PRED)                                        \
extern "C" __global__ void NAME(TriangularParams p) {                           \
    long long li = (long long)blockIdx.x * blockDim.x + threadIdx.x;            \
    long long n = p.rows * p.cols;                                              \
    if (li < n) {                                                               \
        long long i = li / p.cols;                                              \
        long long j = li % p.cols;                                              \
        if (PRED) {                                                             \
            ((T*)p.data)[li] = (T)0;                                            \
        }                                                                       \
    }                                                                           \
}

DEFINE_TRIANGULAR(tril_zero_u8,  u8,  (j - i > p.k))
DEFINE_TRIANGULAR(tril_zero_u16, u16, (j - i > p.k))
DEFINE_TRIANGULAR(tril_zero_u32, u32, (j - i > p.k))
DEFINE_TRIANGULAR(tril_zero_u64, u64, (j - i > p.k))

DEFINE_TRIANGULAR(triu_zero_u8,  u8,  (j - i < p.k))
DEFINE_TRIANGULAR(triu_zero_u16, u16, (j - i < p.k))
DEFINE_TRIANGULAR(triu_zero_u32, u32, (j - i < p.k))
DEFINE_TRIANGULAR(triu_zero_u64, u64, (j - i < p.k))
"""

_FILL_SOURCE = _PRELUDE + r"""
#define DEFINE_FILL(NAME, T)                                                    \
extern "C" __global__ void NAME(FillParams p) {                                 \
    long long li = (long long)blockIdx.x * blockDim.x + threadIdx.x;            \
    if (li < p.count) {                                                         \
        ((T*)p.data)[li] = (T)p.pattern;                                        \
    }                                                                           \
}

DEFINE_FILL(fill_u8,  u8)
DEFINE_FILL(fill_u16, u16)
DEFINE_FILL(fill_u32, u32)
DEFINE_FILL(fill_u64, u64)
"""


# ---------------------------------------------------------------------
# Host emulations
# ---------------------------------------------------------------------


def _triangular_emulation(
    zero_when: Callable[[np.ndarray, int], np.ndarray],
) -> Callable[[MemoryView, np.ndarray, TriangularParams, np.dtype], None]:
    def emulate(
        memory: MemoryView, li: np.ndarray, p: TriangularParams, word: np.dtype
    ) -> None:
        n = int(p.rows) * int(p.cols)
        live = li[li < n]
        if live.size == 0:
            return
        i = live // int(p.cols)
        j = live % int(p.cols)
        data = memory(int(p.data), n * word.itemsize).view(word)
        data[live[zero_when(j - i, int(p.k))]] = 0

    return emulate


def _fill_emulate(
    memory: MemoryView, li: np.ndarray, p: FillParams, word: np.dtype
) -> None:
    n = int(p.count)
    live = li[li < n]
    if live.size == 0:
        return
    data = memory(int(p.data), n * word.itemsize).view(word)
    mask = (1 << (8 * word.itemsize)) - 1
    data[live] = word.type(int(p.pattern) & mask)


TRIL_ZERO = DeviceKernel(
    name="tril_zero",
    source=_TRIANGULAR_SOURCE,
    params_type=TriangularParams,
    emulate=_triangular_emulation(lambda d, k: d > k),
)
"""Zero the elements strictly above the k-th diagonal."""

TRIU_ZERO = DeviceKernel(
    name="triu_zero",
    source=_TRIANGULAR_SOURCE,
    params_type=TriangularParams,
    emulate=_triangular_emulation(lambda d, k: d < k),
)
"""Zero the elements strictly below the k-th diagonal."""

FILL = DeviceKernel(
    name="fill",
    source=_FILL_SOURCE,
    params_type=FillParams,
    emulate=_fill_emulate,
)
"""Write one bit pattern into every element (generic fill fallback)."""


def variant_for_itemsize(itemsize: int) -> str:
    """Return the kernel variant for an element width in bytes."""
    try:
        return VARIANTS[int(itemsize)]
    except KeyError:
        raise ValueError(f"No kernel variant for {itemsize}-byte elements") from None


def launch_dims(blocks: int, threads: int) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    """Expand a 1-D launch configuration to CUDA's (x, y, z) triples."""
    return (int(blocks), 1, 1), (int(threads), 1, 1)
