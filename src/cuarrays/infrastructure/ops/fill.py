"""
Bulk fill for GPU arrays.

Two paths, chosen from the element type:

- **Memset fast path** (`MEMSET_TYPES`): 1-, 2- and 4-byte integer and
  floating types. The value is converted to the element type, its bits are
  reinterpreted as an unsigned word of the same width, and a single
  `memset_d8/d16/d32` covering `size` elements is issued.
- **Kernel fallback** (`KERNEL_FILL_TYPES`): 8-byte integer and floating
  types, which memset cannot express. The same bit pattern is written by the
  per-element `fill` kernel.

Any other element type (bool, complex, structured, ...) raises
`UnsupportedFillTypeError`.

Values are converted before anything is written: integer element types
require an exactly representable, in-range value (`fill(300)` on `uint8` and
`fill(1.5)` on `int32` raise `ValueError`); floating types round to nearest.
"""

from __future__ import annotations

from typing import Any, Dict

import numpy as np

from ...domain._errors import UnsupportedFillTypeError
from ..array._gpu_array import GPUArray
from .kernels import FILL, FillParams, variant_for_itemsize
from .launch import launch_elementwise

MEMSET_TYPES = frozenset(
    np.dtype(t)
    for t in (
        np.uint8,
        np.int8,
        np.uint16,
        np.int16,
        np.float16,
        np.uint32,
        np.int32,
        np.float32,
    )
)

KERNEL_FILL_TYPES = frozenset(np.dtype(t) for t in (np.uint64, np.int64, np.float64))

_PATTERN_WORDS: Dict[int, np.dtype] = {
    1: np.dtype(np.uint8),
    2: np.dtype(np.uint16),
    4: np.dtype(np.uint32),
    8: np.dtype(np.uint64),
}


def convert_scalar(value: Any, dtype: np.dtype) -> np.ndarray:
    """
    Convert a fill value to a 0-d array of `dtype`.

    - integer types: the value must be an integer (or an integral float) within
      the type's range
    - floating types: any real value, rounded to the nearest representable
      value (overflow gives +/-inf); NaN and inf are kept

    Raises
    ------
    ValueError
        If `value` is not a real scalar, or cannot be represented exactly in
        an integer `dtype`.
    """
    v = np.asarray(value)
    if v.shape != ():
        raise ValueError(f"fill value must be a scalar, got shape {v.shape}")
    if v.dtype.kind == "c":
        if v.imag != 0:
            raise ValueError(f"cannot fill {dtype} with complex value {value!r}")
        v = v.real
    if v.dtype.kind not in "biuf":
        raise ValueError(f"cannot fill {dtype} with {value!r}")

    if dtype.kind == "f":
        with np.errstate(over="ignore"):
            return v.astype(dtype)

    if v.dtype.kind == "f":
        if not np.isfinite(v) or not float(v).is_integer():
            raise ValueError(f"{value!r} is not exactly representable as {dtype}")
    as_int = int(v)
    info = np.iinfo(dtype)
    if not info.min <= as_int <= info.max:
        raise ValueError(f"{value!r} is out of range for {dtype} [{info.min}, {info.max}]")
    return np.array(as_int, dtype=dtype)


def bit_pattern(value: Any, dtype: Any) -> int:
    """
    Convert `value` to `dtype` and return its bits as an unsigned int.

    Raises
    ------
    UnsupportedFillTypeError
        If `dtype` is not a fillable fixed-width type.
    ValueError
        If `value` cannot be converted without loss (see `convert_scalar`).
    """
    dt = np.dtype(dtype)
    if dt not in MEMSET_TYPES and dt not in KERNEL_FILL_TYPES:
        raise UnsupportedFillTypeError(dt)
    word = _PATTERN_WORDS[dt.itemsize]
    return int(convert_scalar(value, dt).view(word))


def fill(x: GPUArray, value: Any) -> GPUArray:
    """
    Set every element of `x` to `value` (blocking).

    Parameters
    ----------
    x : GPUArray
        Destination array; filled in place.
    value : scalar
        Fill value, converted to `x.dtype` by `convert_scalar`.

    Returns
    -------
    GPUArray
        `x`.

    Raises
    ------
    UnsupportedFillTypeError
        If `x.dtype` has neither a memset fast path nor a kernel fallback.
    ValueError
        If `value` is out of range or inexact for an integer `x.dtype`.
    """
    dt = x.dtype
    pattern = bit_pattern(value, dt)
    n = x.size
    if n == 0:
        return x

    ptr = x.buffer()
    driver = ptr.driver
    if dt in MEMSET_TYPES:
        memset = {
            1: driver.memset_d8,
            2: driver.memset_d16,
            4: driver.memset_d32,
        }[dt.itemsize]
        memset(ptr.ptr, pattern, n)
        driver.synchronize()
        return x

    params = FillParams(data=ptr.ptr, count=n, pattern=pattern)
    launch_elementwise(driver, FILL, variant_for_itemsize(dt.itemsize), n, params)
    return x
