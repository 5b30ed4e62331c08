"""
GPUArray factories and host conversions.

Provided APIs
-------------
Allocation:
- `empty(*shape, dtype, device)`: uninitialized array
- `zeros(*shape, dtype, device)` / `ones(...)`: memset/kernel-filled arrays
- `full(shape, fill_value, dtype, device)`: array filled with a scalar
- `empty_like(x, dtype, shape)`: uninitialized array on `x`'s device

Conversion:
- `to_gpu(host, dtype, device)`: always uploads a new copy
- `asarray(x, dtype, device)`: returns `x` itself when it already is a
  `GPUArray` with a matching element type and device
- `cu(x, device)`: upload real-valued host data as float32; non-array
  values pass through unchanged

Foreign memory:
- `unsafe_wrap(ptr, shape, dtype, device, own=False)`: view device memory
  owned elsewhere; never freed by this package

Shapes may be given as a tuple or as separate ints: `zeros((2, 3))` and
`zeros(2, 3)` are equivalent. The default element type is float32.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np

from ...domain.device._device import Device, as_device
from ..memory import wrap_foreign
from ._gpu_array import GPUArray
from ._shape import ShapeLike, normalize_shape, numel

DeviceSpec = Optional[Union[str, Device]]

_REAL_KINDS = "biuf"


def _shape_args(shape: tuple) -> ShapeLike:
    if len(shape) == 1 and not isinstance(shape[0], (int, np.integer)):
        return tuple(shape[0])
    return shape


def empty(*shape: Any, dtype: Any = np.float32, device: DeviceSpec = None) -> GPUArray:
    """Allocate an uninitialized array."""
    return GPUArray(_shape_args(shape), dtype, device)


def zeros(*shape: Any, dtype: Any = np.float32, device: DeviceSpec = None) -> GPUArray:
    """Allocate an array filled with zeros."""
    return empty(*shape, dtype=dtype, device=device).fill(0)


def ones(*shape: Any, dtype: Any = np.float32, device: DeviceSpec = None) -> GPUArray:
    """Allocate an array filled with ones."""
    return empty(*shape, dtype=dtype, device=device).fill(1)


def full(
    shape: ShapeLike, fill_value: Any, dtype: Any = np.float32, device: DeviceSpec = None
) -> GPUArray:
    """
    Allocate an array filled with `fill_value`.

    Raises
    ------
    UnsupportedFillTypeError
        If `dtype` cannot be filled (see `ops.fill`). The allocation is
        released before the error propagates.
    ValueError
        If `fill_value` cannot be converted to `dtype` without loss; the
        allocation is released as well.
    """
    out = GPUArray(shape, dtype, device)
    try:
        out.fill(fill_value)
    except Exception:
        out.free_()
        raise
    return out


def empty_like(x: GPUArray, dtype: Any = None, shape: Optional[ShapeLike] = None) -> GPUArray:
    """Allocate an uninitialized array shaped like `x` on `x`'s device."""
    return x.similar(dtype=dtype, shape=shape)


def to_gpu(host: Any, dtype: Any = None, device: DeviceSpec = None) -> GPUArray:
    """
    Upload host data into a new GPUArray.

    Parameters
    ----------
    host : array_like
        Anything accepted by `np.asarray`.
    dtype : numpy dtype-like, optional
        Element type; the host data's dtype when None.
    device : str | Device | None
        Target device.
    """
    arr = np.ascontiguousarray(np.asarray(host, dtype=dtype))
    out = GPUArray(arr.shape, arr.dtype, device)
    try:
        out.copy_from(arr)
    except Exception:
        out.free_()
        raise
    return out


def asarray(x: Any, dtype: Any = None, device: DeviceSpec = None) -> GPUArray:
    """
    Convert `x` to a GPUArray, without copying when possible.

    A `GPUArray` whose element type (and device, if given) already match is
    returned as is. A `GPUArray` with a different element type or device is
    converted through host memory.
    """
    if isinstance(x, GPUArray):
        same_dtype = dtype is None or np.dtype(dtype) == x.dtype
        same_device = device is None or as_device(device) == x.device
        if same_dtype and same_device:
            return x
        return to_gpu(
            x.to_numpy(),
            dtype=x.dtype if dtype is None else dtype,
            device=x.device if device is None else device,
        )
    return to_gpu(x, dtype=dtype, device=device)


def cu(x: Any, device: DeviceSpec = None) -> Any:
    """
    Adapt host data for the device, preferring float32.

    - arrays (NumPy arrays, nested lists, GPUArrays) of real numbers become
      float32 GPUArrays
    - arrays of other element types keep their type
    - scalars and other non-array values are returned unchanged
    """
    if isinstance(x, GPUArray):
        dt = np.float32 if x.dtype.kind in _REAL_KINDS else None
        return asarray(x, dtype=dt, device=device)
    if isinstance(x, (np.ndarray, list)):
        arr = np.asarray(x)
        dt = np.float32 if arr.dtype.kind in _REAL_KINDS else arr.dtype
        return to_gpu(arr, dtype=dt, device=device)
    return x


def unsafe_wrap(
    ptr: int,
    shape: ShapeLike,
    dtype: Any = np.float32,
    device: DeviceSpec = None,
    *,
    own: bool = False,
    ctx: Optional[int] = None,
) -> GPUArray:
    """
    View device memory at `ptr` that this package does not own.

    The memory is never freed by this package, whatever happens to the
    returned array and its views. The caller keeps it alive for as long as
    any view exists.

    Raises
    ------
    UnsupportedOperationError
        If `own=True` (ownership transfer is not implemented).
    """
    dims = normalize_shape(shape)
    dt = np.dtype(dtype)
    buf = wrap_foreign(int(ptr), numel(dims) * dt.itemsize, ctx, device, own=own)
    return GPUArray._from_buffer(buf, dims, dt)
