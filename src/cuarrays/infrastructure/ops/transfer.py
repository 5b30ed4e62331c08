"""
Host/device transfer layer.

Pointer-level primitives
------------------------
- `upload(dst, src_host, nbytes)`    : host -> device
- `download(dst_host, src, nbytes)`  : device -> host
- `transfer(dst, src, nbytes)`       : device -> device (possibly across
  contexts)

`dst` / `src` device endpoints are `DevicePointer`s; host endpoints are
`HostRange`s (or NumPy arrays, which are converted). Every primitive
validates the byte count against both endpoints and raises `TransferError`
for negative counts or ranges past the end of either endpoint. Zero-byte
transfers are no-ops. All transfers are blocking: the driver is synchronized
before returning unless `sync=False`.

Array-level entrypoint
----------------------
`unsafe_copyto(dest, doffs, src, soffs, n)` copies `n` elements between any
combination of `GPUArray` and `numpy.ndarray` endpoints, with 0-based element
offsets. It checks bounds and element types but not overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from ...domain._errors import TransferError
from ..array._gpu_array import GPUArray
from ..memory import DevicePointer


@dataclass(frozen=True)
class HostRange:
    """
    Host address plus the number of bytes addressable from it.

    `owner` keeps the backing object (usually a NumPy array) alive for the
    duration of the transfer.
    """

    ptr: int
    nbytes: int
    owner: Any = None

    @classmethod
    def from_array(cls, arr: np.ndarray, byte_offset: int = 0) -> "HostRange":
        if not isinstance(arr, np.ndarray):
            raise TypeError(f"host endpoint must be a numpy.ndarray, got {type(arr)!r}")
        if not arr.flags.c_contiguous:
            raise TransferError("host endpoint must be C-contiguous")
        byte_offset = int(byte_offset)
        if not 0 <= byte_offset <= arr.nbytes:
            raise TransferError(
                f"host offset {byte_offset} outside array of {arr.nbytes} bytes"
            )
        return cls(
            ptr=int(arr.ctypes.data) + byte_offset,
            nbytes=int(arr.nbytes) - byte_offset,
            owner=arr,
        )


HostLike = Union[HostRange, np.ndarray]


def _as_host(endpoint: HostLike, *, writable: bool) -> HostRange:
    if isinstance(endpoint, HostRange):
        return endpoint
    if writable and isinstance(endpoint, np.ndarray) and not endpoint.flags.writeable:
        raise TransferError("host destination is read-only")
    return HostRange.from_array(endpoint)


def _check_range(nbytes: int, *endpoints: Any) -> int:
    nbytes = int(nbytes)
    if nbytes < 0:
        raise TransferError(f"negative transfer size: {nbytes} bytes", nbytes)
    for ep in endpoints:
        if nbytes > ep.nbytes:
            raise TransferError(
                f"transfer of {nbytes} bytes exceeds endpoint of {ep.nbytes} bytes",
                nbytes,
            )
    return nbytes


# ---------------------------------------------------------------------
# Pointer-level primitives
# ---------------------------------------------------------------------


def upload(dst: DevicePointer, src_host: HostLike, nbytes: int, *, sync: bool = True) -> None:
    """Copy `nbytes` from host memory to the device address `dst`."""
    src = _as_host(src_host, writable=False)
    if _check_range(nbytes, dst, src) == 0:
        return
    dst.driver.memcpy_htod(dst.ptr, src.ptr, int(nbytes))
    if sync:
        dst.driver.synchronize()


def download(dst_host: HostLike, src: DevicePointer, nbytes: int, *, sync: bool = True) -> None:
    """Copy `nbytes` from the device address `src` to host memory."""
    dst = _as_host(dst_host, writable=True)
    if _check_range(nbytes, dst, src) == 0:
        return
    src.driver.memcpy_dtoh(dst.ptr, src.ptr, int(nbytes))
    if sync:
        src.driver.synchronize()


def transfer(dst: DevicePointer, src: DevicePointer, nbytes: int, *, sync: bool = True) -> None:
    """
    Copy `nbytes` between device addresses.

    When both endpoints live on the same driver the copy is a single native
    device-to-device copy. Across drivers (e.g. a CUDA array and an emulated
    one) the bytes are staged through host memory.
    """
    if _check_range(nbytes, dst, src) == 0:
        return
    nbytes = int(nbytes)
    if dst.driver is src.driver:
        dst.driver.memcpy_dtod(dst.ptr, src.ptr, nbytes)
        if sync:
            dst.driver.synchronize()
        return

    staging = np.empty(nbytes, dtype=np.uint8)
    download(staging, src, nbytes)
    upload(dst, staging, nbytes, sync=sync)


# ---------------------------------------------------------------------
# Array-level entrypoint
# ---------------------------------------------------------------------


def _element_range(x: Union[GPUArray, np.ndarray], offs: int, role: str):
    offs = int(offs)
    if offs < 0 or offs > x.size:
        raise TransferError(f"{role} offset {offs} outside array of {x.size} elements")
    if isinstance(x, GPUArray):
        return x.buffer(offs)
    return HostRange.from_array(x, offs * x.itemsize)


def unsafe_copyto(
    dest: Union[GPUArray, np.ndarray],
    doffs: int,
    src: Union[GPUArray, np.ndarray],
    soffs: int,
    n: int,
) -> Union[GPUArray, np.ndarray]:
    """
    Copy `n` elements from `src[soffs:]` to `dest[doffs:]` (0-based).

    Parameters
    ----------
    dest, src : GPUArray | numpy.ndarray
        At least one endpoint must be a `GPUArray`. Host endpoints must be
        C-contiguous; elements are addressed in row-major order.
    doffs, soffs : int
        Element offsets into `dest` and `src`.
    n : int
        Number of elements to copy.

    Returns
    -------
    GPUArray | numpy.ndarray
        `dest`.

    Raises
    ------
    TransferError
        If element types differ, `n` is negative, or either range is out of
        bounds.
    """
    if np.dtype(dest.dtype) != np.dtype(src.dtype):
        raise TransferError(f"element type mismatch: {dest.dtype} <- {src.dtype}")
    n = int(n)
    if n < 0:
        raise TransferError(f"negative element count: {n}", n)
    nbytes = n * dest.itemsize

    d = _element_range(dest, doffs, "destination")
    s = _element_range(src, soffs, "source")

    dest_dev = isinstance(dest, GPUArray)
    src_dev = isinstance(src, GPUArray)
    if dest_dev and src_dev:
        transfer(d, s, nbytes)
    elif dest_dev:
        upload(d, s, nbytes)
    elif src_dev:
        if not dest.flags.writeable:
            raise TransferError("host destination is read-only")
        download(d, s, nbytes)
    else:
        raise TypeError("unsafe_copyto requires at least one GPUArray endpoint")
    return dest
