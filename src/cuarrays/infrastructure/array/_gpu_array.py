"""
GPU-resident array views.

This module provides `GPUArray`, a typed, shaped window into a
reference-counted `DeviceBuffer`.

Ownership model
---------------
- Every view holds exactly one reference to exactly one buffer. Constructing
  a view retains the buffer; freeing the view releases it.
- Reshape creates a *new* view over the *same* buffer and offset (no data
  movement). `similar` and `copy` allocate fresh buffers.
- A view is freed either explicitly (`free_()`) or when it is garbage
  collected, through a `weakref.finalize` callback that captures only the
  buffer. The buffer's allocation is returned to the driver when the last
  view is freed, with the buffer's full size.

Layout
------
Arrays are dense and row-major (C order). `offset` counts elements from the
buffer's base address. The view invariant

    (offset + size) * itemsize <= buffer.nbytes

is checked on construction.

Element indices used by `buffer(index)` and by the offset-aware copies are
0-based.
"""

from __future__ import annotations

import weakref
from typing import Any, Dict, Optional, Union

import numpy as np
from typing_extensions import Self

from ...domain._errors import ShapeMismatchError
from ...domain.device._device import Device
from ..memory import DeviceBuffer, DevicePointer, alloc
from ._shape import ShapeLike, normalize_shape, numel, resolve_reshape


def _element_type(dtype: Any) -> np.dtype:
    dt = np.dtype(dtype)
    if dt.hasobject or dt.itemsize == 0:
        raise TypeError(f"GPUArray requires a fixed-size element type, got {dt}")
    return dt


class GPUArray:
    """
    N-dimensional array stored in device memory.

    Parameters
    ----------
    shape : int | tuple[int, ...]
        Extents of the array. A bare int creates a 1-D array.
    dtype : numpy dtype-like, optional
        Element type. Defaults to float32.
    device : str | Device | None, optional
        Target device; the configured default ("cuda:0") when None.

    Raises
    ------
    AllocationError
        If device memory cannot be allocated.

    Notes
    -----
    The constructor allocates uninitialized memory. Use `zeros`, `ones`,
    `full` or `to_gpu` for initialized arrays.
    """

    def __init__(
        self,
        shape: ShapeLike = (),
        dtype: Any = np.float32,
        device: Optional[Union[str, Device]] = None,
    ) -> None:
        dims = normalize_shape(shape)
        dt = _element_type(dtype)
        buf = alloc(numel(dims) * dt.itemsize, device)
        self._init_view(buf, dims, dt, 0)

    @classmethod
    def _from_buffer(
        cls,
        buf: DeviceBuffer,
        shape: ShapeLike,
        dtype: Any,
        offset: int = 0,
    ) -> "GPUArray":
        """
        Build a view over an existing buffer (retains `buf`).

        Parameters
        ----------
        buf : DeviceBuffer
            Buffer to view.
        shape : int | tuple[int, ...]
            Extents of the view.
        dtype : numpy dtype-like
            Element type of the view.
        offset : int
            Element offset from the buffer's base address.

        Raises
        ------
        ValueError
            If the view would extend past the end of the buffer.
        """
        obj = cls.__new__(cls)
        obj._init_view(buf, normalize_shape(shape), _element_type(dtype), int(offset))
        return obj

    def _init_view(
        self, buf: DeviceBuffer, shape: tuple, dtype: np.dtype, offset: int
    ) -> None:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        need = (offset + numel(shape)) * dtype.itemsize
        if need > buf.nbytes:
            raise ValueError(
                f"view of shape {shape} ({dtype}) at offset {offset} needs {need} bytes; "
                f"buffer holds {buf.nbytes}"
            )

        buf.retain()
        self._buf = buf
        self._shape = shape
        self._dtype = dtype
        self._offset = offset
        self._finalizer = weakref.finalize(self, buf.release_and_free)
        # Process teardown reclaims device memory; the driver may already be gone.
        self._finalizer.atexit = False

    # -----------------------------------------------------------------
    # Metadata
    # -----------------------------------------------------------------

    @property
    def shape(self) -> tuple:
        return self._shape

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        """Number of elements."""
        return numel(self._shape)

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def itemsize(self) -> int:
        """Element size in bytes."""
        return self._dtype.itemsize

    elsize = itemsize

    @property
    def nbytes(self) -> int:
        """Size of the view in bytes (`size * itemsize`)."""
        return self.size * self.itemsize

    @property
    def offset(self) -> int:
        """Element offset of the view from its buffer's base address."""
        return self._offset

    @property
    def storage(self) -> DeviceBuffer:
        """The shared buffer this array views."""
        return self._buf

    @property
    def device(self) -> Device:
        return self._buf.driver.device

    @property
    def is_freed(self) -> bool:
        return not self._finalizer.alive

    def __len__(self) -> int:
        if not self._shape:
            raise TypeError("len() of a 0-d GPUArray")
        return self._shape[0]

    def __repr__(self) -> str:
        state = "freed" if self.is_freed else f"ptr=0x{self._buf.ptr:x}"
        return (
            f"GPUArray(shape={self._shape}, dtype={self._dtype}, "
            f"device={self.device}, offset={self._offset}, {state})"
        )

    def _check_alive(self) -> None:
        if self.is_freed:
            raise RuntimeError("Operation on a freed GPUArray")

    # -----------------------------------------------------------------
    # Lifetime
    # -----------------------------------------------------------------

    def free_(self) -> None:
        """
        Release this view's reference to its buffer now.

        The buffer's allocation is returned to the driver if this was the
        last view. Idempotent; the array is unusable afterwards.
        """
        self._finalizer()

    # -----------------------------------------------------------------
    # Views and allocation-backed siblings
    # -----------------------------------------------------------------

    def reshape(self, *shape: Any) -> "GPUArray":
        """
        Return a view of the same buffer with a different shape.

        Accepts `a.reshape((2, 3))` or `a.reshape(2, 3)`; one extent may be
        -1 and is inferred.

        Raises
        ------
        ShapeMismatchError
            If the new shape does not hold exactly `self.size` elements.
        """
        self._check_alive()
        if len(shape) == 1 and not isinstance(shape[0], (int, np.integer)):
            shape = tuple(shape[0])
        dims = resolve_reshape(shape, self.size, self._shape)
        return type(self)._from_buffer(self._buf, dims, self._dtype, self._offset)

    def similar(
        self, dtype: Any = None, shape: Optional[ShapeLike] = None
    ) -> "GPUArray":
        """
        Allocate a new, uninitialized array on the same device.

        The element type and shape default to this array's; no storage is
        shared.
        """
        self._check_alive()
        return type(self)(
            self._shape if shape is None else shape,
            self._dtype if dtype is None else dtype,
            self.device,
        )

    def buffer(self, index: int = 0) -> DevicePointer:
        """
        Native address of element `index` (0-based, linear).

        Returns
        -------
        DevicePointer
            Address `base + (offset + index) * itemsize` with the number of
            bytes remaining in the view. Neither allocates nor retains; valid
            only while this array is alive.

        Raises
        ------
        IndexError
            If `index` is outside `[0, size]`.
        """
        self._check_alive()
        index = int(index)
        if not 0 <= index <= self.size:
            raise IndexError(f"index {index} out of range for array of size {self.size}")
        start = DevicePointer(
            ptr=self._buf.ptr + self._offset * self.itemsize,
            nbytes=self.nbytes,
            ctx=self._buf.ctx,
            driver=self._buf.driver,
        )
        return start.advance(index * self.itemsize)

    native_address = buffer

    # -----------------------------------------------------------------
    # Host interop and copies
    # -----------------------------------------------------------------

    def copy_from(self, host: Any) -> Self:
        """
        Upload host data into this array (blocking).

        `host` is converted with `np.asarray(host, dtype=self.dtype)` and must
        have exactly this array's shape.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        """
        self._check_alive()
        src = np.ascontiguousarray(np.asarray(host, dtype=self._dtype))
        if src.shape != self._shape:
            raise ShapeMismatchError(
                f"Shape mismatch: array {self._shape} vs host {src.shape}", src.shape
            )
        from ..ops.transfer import unsafe_copyto

        unsafe_copyto(self, 0, src, 0, self.size)
        return self

    def copy_to(self, host: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Download this array into a host array (blocking).

        Parameters
        ----------
        host : numpy.ndarray, optional
            C-contiguous, writable destination with this array's shape and
            dtype. A new array is allocated when omitted.

        Returns
        -------
        numpy.ndarray
            The destination array.
        """
        self._check_alive()
        if host is None:
            host = np.empty(self._shape, dtype=self._dtype)
        if not isinstance(host, np.ndarray):
            raise TypeError(f"copy_to destination must be a numpy.ndarray, got {type(host)!r}")
        if host.shape != self._shape:
            raise ShapeMismatchError(
                f"Shape mismatch: array {self._shape} vs host {host.shape}", host.shape
            )
        from ..ops.transfer import unsafe_copyto

        unsafe_copyto(host, 0, self, 0, self.size)
        return host

    def to_numpy(self) -> np.ndarray:
        """Return a new host array with this array's contents."""
        return self.copy_to()

    collect = to_numpy

    def copy(self) -> "GPUArray":
        """Return a device-side copy in a fresh buffer."""
        self._check_alive()
        out = self.similar()
        from ..ops.transfer import unsafe_copyto

        try:
            unsafe_copyto(out, 0, self, 0, self.size)
        except Exception:
            out.free_()
            raise
        return out

    def __deepcopy__(self, memo: Dict[int, Any]) -> "GPUArray":
        if id(self) in memo:
            return memo[id(self)]
        out = self.copy()
        memo[id(self)] = out
        return out

    # -----------------------------------------------------------------
    # Device-side operations
    # -----------------------------------------------------------------

    def fill(self, value: Any) -> Self:
        """Set every element to `value` (see `ops.fill.fill`)."""
        self._check_alive()
        from ..ops.fill import fill

        fill(self, value)
        return self

    def tril_(self, k: int = 0) -> Self:
        """Zero the elements strictly above the k-th diagonal, in place."""
        from ..ops.triangular import TriangularMode, triangular_zero

        triangular_zero(self, k, TriangularMode.LOWER_EXCLUDING_ABOVE)
        return self

    def triu_(self, k: int = 0) -> Self:
        """Zero the elements strictly below the k-th diagonal, in place."""
        from ..ops.triangular import TriangularMode, triangular_zero

        triangular_zero(self, k, TriangularMode.UPPER_EXCLUDING_BELOW)
        return self
