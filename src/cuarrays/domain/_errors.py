"""
Memory-, transfer- and driver-related exceptions for cuarrays.

This module defines the error taxonomy used by the device buffer, array view,
transfer and kernel layers. Every error is raised at the point of detection
and propagates immediately to the caller; none of them is retried internally.

These errors are intentionally explicit so that a failed allocation, an
invalid reshape or an out-of-bounds copy is never confused with a generic
runtime failure.
"""

from __future__ import annotations

from typing import Optional


class AllocationError(MemoryError):
    """
    Raised when the device allocator cannot satisfy a byte-size request.

    The array that requested the memory is not constructed and no buffer is
    retained on its behalf.

    Attributes
    ----------
    nbytes : int
        Number of bytes that were requested.
    device : str
        String representation of the device the request was issued on.
    """

    def __init__(self, nbytes: int, device: str, reason: str = "") -> None:
        """
        Initialize the AllocationError.

        Parameters
        ----------
        nbytes : int
            Number of bytes that were requested.
        device : str
            Device identifier (e.g., "cuda:0").
        reason : str, optional
            Driver-provided failure description.
        """
        msg = f"Failed to allocate {nbytes} bytes on device '{device}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.nbytes = nbytes
        self.device = device


class ShapeMismatchError(ValueError):
    """
    Raised when a requested shape is incompatible with an existing array.

    Typical sources are `reshape` with a different element count, copying
    between host and device arrays of different shapes, and running a
    matrix-only kernel on an array that is not two-dimensional.
    """

    def __init__(self, message: str, shape: Optional[tuple] = None) -> None:
        super().__init__(message)
        self.shape = shape


class UnsupportedOperationError(NotImplementedError):
    """
    Raised for operations this layer cannot perform safely.

    The only recognized case is requesting ownership transfer (`own=True`)
    when wrapping foreign device memory, which is not implemented.
    """

    def __init__(self, op: str, reason: str) -> None:
        super().__init__(f"{op} is not supported: {reason}")
        self.op = op


class TransferError(ValueError):
    """
    Raised when a host/device or device/device copy has an invalid byte range.

    Attributes
    ----------
    nbytes : int
        Byte count of the rejected transfer.
    """

    def __init__(self, message: str, nbytes: int = 0) -> None:
        super().__init__(message)
        self.nbytes = nbytes


class UnsupportedFillTypeError(TypeError):
    """
    Raised when `fill` is requested for an element type that has neither a
    memset fast path nor a per-element kernel fallback.
    """

    def __init__(self, dtype: object) -> None:
        super().__init__(f"fill is not supported for element type '{dtype}'")
        self.dtype = dtype


class DriverError(RuntimeError):
    """
    Raised when a native driver call returns a non-success status.

    Attributes
    ----------
    code : int
        Native status code (e.g. a `CUresult` value).
    msg : str
        Name or description of the failure.
    """

    def __init__(self, code: int, msg: str) -> None:
        self.code = code
        self.msg = msg
        super().__init__(code, msg)

    def __str__(self) -> str:
        return "[%s] %s" % (self.code, self.msg)


class DriverNotFoundError(DriverError):
    """
    Raised when the native driver library (or NVRTC) cannot be located or
    loaded in the current process.
    """

    def __init__(self, msg: str) -> None:
        super().__init__(-1, msg)
