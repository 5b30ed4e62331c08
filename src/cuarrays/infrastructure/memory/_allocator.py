"""
Allocator entrypoints for device buffers.

- `alloc(nbytes, device)`: fresh buffer in the device's current context
- `wrap_foreign(ptr, nbytes, ...)`: handle around memory owned elsewhere
- `retain(buf)` / `release(buf)`: reference counting
- `dealloc(buf)`: hand the allocation back to the driver (full size)

Failure policy
--------------
- Allocation failures raise `AllocationError`; nothing is retained.
- Deallocation failures are logged as warnings and swallowed, because
  deallocation runs from finalizers and a leaked allocation must not crash
  the interpreter.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from ...domain._errors import AllocationError, DriverError, UnsupportedOperationError
from ...domain.device._device import Device
from ..drivers import get_driver
from ._device_buffer import DeviceBuffer

_logger = logging.getLogger(__name__)


def alloc(nbytes: int, device: Optional[Union[str, Device]] = None) -> DeviceBuffer:
    """
    Allocate a device buffer.

    Parameters
    ----------
    nbytes : int
        Requested size in bytes. Zero yields a null buffer without calling
        the driver.
    device : str | Device | None
        Target device (configured default when None).

    Returns
    -------
    DeviceBuffer
        Buffer with reference count 0; the first view retains it.

    Raises
    ------
    AllocationError
        If the driver cannot satisfy the request.
    ValueError
        If `nbytes` is negative.
    """
    nbytes = int(nbytes)
    if nbytes < 0:
        raise ValueError(f"Cannot allocate a negative number of bytes: {nbytes}")

    driver = get_driver(device)
    ctx = driver.current_context()
    if nbytes == 0:
        return DeviceBuffer(ptr=0, nbytes=0, ctx=ctx, driver=driver)

    try:
        ptr = driver.alloc(nbytes)
    except AllocationError:
        raise
    except DriverError as e:
        raise AllocationError(nbytes, str(driver.device), str(e)) from e
    return DeviceBuffer(ptr=ptr, nbytes=nbytes, ctx=ctx, driver=driver)


def wrap_foreign(
    ptr: int,
    nbytes: int,
    ctx: Optional[int] = None,
    device: Optional[Union[str, Device]] = None,
    *,
    own: bool = False,
) -> DeviceBuffer:
    """
    Wrap device memory that this layer does not own.

    The reference count is pre-incremented once so that no sequence of view
    releases can reach zero: foreign memory is never passed to the driver's
    `free`. The range is registered with the driver (`register_foreign`) so
    that copies, fills and kernels may address it.

    Parameters
    ----------
    ptr : int
        Device address of the foreign memory.
    nbytes : int
        Size of the wrapped region in bytes.
    ctx : int, optional
        Owning context; defaults to the device driver's current context.
    device : str | Device | None
        Device the memory lives on.
    own : bool
        Ownership transfer request. Not implemented.

    Raises
    ------
    UnsupportedOperationError
        If `own=True`.
    """
    if own:
        raise UnsupportedOperationError(
            "wrap_foreign(own=True)", "taking ownership of foreign memory is not implemented"
        )
    driver = get_driver(device)
    driver.register_foreign(int(ptr), int(nbytes))
    buf = DeviceBuffer(
        ptr=int(ptr),
        nbytes=int(nbytes),
        ctx=driver.current_context() if ctx is None else int(ctx),
        driver=driver,
        foreign=True,
    )
    # Permanent extra reference: the count never drops to zero.
    buf.retain()
    return buf


def retain(buf: DeviceBuffer) -> bool:
    """Increment `buf`'s count; True if it was already live."""
    return buf.retain()


def release(buf: DeviceBuffer) -> bool:
    """Decrement `buf`'s count; True iff this call reached zero."""
    return buf.release()


def dealloc(buf: DeviceBuffer) -> bool:
    """
    Return `buf`'s allocation to its driver.

    The full original size (`buf.nbytes`) is passed to the driver. Foreign
    and null buffers are never freed.

    Returns
    -------
    bool
        True if the driver's `free` was called and succeeded.
    """
    if buf.foreign:
        _logger.warning("refusing to free foreign buffer at 0x%x", buf.ptr)
        return False
    if not buf._mark_freed():
        return False
    if buf.ptr == 0:
        return False
    try:
        buf.driver.free(buf.ptr, buf.nbytes)
    except Exception as e:  # never raise from finalizers
        _logger.warning(
            "failed to free %d bytes at 0x%x on %s: %s",
            buf.nbytes,
            buf.ptr,
            buf.driver.device,
            e,
        )
        return False
    return True
