"""
Device buffer ownership and lifetime management.

This module defines `DeviceBuffer`, a reference-counted handle to one
contiguous device allocation that may be shared by many `GPUArray` views.

Core Concepts
-------------
- **Shared ownership**:
    No view exclusively owns a buffer. Each view retains the buffer when it
    is constructed and releases it when it is freed (explicitly via
    `GPUArray.free_()` or by the garbage collector). The buffer lives as long
    as its longest-lived view.

- **Zero crossing**:
    `release()` reports whether *this* call dropped the count from 1 to 0.
    Only that caller deallocates, and it deallocates the buffer's full
    original byte size, never the (possibly smaller) size of a view.

- **Foreign buffers**:
    Memory owned outside this layer is wrapped with its count pre-incremented
    once, so releases from views can never reach zero and the memory is never
    handed to the driver's `free`. The extra reference is never dropped.

- **Null buffers**:
    Zero-byte buffers carry a null pointer and never touch the driver.

Thread Safety
-------------
Reference count updates are protected by a per-buffer lock. Concurrent
writes to the buffer's *contents* from different views are not synchronized
and are the caller's responsibility.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ...domain._driver import IDriver
from ...domain.device._device_protocol import DeviceLike


@dataclass(eq=False)
class DeviceBuffer:
    """
    Reference-counted handle to a contiguous device allocation.

    Attributes
    ----------
    ptr : int
        Native device address of the allocation (0 for zero-byte buffers).
    nbytes : int
        Full byte length of the allocation.
    ctx : int
        Identifier of the driver context that owns the allocation.
    driver : IDriver
        Driver used to free the allocation.
    foreign : bool
        True if the memory is owned outside this layer.

    Notes
    -----
    Buffers are compared by identity; two handles to the same address are
    distinct buffers.
    """

    ptr: int
    nbytes: int
    ctx: int
    driver: IDriver = field(repr=False)
    foreign: bool = False

    _refcnt: int = field(default=0, repr=False)
    _freed: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if int(self.nbytes) < 0:
            raise ValueError(f"DeviceBuffer nbytes must be >= 0, got {self.nbytes}")
        self.ptr = int(self.ptr)
        self.nbytes = int(self.nbytes)

    @property
    def refcount(self) -> int:
        """Current reference count."""
        with self._lock:
            return self._refcnt

    @property
    def freed(self) -> bool:
        """True once the allocation has been returned to the driver."""
        return self._freed

    @property
    def device(self) -> DeviceLike:
        return self.driver.device

    def retain(self) -> bool:
        """
        Increment the reference count.

        Returns
        -------
        bool
            True if the buffer was already live (count > 0) before this call.

        Raises
        ------
        RuntimeError
            If the buffer has already been deallocated.
        """
        with self._lock:
            if self._freed:
                raise RuntimeError(f"Cannot retain a freed buffer: {self!r}")
            was_live = self._refcnt > 0
            self._refcnt += 1
            return was_live

    def release(self) -> bool:
        """
        Decrement the reference count.

        Returns
        -------
        bool
            True iff this call dropped the count to zero. The caller must then
            deallocate the buffer (see `memory.dealloc`).

        Raises
        ------
        RuntimeError
            If the count is already zero.
        """
        with self._lock:
            if self._refcnt <= 0:
                raise RuntimeError(f"Unbalanced release of {self!r}")
            self._refcnt -= 1
            return self._refcnt == 0

    def _mark_freed(self) -> bool:
        """Flag the buffer as deallocated; False if it already was."""
        with self._lock:
            if self._freed:
                return False
            self._freed = True
            return True

    def release_and_free(self) -> bool:
        """
        Release one reference and deallocate on the zero crossing.

        Returns
        -------
        bool
            True if the allocation was handed back to the driver.

        Notes
        -----
        Safe to call from finalizers: deallocation failures are logged and
        never raised.
        """
        if self.release():
            from ._allocator import dealloc

            return dealloc(self)
        return False
