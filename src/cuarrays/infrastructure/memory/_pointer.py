"""
Non-owning device address handles.

A `DevicePointer` is what transfers and kernel launches operate on: an
effective device address, the number of addressable bytes from there to the
end of the view it was derived from, and the owning context. Creating one
neither allocates nor retains; it is only valid while the array it came from
is alive.
"""

from __future__ import annotations

from dataclasses import dataclass

from ...domain._driver import IDriver


@dataclass(frozen=True)
class DevicePointer:
    """
    Effective device address plus remaining length.

    Attributes
    ----------
    ptr : int
        Device address.
    nbytes : int
        Bytes addressable from `ptr` (may be 0).
    ctx : int
        Context owning the underlying buffer.
    driver : IDriver
        Driver of the underlying buffer.
    """

    ptr: int
    nbytes: int
    ctx: int
    driver: IDriver

    def __int__(self) -> int:
        return self.ptr

    def advance(self, nbytes: int) -> "DevicePointer":
        """Return a pointer `nbytes` further, with the remaining length reduced."""
        return DevicePointer(
            ptr=self.ptr + int(nbytes),
            nbytes=self.nbytes - int(nbytes),
            ctx=self.ctx,
            driver=self.driver,
        )
