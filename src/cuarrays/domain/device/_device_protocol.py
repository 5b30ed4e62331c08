"""
Device abstraction contract for cuarrays.

`DeviceLike` is a duck-typed protocol for device descriptors so that the
driver contract and the array layer can type against "something that looks
like a device" without importing the concrete `Device` class.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Duck-typed device contract.

    Any object that provides these members can be used as a device
    descriptor within cuarrays, regardless of its concrete class identity.
    """

    type: object
    index: Optional[int]

    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def __str__(self) -> str: ...
