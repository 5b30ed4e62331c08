"""
Device memory: reference-counted buffers, allocator entrypoints and
non-owning address handles.
"""

from ._device_buffer import DeviceBuffer
from ._pointer import DevicePointer
from ._allocator import alloc, dealloc, release, retain, wrap_foreign

__all__ = [
    DeviceBuffer.__name__,
    DevicePointer.__name__,
    alloc.__name__,
    dealloc.__name__,
    release.__name__,
    retain.__name__,
    wrap_foreign.__name__,
]
