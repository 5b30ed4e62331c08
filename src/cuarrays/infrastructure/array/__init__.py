"""
GPU array views and their factories.
"""

from ._gpu_array import GPUArray
from ._factories import (
    asarray,
    cu,
    empty,
    empty_like,
    full,
    ones,
    to_gpu,
    unsafe_wrap,
    zeros,
)

__all__ = [
    GPUArray.__name__,
    asarray.__name__,
    cu.__name__,
    empty.__name__,
    empty_like.__name__,
    full.__name__,
    ones.__name__,
    to_gpu.__name__,
    unsafe_wrap.__name__,
    zeros.__name__,
]
