"""
cuarrays: GPU-resident N-dimensional arrays.

Arrays are typed, shaped views over reference-counted device buffers. Views
share storage (`reshape`), are freed explicitly (`free_()`) or by the garbage
collector, and return their buffer to the driver when the last view goes.

Quick start
-----------
>>> import numpy as np
>>> import cuarrays as ca
>>> a = ca.to_gpu(np.arange(9, dtype=np.float32).reshape(3, 3), device="cpu")
>>> a.tril_().to_numpy()
array([[0., 0., 0.],
       [3., 4., 0.],
       [6., 7., 8.]], dtype=float32)

The "cpu" device emulates a GPU in host memory; "cuda:<n>" uses the CUDA
driver API. The default device comes from `CUARRAYS_DEVICE` ("cuda:0").
"""

from ._logging import make_logger
from .domain._errors import (
    AllocationError,
    DriverError,
    DriverNotFoundError,
    ShapeMismatchError,
    TransferError,
    UnsupportedFillTypeError,
    UnsupportedOperationError,
)
from .domain.device._device import Device, DeviceType
from .infrastructure.array import (
    GPUArray,
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
from .infrastructure.drivers import cuda_available, get_driver
from .infrastructure.ops.transfer import unsafe_copyto
from .infrastructure.ops.triangular import TriangularMode, triangular_zero

make_logger()

__version__ = "0.1.0"

__all__ = [
    "AllocationError",
    "Device",
    "DeviceType",
    "DriverError",
    "DriverNotFoundError",
    "GPUArray",
    "ShapeMismatchError",
    "TransferError",
    "TriangularMode",
    "UnsupportedFillTypeError",
    "UnsupportedOperationError",
    "asarray",
    "cu",
    "cuda_available",
    "empty",
    "empty_like",
    "full",
    "get_driver",
    "ones",
    "to_gpu",
    "triangular_zero",
    "unsafe_copyto",
    "unsafe_wrap",
    "zeros",
]
