"""
ctypes bindings for the CUDA driver API.

This module provides the low-level entrypoints `CudaDriver` is built on:

- initialization and context handling:
    cuInit, cuDeviceGet, cuDeviceGetCount, cuDeviceGetAttribute,
    cuDevicePrimaryCtxRetain, cuCtxSetCurrent, cuCtxGetCurrent,
    cuCtxSynchronize
- memory:
    cuMemAlloc_v2, cuMemFree_v2, cuMemcpyHtoD_v2, cuMemcpyDtoH_v2,
    cuMemcpyDtoD_v2, cuMemsetD8_v2, cuMemsetD16_v2, cuMemsetD32_v2
- modules and launches:
    cuModuleLoadData, cuModuleGetFunction, cuLaunchKernel

Design notes
------------
- Device pointers (`CUdeviceptr`) are bound as `c_uint64` and surfaced as
  Python ints; host pointers are bound as `c_void_p`.
- Every call is checked; a non-zero `CUresult` raises `DriverError` carrying
  the status code and the driver's error name.
- `argtypes` / `restype` are bound once per loaded library (idempotent).
"""

from __future__ import annotations

import ctypes
from ctypes import (
    POINTER,
    byref,
    c_char_p,
    c_int,
    c_size_t,
    c_uint,
    c_uint64,
    c_ushort,
    c_ubyte,
    c_void_p,
)
from typing import Sequence, Tuple

from ....domain._errors import AllocationError, DriverError, DriverNotFoundError
from ._native_loader import load_cuda_driver

DevPtr = int

CUDA_SUCCESS = 0
CUDA_ERROR_OUT_OF_MEMORY = 2

CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR = 75
CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR = 76

CUresult = c_int
CUdevice = c_int
CUcontext = c_void_p
CUmodule = c_void_p
CUfunction = c_void_p
CUstream = c_void_p
CUdeviceptr = c_uint64


class CudaDriverLib:
    """
    Thin binding layer around the CUDA driver library.

    Parameters
    ----------
    lib : ctypes.CDLL
        Loaded `libcuda` handle.
    """

    def __init__(self, lib: ctypes.CDLL) -> None:
        self.lib = lib
        self._bound = False

    def _bind(self) -> None:
        """Bind argtypes/restype for every driver export used here (idempotent)."""
        if self._bound:
            return

        lib = self.lib
        signatures = {
            "cuInit": [c_uint],
            "cuDeviceGet": [POINTER(CUdevice), c_int],
            "cuDeviceGetCount": [POINTER(c_int)],
            "cuDeviceGetAttribute": [POINTER(c_int), c_int, CUdevice],
            "cuDevicePrimaryCtxRetain": [POINTER(CUcontext), CUdevice],
            "cuCtxSetCurrent": [CUcontext],
            "cuCtxGetCurrent": [POINTER(CUcontext)],
            "cuCtxSynchronize": [],
            "cuMemAlloc_v2": [POINTER(CUdeviceptr), c_size_t],
            "cuMemFree_v2": [CUdeviceptr],
            "cuMemcpyHtoD_v2": [CUdeviceptr, c_void_p, c_size_t],
            "cuMemcpyDtoH_v2": [c_void_p, CUdeviceptr, c_size_t],
            "cuMemcpyDtoD_v2": [CUdeviceptr, CUdeviceptr, c_size_t],
            "cuMemsetD8_v2": [CUdeviceptr, c_ubyte, c_size_t],
            "cuMemsetD16_v2": [CUdeviceptr, c_ushort, c_size_t],
            "cuMemsetD32_v2": [CUdeviceptr, c_uint, c_size_t],
            "cuModuleLoadData": [POINTER(CUmodule), c_void_p],
            "cuModuleGetFunction": [POINTER(CUfunction), CUmodule, c_char_p],
            "cuLaunchKernel": [
                CUfunction,
                c_uint,  # gridDimX
                c_uint,  # gridDimY
                c_uint,  # gridDimZ
                c_uint,  # blockDimX
                c_uint,  # blockDimY
                c_uint,  # blockDimZ
                c_uint,  # sharedMemBytes
                CUstream,
                POINTER(c_void_p),  # kernelParams
                POINTER(c_void_p),  # extra
            ],
            "cuGetErrorName": [CUresult, POINTER(c_char_p)],
        }
        for name, argtypes in signatures.items():
            try:
                fn = getattr(lib, name)
            except AttributeError as e:
                raise DriverNotFoundError(f"CUDA driver library does not export {name}") from e
            fn.argtypes = argtypes
            fn.restype = CUresult

        self._bound = True

    # -----------------------------------------------------------------
    # Error handling
    # -----------------------------------------------------------------

    def error_name(self, status: int) -> str:
        """Return the driver's symbolic name for a `CUresult`."""
        self._bind()
        out = c_char_p()
        if self.lib.cuGetErrorName(int(status), byref(out)) != CUDA_SUCCESS or not out.value:
            return f"CUDA_ERROR_{status}"
        return out.value.decode("ascii", errors="replace")

    def check(self, status: int, fn_name: str) -> None:
        """
        Raise `DriverError` for a non-success status.

        Parameters
        ----------
        status : int
            `CUresult` returned by a driver call.
        fn_name : str
            Name of the driver function, included in the error message.
        """
        if status != CUDA_SUCCESS:
            raise DriverError(int(status), f"{fn_name} failed: {self.error_name(status)}")

    def _call(self, fn_name: str, *args) -> None:
        self._bind()
        self.check(getattr(self.lib, fn_name)(*args), fn_name)

    # -----------------------------------------------------------------
    # Initialization / contexts
    # -----------------------------------------------------------------

    def init(self) -> None:
        self._call("cuInit", 0)

    def device_count(self) -> int:
        n = c_int(0)
        self._call("cuDeviceGetCount", byref(n))
        return int(n.value)

    def device_get(self, ordinal: int) -> int:
        dev = CUdevice(0)
        self._call("cuDeviceGet", byref(dev), int(ordinal))
        return int(dev.value)

    def compute_capability(self, dev: int) -> Tuple[int, int]:
        major = c_int(0)
        minor = c_int(0)
        self._call(
            "cuDeviceGetAttribute",
            byref(major),
            CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR,
            int(dev),
        )
        self._call(
            "cuDeviceGetAttribute",
            byref(minor),
            CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR,
            int(dev),
        )
        return int(major.value), int(minor.value)

    def primary_ctx_retain(self, dev: int) -> int:
        ctx = CUcontext()
        self._call("cuDevicePrimaryCtxRetain", byref(ctx), int(dev))
        return int(ctx.value or 0)

    def ctx_set_current(self, ctx: int) -> None:
        self._call("cuCtxSetCurrent", CUcontext(int(ctx)))

    def ctx_get_current(self) -> int:
        ctx = CUcontext()
        self._call("cuCtxGetCurrent", byref(ctx))
        return int(ctx.value or 0)

    def ctx_synchronize(self) -> None:
        self._call("cuCtxSynchronize")

    # -----------------------------------------------------------------
    # Memory
    # -----------------------------------------------------------------

    def mem_alloc(self, nbytes: int, device_name: str = "cuda") -> DevPtr:
        """
        Allocate device memory.

        Raises
        ------
        AllocationError
            If the driver reports `CUDA_ERROR_OUT_OF_MEMORY`.
        DriverError
            For any other driver failure.
        """
        self._bind()
        ptr = CUdeviceptr(0)
        st = self.lib.cuMemAlloc_v2(byref(ptr), c_size_t(int(nbytes)))
        if st == CUDA_ERROR_OUT_OF_MEMORY:
            raise AllocationError(int(nbytes), device_name, self.error_name(st))
        self.check(st, "cuMemAlloc_v2")
        return int(ptr.value)

    def mem_free(self, ptr: DevPtr) -> None:
        self._call("cuMemFree_v2", CUdeviceptr(int(ptr)))

    def memcpy_htod(self, dst_dev: DevPtr, src_host: int, nbytes: int) -> None:
        self._call(
            "cuMemcpyHtoD_v2",
            CUdeviceptr(int(dst_dev)),
            c_void_p(int(src_host)),
            c_size_t(int(nbytes)),
        )

    def memcpy_dtoh(self, dst_host: int, src_dev: DevPtr, nbytes: int) -> None:
        self._call(
            "cuMemcpyDtoH_v2",
            c_void_p(int(dst_host)),
            CUdeviceptr(int(src_dev)),
            c_size_t(int(nbytes)),
        )

    def memcpy_dtod(self, dst_dev: DevPtr, src_dev: DevPtr, nbytes: int) -> None:
        self._call(
            "cuMemcpyDtoD_v2",
            CUdeviceptr(int(dst_dev)),
            CUdeviceptr(int(src_dev)),
            c_size_t(int(nbytes)),
        )

    def memset_d8(self, ptr: DevPtr, value: int, count: int) -> None:
        self._call("cuMemsetD8_v2", CUdeviceptr(int(ptr)), c_ubyte(value), c_size_t(count))

    def memset_d16(self, ptr: DevPtr, value: int, count: int) -> None:
        self._call("cuMemsetD16_v2", CUdeviceptr(int(ptr)), c_ushort(value), c_size_t(count))

    def memset_d32(self, ptr: DevPtr, value: int, count: int) -> None:
        self._call("cuMemsetD32_v2", CUdeviceptr(int(ptr)), c_uint(value), c_size_t(count))

    # -----------------------------------------------------------------
    # Modules / launches
    # -----------------------------------------------------------------

    def module_load_data(self, image: bytes) -> int:
        mod = CUmodule()
        buf = ctypes.create_string_buffer(image)
        self._call("cuModuleLoadData", byref(mod), ctypes.cast(buf, c_void_p))
        return int(mod.value or 0)

    def module_get_function(self, module: int, name: str) -> int:
        fn = CUfunction()
        self._call(
            "cuModuleGetFunction", byref(fn), CUmodule(int(module)), name.encode("ascii")
        )
        return int(fn.value or 0)

    def launch_kernel(
        self,
        function: int,
        grid: Sequence[int],
        block: Sequence[int],
        args: Sequence[ctypes._SimpleCData | ctypes.Structure],
        shared_mem: int = 0,
    ) -> None:
        """
        Launch a kernel on the default stream.

        Parameters
        ----------
        function : int
            `CUfunction` handle.
        grid, block : sequence of 3 ints
            Launch dimensions.
        args : sequence of ctypes values
            Kernel arguments, each passed by value; the driver receives an
            array of pointers to them.
        """
        param_ptrs = (c_void_p * max(1, len(args)))()
        for i, a in enumerate(args):
            param_ptrs[i] = ctypes.addressof(a)
        gx, gy, gz = (int(v) for v in grid)
        bx, by, bz = (int(v) for v in block)
        self._call(
            "cuLaunchKernel",
            CUfunction(int(function)),
            gx,
            gy,
            gz,
            bx,
            by,
            bz,
            int(shared_mem),
            CUstream(0),
            param_ptrs,
            None,
        )


# ---------------------------------------------------------------------
# Singleton (one binding object per loaded library)
# ---------------------------------------------------------------------

_driver_singleton: CudaDriverLib | None = None


def get_driver_lib() -> CudaDriverLib:
    """
    Return the process-wide `CudaDriverLib`, loading `libcuda` on first use.

    Raises
    ------
    DriverNotFoundError
        If the driver library cannot be loaded.
    """
    global _driver_singleton
    lib = load_cuda_driver()
    if _driver_singleton is None or _driver_singleton.lib is not lib:
        _driver_singleton = CudaDriverLib(lib)
    return _driver_singleton
