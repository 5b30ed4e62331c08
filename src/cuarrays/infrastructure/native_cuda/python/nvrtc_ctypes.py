"""
ctypes bindings for NVRTC (CUDA runtime compilation).

`compile_to_ptx` turns a CUDA C++ source string into PTX that the driver can
load with `cuModuleLoadData`. Compilation failures raise `DriverError` with
the NVRTC program log attached, so kernel source errors surface with the
compiler's own diagnostics.
"""

from __future__ import annotations

import ctypes
from ctypes import POINTER, byref, c_char_p, c_int, c_size_t, c_void_p
from typing import Sequence

from ....domain._errors import DriverError
from ._native_loader import load_nvrtc

NVRTC_SUCCESS = 0

nvrtcProgram = c_void_p


class NvrtcLib:
    """Thin binding layer around the NVRTC library."""

    def __init__(self, lib: ctypes.CDLL) -> None:
        self.lib = lib
        self._bound = False

    def _bind(self) -> None:
        if self._bound:
            return

        lib = self.lib
        lib.nvrtcCreateProgram.argtypes = [
            POINTER(nvrtcProgram),
            c_char_p,  # src
            c_char_p,  # name
            c_int,  # numHeaders
            POINTER(c_char_p),  # headers
            POINTER(c_char_p),  # includeNames
        ]
        lib.nvrtcCompileProgram.argtypes = [nvrtcProgram, c_int, POINTER(c_char_p)]
        lib.nvrtcGetPTXSize.argtypes = [nvrtcProgram, POINTER(c_size_t)]
        lib.nvrtcGetPTX.argtypes = [nvrtcProgram, c_char_p]
        lib.nvrtcGetProgramLogSize.argtypes = [nvrtcProgram, POINTER(c_size_t)]
        lib.nvrtcGetProgramLog.argtypes = [nvrtcProgram, c_char_p]
        lib.nvrtcDestroyProgram.argtypes = [POINTER(nvrtcProgram)]
        for name in (
            "nvrtcCreateProgram",
            "nvrtcCompileProgram",
            "nvrtcGetPTXSize",
            "nvrtcGetPTX",
            "nvrtcGetProgramLogSize",
            "nvrtcGetProgramLog",
            "nvrtcDestroyProgram",
        ):
            getattr(lib, name).restype = c_int

        lib.nvrtcGetErrorString.argtypes = [c_int]
        lib.nvrtcGetErrorString.restype = c_char_p

        self._bound = True

    def _check(self, status: int, fn_name: str, log: str = "") -> None:
        if status == NVRTC_SUCCESS:
            return
        raw = self.lib.nvrtcGetErrorString(int(status))
        text = raw.decode("ascii", errors="replace") if raw else f"NVRTC_ERROR_{status}"
        msg = f"{fn_name} failed: {text}"
        if log:
            msg += f"\n{log}"
        raise DriverError(int(status), msg)

    def _program_log(self, prog: nvrtcProgram) -> str:
        size = c_size_t(0)
        if self.lib.nvrtcGetProgramLogSize(prog, byref(size)) != NVRTC_SUCCESS:
            return ""
        buf = ctypes.create_string_buffer(int(size.value))
        if self.lib.nvrtcGetProgramLog(prog, buf) != NVRTC_SUCCESS:
            return ""
        return buf.value.decode("utf-8", errors="replace")

    def compile_to_ptx(
        self, source: str, name: str, options: Sequence[str] = ()
    ) -> bytes:
        """
        Compile CUDA C++ source to PTX.

        Parameters
        ----------
        source : str
            Kernel source. Kernels must be declared `extern "C"` so their
            names are not mangled.
        name : str
            Virtual file name used in diagnostics.
        options : sequence of str
            NVRTC command line options (e.g. "--gpu-architecture=compute_80").

        Returns
        -------
        bytes
            NUL-terminated PTX image.
        """
        self._bind()
        prog = nvrtcProgram()
        self._check(
            self.lib.nvrtcCreateProgram(
                byref(prog), source.encode("utf-8"), name.encode("ascii"), 0, None, None
            ),
            "nvrtcCreateProgram",
        )
        try:
            opts = (c_char_p * max(1, len(options)))(
                *[o.encode("ascii") for o in options]
            )
            st = self.lib.nvrtcCompileProgram(prog, len(options), opts)
            if st != NVRTC_SUCCESS:
                self._check(st, "nvrtcCompileProgram", self._program_log(prog))

            size = c_size_t(0)
            self._check(self.lib.nvrtcGetPTXSize(prog, byref(size)), "nvrtcGetPTXSize")
            ptx = ctypes.create_string_buffer(int(size.value))
            self._check(self.lib.nvrtcGetPTX(prog, ptx), "nvrtcGetPTX")
            return ptx.raw
        finally:
            self.lib.nvrtcDestroyProgram(byref(prog))


_nvrtc_singleton: NvrtcLib | None = None


def get_nvrtc_lib() -> NvrtcLib:
    """Return the process-wide `NvrtcLib`, loading NVRTC on first use."""
    global _nvrtc_singleton
    lib = load_nvrtc()
    if _nvrtc_singleton is None or _nvrtc_singleton.lib is not lib:
        _nvrtc_singleton = NvrtcLib(lib)
    return _nvrtc_singleton
