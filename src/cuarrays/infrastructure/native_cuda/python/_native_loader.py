"""
infrastructure/native_cuda/python/_native_loader.py

Cached loaders for the native CUDA libraries used by `CudaDriver`:

- the CUDA driver API (`libcuda.so` / `nvcuda.dll`)
- the NVRTC runtime compiler (`libnvrtc.so*` / `nvrtc64_*.dll`)

Key behaviors
-------------
- Cached singletons: both loaders are decorated with `lru_cache` so each
  library is loaded at most once per process.
- Search order: the platform's default library search path first, then the
  `lib64` / `lib` / `bin` directories of `CUDA_PATH` and `CUDA_HOME`, then a
  few well-known system locations.
- Explicit failure: raises `DriverNotFoundError` when no candidate loads,
  listing every load error that was encountered.
"""

from __future__ import annotations

import ctypes
import glob
import os
import sys
from functools import lru_cache
from typing import List, Sequence

from ...._config import get_config
from ....domain._errors import DriverNotFoundError

# ---------------------------------------------------------------------
# Candidate discovery
# ---------------------------------------------------------------------


def _toolkit_dirs() -> List[str]:
    dirs: List[str] = []
    for root in get_config().cuda_roots:
        for sub in ("lib64", "lib", "bin", os.path.join("lib", "x64")):
            d = os.path.join(root, sub)
            if os.path.isdir(d):
                dirs.append(d)
    return dirs


def _driver_candidates() -> List[str]:
    if sys.platform == "win32":
        names = ["nvcuda.dll"]
        system_dirs = [os.path.join(os.environ.get("SystemRoot", r"C:\Windows"), "System32")]
    else:
        names = ["libcuda.so", "libcuda.so.1"]
        system_dirs = ["/usr/lib", "/usr/lib64", "/usr/lib/x86_64-linux-gnu", "/usr/lib/wsl/lib"]

    candidates = list(names)
    for d in _toolkit_dirs() + system_dirs:
        candidates.extend(os.path.join(d, n) for n in names)
    return candidates


def _nvrtc_candidates() -> List[str]:
    if sys.platform == "win32":
        patterns = ["nvrtc64_*.dll"]
        plain: List[str] = []
    else:
        patterns = ["libnvrtc.so*"]
        plain = ["libnvrtc.so", "libnvrtc.so.12", "libnvrtc.so.11.2"]

    candidates = list(plain)
    for d in _toolkit_dirs() + ["/usr/local/cuda/lib64", "/usr/lib/x86_64-linux-gnu"]:
        for pat in patterns:
            # Newest versions first; skip builtins helper libraries.
            found = sorted(glob.glob(os.path.join(d, pat)), reverse=True)
            candidates.extend(p for p in found if "builtins" not in os.path.basename(p))
    return candidates


def _load_first(candidates: Sequence[str], what: str) -> ctypes.CDLL:
    loader = ctypes.WinDLL if sys.platform == "win32" else ctypes.CDLL  # type: ignore[attr-defined]
    errors: List[str] = []
    for path in candidates:
        try:
            return loader(path)
        except OSError as e:
            errors.append(f"{path}: {e}")
    detail = "\n".join(errors) if errors else "no candidate paths"
    raise DriverNotFoundError(f"{what} could not be loaded:\n{detail}")


# ---------------------------------------------------------------------
# Public loaders
# ---------------------------------------------------------------------


@lru_cache(maxsize=1)
def load_cuda_driver() -> ctypes.CDLL:
    """
    Load and cache the CUDA driver API library.

    Returns
    -------
    ctypes.CDLL
        Handle to `libcuda` (or `nvcuda.dll`).

    Raises
    ------
    DriverNotFoundError
        If no candidate library can be loaded.
    """
    return _load_first(_driver_candidates(), "CUDA driver library")


@lru_cache(maxsize=1)
def load_nvrtc() -> ctypes.CDLL:
    """
    Load and cache the NVRTC runtime compilation library.

    Raises
    ------
    DriverNotFoundError
        If no candidate library can be loaded.
    """
    return _load_first(_nvrtc_candidates(), "NVRTC library")
