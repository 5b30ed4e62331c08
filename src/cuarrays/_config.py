"""
Environment-driven configuration for cuarrays.

Settings are read once from the process environment into a frozen
`Config` instance. `reload_config()` re-reads the environment (useful in
tests that patch `os.environ`).

Environment variables
---------------------
CUARRAYS_DEVICE : str, optional
    Default device for new arrays ("cpu", "cuda" or "cuda:<index>").
    Defaults to "cuda:0".
CUARRAYS_LOG_LEVEL : str, optional
    Logging level name (e.g. "DEBUG", "WARNING"). When unset, the package
    logger only has a `NullHandler`.
CUARRAYS_THREADS_PER_BLOCK : int, optional
    Maximum threads per block used by kernel launches (1..1024, default 256).
CUDA_PATH / CUDA_HOME : str, optional
    CUDA toolkit roots searched for `libnvrtc` (and `libcuda` on systems
    where the driver is not on the default library path).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

_DEFAULT_DEVICE = "cuda:0"
_DEFAULT_THREADS_PER_BLOCK = 256
_MAX_THREADS_PER_BLOCK = 1024


@dataclass(frozen=True)
class Config:
    """
    Snapshot of cuarrays settings.

    Attributes
    ----------
    default_device : str
        Device string used when an array is created without a device.
    log_level : str
        Upper-cased logging level name, or "" when logging is not configured.
    threads_per_block : int
        Upper bound on the block size chosen by `launch_config`.
    cuda_roots : tuple[str, ...]
        Toolkit directories from `CUDA_PATH` / `CUDA_HOME`, in that order.
    """

    default_device: str = _DEFAULT_DEVICE
    log_level: str = ""
    threads_per_block: int = _DEFAULT_THREADS_PER_BLOCK
    cuda_roots: Tuple[str, ...] = field(default_factory=tuple)


def _parse_threads_per_block(raw: str) -> int:
    if not raw:
        return _DEFAULT_THREADS_PER_BLOCK
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(
            f"CUARRAYS_THREADS_PER_BLOCK must be an integer, got {raw!r}"
        ) from e
    if not 1 <= value <= _MAX_THREADS_PER_BLOCK:
        raise ValueError(
            f"CUARRAYS_THREADS_PER_BLOCK must be in [1, {_MAX_THREADS_PER_BLOCK}], "
            f"got {value}"
        )
    return value


def _load_from_env() -> Config:
    env = os.environ
    roots = tuple(
        p for p in (env.get("CUDA_PATH", ""), env.get("CUDA_HOME", "")) if p
    )
    return Config(
        default_device=env.get("CUARRAYS_DEVICE", "").strip() or _DEFAULT_DEVICE,
        log_level=env.get("CUARRAYS_LOG_LEVEL", "").strip().upper(),
        threads_per_block=_parse_threads_per_block(
            env.get("CUARRAYS_THREADS_PER_BLOCK", "").strip()
        ),
        cuda_roots=roots,
    )


_config: Optional[Config] = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = _load_from_env()
    return _config


def reload_config() -> Config:
    """Re-read the environment and replace the process-wide configuration."""
    global _config
    _config = _load_from_env()
    return _config
