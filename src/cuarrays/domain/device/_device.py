"""
Device descriptors.

This module defines the descriptor used to select which native driver backs
an array:

- `DeviceType`: the device category (host-emulated or CUDA)
- `Device`: a normalized descriptor parsed from strings such as "cpu",
  "cuda" or "cuda:1"
- `as_device`: coerce user input (string, `Device` or None) to a `Device`

A "cpu" device is an emulated GPU: its device memory is host RAM owned by the
host driver, and its kernels are executed by NumPy emulations. It exists so
that every array operation has identical semantics on machines without a GPU.
"""

from __future__ import annotations

from enum import Enum
import re
from typing import Optional, Union


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host-emulated device (host RAM, NumPy kernels).
    CUDA : DeviceType
        NVIDIA CUDA-enabled GPU driven through the CUDA driver API.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be one of:
        - "cpu"
        - "cuda" (shorthand for "cuda:0")
        - "cuda:<index>", where <index> is a non-negative integer

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.

    Notes
    -----
    `__slots__` keeps descriptors small; they are created for every array
    and used as dictionary keys by the driver registry.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda(?::(\d+))?$")

    def __init__(self, device: str):
        device = device.strip().lower()
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
        else:
            m = self._CUDA_PATTERN.match(device)
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
                )
            self.type = DeviceType.CUDA
            self.index = int(m.group(1) or 0)

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            try:
                other = Device(other)
            except ValueError:
                return False
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True for the host-emulated device."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True for CUDA devices."""
        return self.type is DeviceType.CUDA


def as_device(device: Optional[Union[str, Device]] = None) -> Device:
    """
    Coerce a device specification to a `Device`.

    Parameters
    ----------
    device : str | Device | None
        Device string, descriptor, or None for the configured default
        (`CUARRAYS_DEVICE`, "cuda:0" when unset).

    Returns
    -------
    Device
        Normalized device descriptor.
    """
    if isinstance(device, Device):
        return device
    if device is None:
        from ..._config import get_config

        device = get_config().default_device
    return Device(str(device))
