"""
Driver registry.

`get_driver(device)` returns the process-wide driver for a device, creating
it on first use:

- `Device("cpu")`     -> `HostDriver`
- `Device("cuda:<n>")` -> `CudaDriver` bound to the primary context of GPU n

Drivers are cached so that every array on a device shares one context and
one kernel cache.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional, Union

from ...domain._driver import IDriver
from ...domain._errors import DriverError
from ...domain.device._device import Device, as_device
from ._cuda_driver import CudaDriver
from ._host_driver import HostDriver

_drivers: Dict[Device, IDriver] = {}
_registry_lock = threading.Lock()


def get_driver(device: Optional[Union[str, Device]] = None) -> IDriver:
    """
    Return the driver backing `device`.

    Raises
    ------
    DriverNotFoundError
        If a CUDA device is requested and the CUDA driver cannot be loaded.
    DriverError
        If the CUDA device cannot be initialized.
    """
    dev = as_device(device)
    with _registry_lock:
        drv = _drivers.get(dev)
        if drv is None:
            drv = HostDriver(dev) if dev.is_cpu() else CudaDriver(dev)
            _drivers[dev] = drv
        return drv


def cuda_available(index: int = 0) -> bool:
    """Return True if `cuda:<index>` can be initialized in this process."""
    try:
        get_driver(Device(f"cuda:{index}"))
    except DriverError:
        return False
    return True


__all__ = [
    CudaDriver.__name__,
    HostDriver.__name__,
    get_driver.__name__,
    cuda_available.__name__,
]
