"""
Backend initialisation and device availability.

The backend is initialised exactly once per process; `load_backend()` returns
the resulting `BackendInfo` record, which every allocation consults to decide
whether a requested placement can be served. Keeping this as an explicit
result object (instead of module-level "loaded" flags) keeps repeated or
concurrent initialisation deterministic.

Resolution policy
-----------------
The shipped provider is the host (NumPy) engine, which serves `cpu` only.
`TENSORBRIDGE_BACKEND` may name the provider explicitly; any other value
fails with the list of providers that were tried.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Tuple

import numpy as np

from ...domain._errors import AllocationError
from ...domain.device._device import Device, DeviceType

logger = logging.getLogger(__name__)

HOST_PROVIDER = "host"


@dataclass(frozen=True)
class BackendInfo:
    """
    Result of backend initialisation.

    Attributes
    ----------
    provider : str
        Name of the loaded provider.
    version : str
        Version string of the numeric library behind the provider.
    device_counts : dict[DeviceType, int]
        Number of usable devices per device type. Types not listed have none.
    """

    provider: str
    version: str
    device_counts: Dict[DeviceType, int] = field(default_factory=dict)

    @property
    def device_types(self) -> Tuple[DeviceType, ...]:
        return tuple(t for t, n in self.device_counts.items() if n > 0)

    def device_count(self, device_type: DeviceType) -> int:
        return int(self.device_counts.get(device_type, 0))

    def is_available(self, device: Device) -> bool:
        n = self.device_count(device.type)
        if n == 0:
            return False
        if device.index is None:
            return True
        return device.index < n

    def require(self, device: Device, *, op: str = "allocate") -> None:
        """
        Raise `AllocationError` if `device` cannot be served.
        """
        if not self.is_available(device):
            available = ", ".join(t.value for t in self.device_types) or "none"
            raise AllocationError(
                f"{op}: device '{device}' is not available "
                f"(provider={self.provider!r}, available device types: {available})",
                device=str(device),
            )


def _host_backend() -> BackendInfo:
    return BackendInfo(
        provider=HOST_PROVIDER,
        version=f"numpy-{np.__version__}",
        device_counts={DeviceType.CPU: 1},
    )


_PROVIDERS = {HOST_PROVIDER: _host_backend}


@lru_cache(maxsize=1)
def load_backend() -> BackendInfo:
    """
    Initialise the backend (once) and return its description.

    Raises
    ------
    OSError
        If `TENSORBRIDGE_BACKEND` names a provider that does not exist.
    """
    requested = os.environ.get("TENSORBRIDGE_BACKEND", HOST_PROVIDER).strip().lower()
    factory = _PROVIDERS.get(requested)
    if factory is None:
        raise OSError(
            f"Failed to load tensorbridge backend {requested!r}. Tried: "
            + ", ".join(sorted(_PROVIDERS))
        )
    info = factory()
    logger.debug(
        "backend initialised: provider=%s version=%s devices=%s",
        info.provider,
        info.version,
        [t.value for t in info.device_types],
    )
    return info


def is_available(device: Device) -> bool:
    return load_backend().is_available(device)


def cuda_is_available() -> bool:
    return load_backend().device_count(DeviceType.CUDA) > 0
