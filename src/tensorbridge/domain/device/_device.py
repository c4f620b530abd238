"""
Device abstraction utilities.

This module defines lightweight abstractions for representing computation
devices in a framework-agnostic way. It provides:

- `DeviceType`: the closed enumeration of device categories the engine
  knows about (host CPU, accelerators, and values reserved for backends that
  may be added later)
- `Device`: a concrete device descriptor that validates and normalizes
  user-facing device strings such as "cpu", "cuda" or "cuda:1"

Whether a device is *available* is not decided here; that is a property of
the loaded backend (see `infrastructure.native._loader`).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Union


class DeviceType(Enum):
    """
    Enumeration of device categories.

    Only `CPU` is served by the shipped host backend. The remaining values
    are part of the closed set so that device descriptors round-trip, but
    allocating on them fails with an allocation error.
    """

    CPU = "cpu"
    CUDA = "cuda"
    MKLDNN = "mkldnn"
    OPENGL = "opengl"
    OPENCL = "opencl"
    IDEEP = "ideep"
    HIP = "hip"
    FPGA = "fpga"
    MSNPU = "msnpu"
    XLA = "xla"


class Device:
    """
    Concrete computation device descriptor.

    Parameters
    ----------
    device : str | DeviceType | Device
        Either a device string ("cpu", "<type>" or "<type>:<index>"), a
        `DeviceType`, or another `Device` (copied).
    index : int, optional
        Device ordinal when `device` is a `DeviceType` or a bare type string.

    Raises
    ------
    ValueError
        If the device string is malformed, names an unknown device type, or
        gives an index to the CPU.

    Notes
    -----
    - The CPU never carries an index.
    - Accelerator types default to index 0 when none is given, so
      `Device("cuda") == Device("cuda:0")`.
    """

    __slots__ = ("type", "index")

    _PATTERN = re.compile(r"^([a-z]+)(?::(\d+))?$")

    def __init__(
        self,
        device: Union[str, DeviceType, "Device"] = "cpu",
        index: Optional[int] = None,
    ):
        if isinstance(device, Device):
            self.type, self.index = device.type, device.index
            return

        if isinstance(device, DeviceType):
            dtype, idx = device, index
        else:
            m = self._PATTERN.match(str(device).strip().lower())
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or '<type>:<index>'"
                )
            try:
                dtype = DeviceType(m.group(1))
            except ValueError:
                raise ValueError(f"Unknown device type '{m.group(1)}'") from None
            idx = int(m.group(2)) if m.group(2) is not None else index

        if dtype is DeviceType.CPU:
            if idx not in (None, 0):
                raise ValueError("cpu device does not take an index")
            idx = None
        elif idx is None:
            idx = 0
        elif idx < 0:
            raise ValueError(f"device index must be non-negative, got {idx}")

        self.type = dtype
        self.index = idx

    def __str__(self) -> str:
        if self.index is None:
            return self.type.value
        return f"{self.type.value}:{self.index}"

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
        """Return True if the device type is CPU."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if the device type is CUDA."""
        return self.type is DeviceType.CUDA


DeviceSpec = Union[str, DeviceType, Device]


def as_device(device: Optional[DeviceSpec], default: Optional[Device] = None) -> Device:
    """Normalize a user-facing device specification, falling back to `default`."""
    if device is None:
        return default if default is not None else Device("cpu")
    if isinstance(device, Device):
        return device
    return Device(device)
