from ._device import Device, DeviceSpec, DeviceType, as_device
from ._device_protocol import DeviceLike

__all__ = ["Device", "DeviceLike", "DeviceSpec", "DeviceType", "as_device"]
