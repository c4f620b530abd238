from ._dtype import ScalarType, bfloat16, check_cast, promote_types
from ._errors import (
    AllocationError,
    DeviceMismatchError,
    DeviceNotSupportedError,
    DTypeNotSupportedError,
    GraphStateError,
    InvalidHandleError,
    NativeEngineError,
    ShapeError,
    TensorBridgeError,
)
from ._reduction import Reduction
from .device import Device, DeviceLike, DeviceType
