"""
Error taxonomy for tensorbridge.

Every failure raised by the library belongs to exactly one category so that
callers (and log readers) can tell them apart without parsing messages:

- allocation:     a requested device is unavailable or memory is exhausted
- shape:          an operator precondition on rank/shape/index was violated
- invalid-handle: a disposed (or never constructed) tensor was used
- graph-state:    the autograd graph cannot be walked as requested
- native-engine:  an opaque failure surfaced from the engine's last-error slot

Each class also derives from the closest builtin exception so existing
`except ValueError` / `except RuntimeError` handlers keep working.

Messages are prefixed with the category tag, e.g. ``[shape] ...``.
"""

from __future__ import annotations

from typing import Any, Optional


class TensorBridgeError(Exception):
    """
    Base class of every tensorbridge error.

    Attributes
    ----------
    category : str
        Short category tag used as message prefix.
    """

    category: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(f"[{self.category}] {message}")
        self.detail = message


class AllocationError(TensorBridgeError, RuntimeError):
    """Raised when a device is unavailable or an allocation cannot be served."""

    category = "allocation"

    def __init__(self, message: str, device: Optional[str] = None) -> None:
        super().__init__(message)
        self.device = device


class ShapeError(TensorBridgeError, ValueError):
    """
    Raised when an operator's rank/shape/index precondition is violated.

    Parameters
    ----------
    message : str
        Human-readable description of the violated precondition.
    dim : int, optional
        Offending dimension, when a single one can be named.
    expected : Any, optional
        What the operator required (rank, size, shape...).
    actual : Any, optional
        What it received.
    """

    category = "shape"

    def __init__(
        self,
        message: str,
        *,
        dim: Optional[int] = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        parts = [message]
        if dim is not None:
            parts.append(f"dim={dim}")
        if expected is not None or actual is not None:
            parts.append(f"expected={expected!r}, actual={actual!r}")
        super().__init__(" | ".join(parts))
        self.dim = dim
        self.expected = expected
        self.actual = actual


class InvalidHandleError(TensorBridgeError, RuntimeError):
    """Raised when an operation touches a disposed or invalid tensor handle."""

    category = "invalid-handle"


class GraphStateError(TensorBridgeError, RuntimeError):
    """Raised when the autograd graph cannot be traversed as requested."""

    category = "graph-state"


class NativeEngineError(TensorBridgeError, RuntimeError):
    """
    Raised when the native engine reports a failure through its last-error slot.

    The engine's message is kept verbatim in `engine_message`.
    """

    category = "native-engine"

    def __init__(self, message: str, op: Optional[str] = None) -> None:
        prefix = f"{op}: " if op else ""
        super().__init__(prefix + message)
        self.engine_message = message
        self.op = op


class DTypeNotSupportedError(TensorBridgeError, TypeError):
    """Raised for element types (or casts) the engine does not support."""

    category = "dtype"


class DeviceNotSupportedError(TensorBridgeError, RuntimeError):
    """
    Raised when an operation is requested on a device backend that is not
    implemented.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted (e.g., "add", "conv2d").
    device : str
        String representation of the device.
    """

    category = "device"

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class DeviceMismatchError(TensorBridgeError, RuntimeError):
    """Raised when an operation mixes tensors placed on different devices."""

    category = "device"

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b
