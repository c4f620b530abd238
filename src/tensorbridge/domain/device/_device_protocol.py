"""
Duck-typed device contract.

`DeviceLike` lets domain-level protocols talk about device placement without
importing the concrete `Device` class.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Any object exposing a device type, an optional index and the two
    placement predicates can be used as a device descriptor.
    """

    type: object
    index: Optional[int]

    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def __str__(self) -> str: ...
