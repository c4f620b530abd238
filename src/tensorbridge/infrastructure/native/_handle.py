"""
Native tensor handle record.

A `NativeTensor` is the per-allocation ownership record held by exactly one
`Tensor`. It bundles the host storage with the element type and placement it
was allocated for. Releasing the record drops the storage reference; the
record itself stays behind as a tombstone so stale handles are detected
instead of dereferenced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ...domain._dtype import ScalarType
from ...domain.device._device import Device


@dataclass(eq=False)
class NativeTensor:
    storage: Optional[np.ndarray]
    scalar_type: ScalarType
    device: Device
    handle_id: int
    # id of the allocation this handle views; equal ids mean shared memory
    base_id: int = field(default=0)

    @property
    def released(self) -> bool:
        return self.storage is None

    def __repr__(self) -> str:
        state = "released" if self.released else f"shape={self.storage.shape}"
        return (
            f"NativeTensor(id={self.handle_id}, {self.scalar_type.name}, "
            f"{self.device}, {state})"
        )
