"""
Process-wide runtime configuration.

Settings are read once from the environment the first time `get_config()` is
called and can be replaced programmatically with `set_config()` or
temporarily with `override_config()`.

Environment variables
---------------------
TENSORBRIDGE_DEFAULT_DEVICE      default placement for factories ("cpu")
TENSORBRIDGE_DEFAULT_DTYPE       default floating element type ("float32")
TENSORBRIDGE_MAX_DATA_ELEMENTS   largest tensor `Tensor.data()` will expose
TENSORBRIDGE_WARN_ON_FINALIZE    warn when the finalizer releases a handle
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator, Optional

from ..domain._dtype import ScalarType

logger = logging.getLogger(__name__)

INT32_MAX = 2**31 - 1


@dataclass(frozen=True)
class RuntimeConfig:
    default_device: str = "cpu"
    default_dtype: ScalarType = ScalarType.Float32
    max_data_elements: int = INT32_MAX
    warn_on_finalize: bool = False

    def __post_init__(self) -> None:
        if self.max_data_elements <= 0:
            raise ValueError(
                f"max_data_elements must be positive, got {self.max_data_elements}"
            )
        if not self.default_dtype.is_floating_point:
            raise ValueError(
                f"default_dtype must be floating point, got {self.default_dtype}"
            )

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        kwargs = {}
        if (v := os.environ.get("TENSORBRIDGE_DEFAULT_DEVICE")) is not None:
            kwargs["default_device"] = v
        if (v := os.environ.get("TENSORBRIDGE_DEFAULT_DTYPE")) is not None:
            kwargs["default_dtype"] = ScalarType.from_any(v)
        if (v := os.environ.get("TENSORBRIDGE_MAX_DATA_ELEMENTS")) is not None:
            kwargs["max_data_elements"] = int(v)
        if (v := os.environ.get("TENSORBRIDGE_WARN_ON_FINALIZE")) is not None:
            kwargs["warn_on_finalize"] = v.strip().lower() in ("1", "true", "yes", "on")
        return cls(**kwargs)


_lock = threading.Lock()
_config: Optional[RuntimeConfig] = None


def get_config() -> RuntimeConfig:
    global _config
    if _config is None:
        with _lock:
            if _config is None:
                _config = RuntimeConfig.from_env()
                logger.debug("runtime config loaded: %s", _config)
    return _config


def set_config(**overrides) -> RuntimeConfig:
    """Replace fields of the active config. Returns the previous config."""
    global _config
    with _lock:
        previous = _config if _config is not None else RuntimeConfig.from_env()
        if "default_dtype" in overrides:
            overrides["default_dtype"] = ScalarType.from_any(overrides["default_dtype"])
        _config = replace(previous, **overrides)
    return previous


@contextmanager
def override_config(**overrides) -> Iterator[RuntimeConfig]:
    global _config
    previous = set_config(**overrides)
    try:
        yield get_config()
    finally:
        with _lock:
            _config = previous
