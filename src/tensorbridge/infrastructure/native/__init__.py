from ._engine import NativeEngine, get_engine, native_kernel
from ._handle import NativeTensor
from ._loader import BackendInfo, cuda_is_available, is_available, load_backend

__all__ = [
    "BackendInfo",
    "NativeEngine",
    "NativeTensor",
    "cuda_is_available",
    "get_engine",
    "is_available",
    "load_backend",
    "native_kernel",
]
