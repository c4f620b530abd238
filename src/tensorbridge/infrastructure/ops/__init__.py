"""
CPU kernels. Importing this package registers every kernel symbol with the
native engine.
"""

from . import conv_cpu, interpolate_cpu, pad_cpu, pool_cpu
from ._common import ntuple, pool_output_size, transposed_output_size
from .interpolate_cpu import interpolation_matrix

__all__ = [
    "conv_cpu",
    "interpolate_cpu",
    "interpolation_matrix",
    "ntuple",
    "pad_cpu",
    "pool_cpu",
    "pool_output_size",
    "transposed_output_size",
]
