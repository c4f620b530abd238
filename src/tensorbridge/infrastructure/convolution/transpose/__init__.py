from ._conv_transpose_function import (
    ConvTransposeNdFn,
    conv_transpose1d,
    conv_transpose2d,
    conv_transpose3d,
)
from ._conv_transpose_module import ConvTranspose1d, ConvTranspose2d, ConvTranspose3d

__all__ = [
    "ConvTranspose1d",
    "ConvTranspose2d",
    "ConvTranspose3d",
    "ConvTransposeNdFn",
    "conv_transpose1d",
    "conv_transpose2d",
    "conv_transpose3d",
]
