"""
Weight initialization API.

Importing this package registers every built-in initializer with
`WeightInitializer`.
"""

from ._base import WeightInitializer, calculate_fan_in_and_fan_out, calculate_gain
from ._constants import constant_, normal_, ones_, uniform_, zeros_
from ._kaiming import kaiming_normal_, kaiming_uniform_
from ._xavier import xavier_normal_, xavier_uniform_

__all__ = [
    "WeightInitializer",
    "calculate_fan_in_and_fan_out",
    "calculate_gain",
    "constant_",
    "kaiming_normal_",
    "kaiming_uniform_",
    "normal_",
    "ones_",
    "uniform_",
    "xavier_normal_",
    "xavier_uniform_",
    "zeros_",
]
