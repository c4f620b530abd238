"""Loss aggregation modes."""

from __future__ import annotations

from enum import Enum
from typing import Union


class Reduction(Enum):
    """
    How a loss collapses its element-wise values.

    - `None_`: return the element-wise loss (same shape as the input)
    - `Sum`:   return the 0-d sum
    - `Mean`:  return the 0-d mean
    """

    None_ = "none"
    Sum = "sum"
    Mean = "mean"

    @classmethod
    def from_any(cls, value: Union["Reduction", str, None]) -> "Reduction":
        if isinstance(value, Reduction):
            return value
        if value is None:
            return cls.None_
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"invalid reduction {value!r}; expected one of 'none', 'sum', 'mean'"
            ) from None
