from ._arithmetic import TensorMixinArithmetic
from ._comparison import TensorMixinComparison
from ._indexing import TensorMixinIndexing
from ._reduction import TensorMixinReduction, ValuesIndices
from ._shape import TensorMixinShape
from ._unary import TensorMixinUnary

__all__ = [
    "TensorMixinArithmetic",
    "TensorMixinComparison",
    "TensorMixinIndexing",
    "TensorMixinReduction",
    "TensorMixinShape",
    "TensorMixinUnary",
    "ValuesIndices",
]
