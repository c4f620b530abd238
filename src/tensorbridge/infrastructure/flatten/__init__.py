from ._flatten_module import Flatten, Unflatten

__all__ = ["Flatten", "Unflatten"]
