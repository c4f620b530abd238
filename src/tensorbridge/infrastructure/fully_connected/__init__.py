from ._linear import Bilinear, Identity, Linear, bilinear, linear

__all__ = ["Bilinear", "Identity", "Linear", "bilinear", "linear"]
