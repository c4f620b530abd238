"""
Optimizers; schedulers are in `tensorbridge.optim.lr_scheduler`.
"""

from ..infrastructure.optimizers import SGD, Adagrad, Adam, AdamW, Optimizer, RMSprop
from . import lr_scheduler  # noqa: E402

__all__ = ["Adagrad", "Adam", "AdamW", "Optimizer", "RMSprop", "SGD", "lr_scheduler"]
