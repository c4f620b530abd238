"""
Gradient-tracking mode.

Whether differentiable operations record graph nodes is governed by a
per-thread flag. The flag is never toggled directly; it is changed through
scoped guards that restore the previous value on exit, so guards nest:

>>> with no_grad():
...     with enable_grad():
...         y = x * 2          # recorded
...     z = x * 2              # not recorded

Each thread starts with tracking enabled and sees only its own guards.
Guards are also usable as decorators.
"""

from __future__ import annotations

import functools
import threading
from typing import Any, Callable, Dict, List, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class _GradModeState(threading.local):
    def __init__(self) -> None:
        self.enabled = True
        # values to restore, per guard instance
        self.saved: Dict[int, List[bool]] = {}

    def push(self, guard: "AutoGradMode", value: bool) -> None:
        self.saved.setdefault(id(guard), []).append(value)

    def pop(self, guard: "AutoGradMode") -> bool:
        stack = self.saved[id(guard)]
        value = stack.pop()
        if not stack:
            del self.saved[id(guard)]
        return value


_state = _GradModeState()


def is_grad_enabled() -> bool:
    """Return whether the calling thread currently records autograd nodes."""
    return _state.enabled


class AutoGradMode:
    """
    Scoped guard setting gradient tracking to `enabled` for its duration.

    The same instance may be entered several times, recursively or from
    several threads; each exit restores the value its own thread saw at the
    matching entry.
    """

    def __init__(self, enabled: bool) -> None:
        self.enabled = bool(enabled)

    def __enter__(self) -> "AutoGradMode":
        _state.push(self, _state.enabled)
        _state.enabled = self.enabled
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _state.enabled = _state.pop(self)
        return False

    def __call__(self, fn: F) -> F:
        enabled = self.enabled

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with AutoGradMode(enabled):
                return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]


class no_grad(AutoGradMode):
    """Disable graph recording inside the block."""

    def __init__(self) -> None:
        super().__init__(False)


class enable_grad(AutoGradMode):
    """Re-enable graph recording inside the block (e.g. within `no_grad`)."""

    def __init__(self) -> None:
        super().__init__(True)


class set_grad_enabled(AutoGradMode):
    """
    Set gradient tracking to `mode` immediately.

    Used as a context manager, the previous value is restored on exit; used
    as a plain call, the change persists for the calling thread.
    """

    def __init__(self, mode: bool) -> None:
        super().__init__(mode)
        self._initial = _state.enabled
        _state.enabled = self.enabled

    def __enter__(self) -> "set_grad_enabled":
        _state.push(self, self._initial)
        return self
