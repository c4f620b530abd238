"""
Infrastructure module base class.

`Module` is the concrete base of every layer. It provides:

- registration of parameters, buffers (persistent or not) and child modules,
  explicitly (`register_*`) or implicitly by attribute assignment;
- order-stable recursive enumeration (own entries first, then children in
  registration order);
- dotted-name lookup (`get_parameter("encoder.layers.0.weight")`);
- mode switching (`train` / `eval`), gradient clearing and conversions;
- `state_dict` / `load_state_dict` and binary `save` / `load`;
- `dispose()` of every owned tensor.

Names are unique across the parameter, buffer and submodule namespaces of a
single module, may not be empty and may not contain ".".
"""

from __future__ import annotations

import logging
from collections import OrderedDict, namedtuple
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from typing_extensions import Self

from ..domain._errors import ShapeError
from ._parameter import Parameter
from .autograd._grad_mode import no_grad
from .tensor._tensor import Tensor

logger = logging.getLogger(__name__)

IncompatibleKeys = namedtuple("IncompatibleKeys", ["missing_keys", "unexpected_keys"])

_INTERNAL = frozenset({"_parameters", "_buffers", "_non_persistent", "_modules", "training"})


class Module:
    """
    Base class for layers and models.

    Subclasses call `super().__init__()` first, assign their parameters and
    submodules as attributes and implement `forward`.

    Attributes
    ----------
    training : bool
        Mode flag consulted by dropout and normalization layers.
    """

    def __init__(self) -> None:
        object.__setattr__(self, "_parameters", OrderedDict())
        object.__setattr__(self, "_buffers", OrderedDict())
        object.__setattr__(self, "_non_persistent", set())
        object.__setattr__(self, "_modules", OrderedDict())
        object.__setattr__(self, "training", True)

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------
    def _check_name(self, name: str, namespace: Dict[str, Any]) -> None:
        if not isinstance(name, str):
            raise TypeError(f"module entry name must be a string, got {type(name).__name__}")
        if not name:
            raise KeyError("module entry name can't be empty")
        if "." in name:
            raise KeyError(f"module entry name can't contain '.', got {name!r}")
        if "_parameters" not in self.__dict__:
            raise AttributeError("cannot register entries before Module.__init__() call")
        for other in (self._parameters, self._buffers, self._modules):
            if other is not namespace and name in other:
                raise KeyError(f"attribute {name!r} already exists")
        if name not in namespace and name in self.__dict__:
            raise KeyError(f"attribute {name!r} already exists")

    def register_parameter(self, name: str, param: Optional[Parameter]) -> None:
        """
        Register `param` under `name`. `None` reserves the name (e.g. a
        disabled bias) without contributing a parameter.
        """
        if param is not None and not isinstance(param, Parameter):
            raise TypeError(
                f"cannot assign {type(param).__name__} as parameter {name!r} "
                "(Parameter or None expected)"
            )
        self._check_name(name, self._parameters)
        self._parameters[name] = param
        object.__setattr__(self, name, param)

    def register_buffer(self, name: str, tensor: Optional[Tensor], persistent: bool = True) -> None:
        """
        Register non-trainable state. Persistent buffers are part of
        `state_dict`.
        """
        if tensor is not None and not isinstance(tensor, Tensor):
            raise TypeError(f"cannot assign {type(tensor).__name__} as buffer {name!r}")
        self._check_name(name, self._buffers)
        self._buffers[name] = tensor
        if persistent:
            self._non_persistent.discard(name)
        else:
            self._non_persistent.add(name)
        object.__setattr__(self, name, tensor)

    def register_module(self, name: str, module: Optional["Module"]) -> None:
        if module is not None and not isinstance(module, Module):
            raise TypeError(f"{type(module).__name__} is not a Module subclass")
        self._check_name(name, self._modules)
        self._modules[name] = module
        object.__setattr__(self, name, module)

    add_module = register_module

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _INTERNAL:
            object.__setattr__(self, name, value)
            return
        params = self.__dict__.get("_parameters")
        if isinstance(value, Parameter):
            self.register_parameter(name, value)
        elif isinstance(value, Module):
            self.register_module(name, value)
        elif params is not None and name in params:
            self.register_parameter(name, value)
        elif params is not None and name in self._modules:
            self.register_module(name, value)
        elif params is not None and name in self._buffers:
            self.register_buffer(name, value, name not in self._non_persistent)
        else:
            object.__setattr__(self, name, value)

    def __delattr__(self, name: str) -> None:
        for ns in (self._parameters, self._buffers, self._modules):
            if name in ns:
                del ns[name]
                self._non_persistent.discard(name)
        object.__delattr__(self, name)

    # ------------------------------------------------------------------
    # enumeration
    # ------------------------------------------------------------------
    def _named_members(
        self, getter: Callable[["Module"], Dict[str, Any]], prefix: str, recurse: bool
    ) -> Iterator[Tuple[str, Any]]:
        seen: Set[int] = set()
        modules = self.named_modules(prefix=prefix) if recurse else [(prefix, self)]
        for mod_prefix, mod in modules:
            for name, v in getter(mod).items():
                if v is None or id(v) in seen:
                    continue
                seen.add(id(v))
                yield (f"{mod_prefix}.{name}" if mod_prefix else name), v

    def named_parameters(self, prefix: str = "", recurse: bool = True) -> Iterator[Tuple[str, Parameter]]:
        return self._named_members(lambda m: m._parameters, prefix, recurse)

    def parameters(self, recurse: bool = True) -> Iterator[Parameter]:
        for _, p in self.named_parameters(recurse=recurse):
            yield p

    def named_buffers(self, prefix: str = "", recurse: bool = True) -> Iterator[Tuple[str, Tensor]]:
        return self._named_members(lambda m: m._buffers, prefix, recurse)

    def buffers(self, recurse: bool = True) -> Iterator[Tensor]:
        for _, b in self.named_buffers(recurse=recurse):
            yield b

    def named_children(self) -> Iterator[Tuple[str, "Module"]]:
        seen: Set[int] = set()
        for name, m in self._modules.items():
            if m is not None and id(m) not in seen:
                seen.add(id(m))
                yield name, m

    def children(self) -> Iterator["Module"]:
        for _, m in self.named_children():
            yield m

    def named_modules(self, prefix: str = "", memo: Optional[Set[int]] = None) -> Iterator[Tuple[str, "Module"]]:
        """Pre-order walk of this module and every descendant."""
        if memo is None:
            memo = set()
        if id(self) in memo:
            return
        memo.add(id(self))
        yield prefix, self
        for name, m in self._modules.items():
            if m is None:
                continue
            yield from m.named_modules(f"{prefix}.{name}" if prefix else name, memo)

    def modules(self) -> Iterator["Module"]:
        for _, m in self.named_modules():
            yield m

    # ------------------------------------------------------------------
    # dotted lookup
    # ------------------------------------------------------------------
    def get_submodule(self, target: str) -> "Module":
        if target == "":
            return self
        mod: Module = self
        for i, atom in enumerate(target.split(".")):
            child = mod._modules.get(atom)
            if child is None:
                raise KeyError(
                    f"submodule {'.'.join(target.split('.')[: i + 1])!r} not found"
                )
            mod = child
        return mod

    def _owner_and_leaf(self, target: str) -> Tuple["Module", str]:
        owner_path, _, leaf = target.rpartition(".")
        return self.get_submodule(owner_path), leaf

    def get_parameter(self, target: str) -> Parameter:
        """
        Raises
        ------
        KeyError
            If no parameter is registered under the dotted name.
        """
        try:
            owner, leaf = self._owner_and_leaf(target)
        except KeyError:
            raise KeyError(f"parameter {target!r} not found") from None
        p = owner._parameters.get(leaf)
        if p is None:
            raise KeyError(f"parameter {target!r} not found")
        return p

    def get_buffer(self, target: str) -> Tensor:
        try:
            owner, leaf = self._owner_and_leaf(target)
        except KeyError:
            raise KeyError(f"buffer {target!r} not found") from None
        b = owner._buffers.get(leaf)
        if b is None:
            raise KeyError(f"buffer {target!r} not found")
        return b

    def has_parameter(self, target: str) -> bool:
        try:
            self.get_parameter(target)
        except KeyError:
            return False
        return True

    def has_buffer(self, target: str) -> bool:
        try:
            self.get_buffer(target)
        except KeyError:
            return False
        return True

    def has_submodule(self, target: str) -> bool:
        try:
            self.get_submodule(target)
        except KeyError:
            return False
        return True

    # ------------------------------------------------------------------
    # modes and gradients
    # ------------------------------------------------------------------
    def train(self, mode: bool = True) -> Self:
        if not isinstance(mode, bool):
            raise ValueError("training mode is expected to be boolean")
        for m in self.modules():
            object.__setattr__(m, "training", mode)
        return self

    def eval(self) -> Self:
        return self.train(False)

    def zero_grad(self, set_to_none: bool = True) -> None:
        """
        Clear parameter gradients. With `set_to_none=False` existing
        gradients are zeroed in place instead.
        """
        for p in self.parameters():
            if p.grad is None:
                continue
            if set_to_none:
                p.grad = None
            else:
                p.grad._array[...] = 0

    def requires_grad_(self, requires_grad: bool = True) -> Self:
        for p in self.parameters():
            p.requires_grad_(requires_grad)
        return self

    def apply(self, fn: Callable[["Module"], None]) -> Self:
        """Call `fn` on every submodule (children first), then on self."""
        for m in self.children():
            m.apply(fn)
        fn(self)
        return self

    # ------------------------------------------------------------------
    # conversions
    # ------------------------------------------------------------------
    def _convert(self, fn: Callable[[Tensor], Tensor]) -> Self:
        # Tensors are converted in place, once each, so shared parameters
        # stay shared and optimizers keep pointing at live storage.
        seen: Set[int] = set()
        with no_grad():
            for m in self.modules():
                for t in list(m._parameters.values()) + list(m._buffers.values()):
                    if t is None or id(t) in seen:
                        continue
                    seen.add(id(t))
                    new = fn(t)
                    if new is not t:
                        t._adopt(new)
                    if t.grad is not None:
                        t._grad = fn(t.grad)
        return self

    def to(self, device: Any = None, dtype: Any = None) -> Self:
        """
        Move parameters and buffers to `device`; cast floating point ones to
        `dtype`. Integer buffers keep their type.
        """

        def fn(t: Tensor) -> Tensor:
            target = dtype if dtype is not None and t.is_floating_point() else None
            return t.to(device=device, dtype=target)

        return self._convert(fn)

    def float(self) -> Self:
        return self.to(dtype="float32")

    def double(self) -> Self:
        return self.to(dtype="float64")

    def half(self) -> Self:
        return self.to(dtype="float16")

    def cpu(self) -> Self:
        return self.to(device="cpu")

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    def state_dict(self, prefix: str = "", keep_vars: bool = False) -> "OrderedDict[str, Tensor]":
        """
        Parameters and persistent buffers keyed by dotted name.

        Values are detached views of the live tensors unless `keep_vars`.
        """
        out: "OrderedDict[str, Tensor]" = OrderedDict()
        for mod_prefix, mod in self.named_modules(prefix=prefix.rstrip(".")):
            base = f"{mod_prefix}." if mod_prefix else ""
            for name, p in mod._parameters.items():
                if p is not None:
                    out[base + name] = p if keep_vars else p.detach()
            for name, b in mod._buffers.items():
                if b is not None and name not in mod._non_persistent:
                    out[base + name] = b if keep_vars else b.detach()
        return out

    def load_state_dict(self, state_dict: Dict[str, Any], strict: bool = True) -> IncompatibleKeys:
        """
        Copy values from `state_dict` into the matching parameters and buffers.

        Raises
        ------
        KeyError
            With `strict=True`, if keys are missing or unexpected.
        ShapeError
            If a stored value's shape differs from the target's.
        """
        own = self.state_dict(keep_vars=True)
        missing = [k for k in own if k not in state_dict]
        unexpected = [k for k in state_dict if k not in own]
        if strict and (missing or unexpected):
            raise KeyError(
                f"error(s) in loading state_dict for {type(self).__name__}: "
                f"missing keys {missing}, unexpected keys {unexpected}"
            )
        if missing or unexpected:
            logger.warning(
                "%s.load_state_dict: missing keys %s, unexpected keys %s",
                type(self).__name__,
                missing,
                unexpected,
            )
        with no_grad():
            for key, target in own.items():
                if key not in state_dict:
                    continue
                value = state_dict[key]
                arr = value.to_numpy() if isinstance(value, Tensor) else value
                if tuple(getattr(arr, "shape", ())) != target.shape:
                    raise ShapeError(
                        f"size mismatch for {key}",
                        expected=target.shape,
                        actual=tuple(getattr(arr, "shape", ())),
                    )
                target.copy_from_numpy(arr)
        logger.debug("loaded %d entries into %s", len(own) - len(missing), type(self).__name__)
        return IncompatibleKeys(missing, unexpected)

    def save(self, file: Any) -> None:
        """Write `state_dict()` in the binary module format."""
        from .module._serialization import save_state

        save_state(self.state_dict(), file)

    def load(self, file: Any, strict: bool = True) -> Self:
        """Read a file written by `save` into this module."""
        from .module._serialization import load_state

        self.load_state_dict(load_state(file), strict=strict)
        return self

    def dispose(self) -> None:
        """Dispose every owned parameter and buffer, recursively."""
        for t in list(self.parameters()) + list(self.buffers()):
            t.dispose()

    # ------------------------------------------------------------------
    # call protocol
    # ------------------------------------------------------------------
    def forward(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not implement forward()")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.forward(*args, **kwargs)

    def extra_repr(self) -> str:
        return ""

    def __repr__(self) -> str:
        lines: List[str] = []
        for name, m in self._modules.items():
            child = repr(m).replace("\n", "\n  ")
            lines.append(f"({name}): {child}")
        head = f"{type(self).__name__}({self.extra_repr()}"
        if not lines:
            return head + ")"
        return head + "\n  " + "\n  ".join(lines) + "\n)"
