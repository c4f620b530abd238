"""
Binary module state format.

Layout::

    uleb128  number of entries
    per entry:
        uleb128  byte length of the name
        bytes    UTF-8 dotted name
        tensor   persisted tensor format (see `tensor._serialization`)

Serialization is defined for host-resident tensors only.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict

from ..tensor._serialization import (
    open_stream,
    read_array,
    read_exact,
    read_header,
    read_uleb128,
    write_tensor,
    write_uleb128,
)
from ..tensor._tensor import Tensor

logger = logging.getLogger(__name__)


def save_state(state: Dict[str, Tensor], file: Any) -> None:
    with open_stream(file, "wb") as f:
        write_uleb128(f, len(state))
        for name, t in state.items():
            raw = name.encode("utf-8")
            write_uleb128(f, len(raw))
            f.write(raw)
            write_tensor(f, t)
    logger.debug("saved %d state entries", len(state))


def load_state(file: Any) -> "OrderedDict[str, Tensor]":
    """
    Raises
    ------
    EOFError
        If the stream is truncated.
    UnicodeDecodeError
        If an entry name is not valid UTF-8.
    """
    out: "OrderedDict[str, Tensor]" = OrderedDict()
    with open_stream(file, "rb") as f:
        count = read_uleb128(f)
        for _ in range(count):
            name = read_exact(f, read_uleb128(f)).decode("utf-8")
            st, shape = read_header(f)
            out[name] = Tensor._from_numpy(read_array(f, st, shape), dtype=st)
    return out
