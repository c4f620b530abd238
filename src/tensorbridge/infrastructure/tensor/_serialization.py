"""
Persisted tensor format.

Layout (no header, no version field)::

    uleb128  scalar type code
    uleb128  ndim
    uleb128  size of each dimension (ndim values)
    bytes    elements in C order, native byte order

`file` may be a path or a binary stream; streams are left open and
positioned right after the tensor, so several tensors can be written back
to back (the module format relies on this).
"""

from __future__ import annotations

import logging
import math
import os
from contextlib import contextmanager
from typing import IO, Any, Iterator, Optional, Union

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import DTypeNotSupportedError, ShapeError
from ._tensor import Tensor

logger = logging.getLogger(__name__)

FileLike = Union[str, "os.PathLike[str]", IO[bytes]]


def write_uleb128(stream: IO[bytes], value: int) -> None:
    if value < 0:
        raise ValueError(f"ULEB128 cannot encode a negative value ({value})")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    stream.write(bytes(out))


def read_uleb128(stream: IO[bytes]) -> int:
    """
    Raises
    ------
    EOFError
        If the stream ends inside the number.
    """
    result = 0
    shift = 0
    while True:
        b = stream.read(1)
        if not b:
            raise EOFError("unexpected end of stream while reading a ULEB128 value")
        byte = b[0]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result
        shift += 7


_CHUNK = 1 << 20


def _remaining(stream: IO[bytes]) -> Optional[int]:
    """Bytes left in a seekable stream, None when it cannot tell."""
    seekable = getattr(stream, "seekable", None)
    if seekable is None or not seekable():
        return None
    pos = stream.tell()
    end = stream.seek(0, os.SEEK_END)
    stream.seek(pos)
    return end - pos


def read_exact(stream: IO[bytes], n: int) -> bytes:
    """
    Read exactly `n` bytes, in bounded chunks.

    Raises
    ------
    EOFError
        If fewer than `n` bytes are available.
    """
    left = _remaining(stream)
    if left is not None and left < n:
        raise EOFError(f"unexpected end of stream: expected {n} bytes, got {left}")
    parts = []
    got = 0
    while got < n:
        part = stream.read(min(_CHUNK, n - got))
        if not part:
            raise EOFError(f"unexpected end of stream: expected {n} bytes, got {got}")
        parts.append(part)
        got += len(part)
    return b"".join(parts)


@contextmanager
def open_stream(file: FileLike, mode: str) -> Iterator[IO[bytes]]:
    if isinstance(file, (str, os.PathLike)):
        with open(file, mode) as f:
            yield f
    else:
        yield file


def write_tensor(stream: IO[bytes], tensor: Tensor) -> None:
    arr = tensor.to_numpy()
    write_uleb128(stream, int(tensor.dtype))
    write_uleb128(stream, arr.ndim)
    for d in arr.shape:
        write_uleb128(stream, int(d))
    stream.write(np.ascontiguousarray(arr).tobytes())


def read_header(stream: IO[bytes]):
    st = ScalarType.from_code(read_uleb128(stream))
    if not st.is_supported:
        raise DTypeNotSupportedError(f"scalar type {st.name} cannot be loaded")
    ndim = read_uleb128(stream)
    shape = tuple(read_uleb128(stream) for _ in range(ndim))
    return st, shape


def read_array(stream: IO[bytes], st: ScalarType, shape) -> np.ndarray:
    dtype = st.numpy_dtype
    count = math.prod(shape)
    if count * dtype.itemsize > np.iinfo(np.intp).max:
        raise ShapeError(
            "persisted tensor is larger than the address space",
            expected=f"at most {np.iinfo(np.intp).max} bytes",
            actual=shape,
        )
    data = read_exact(stream, count * dtype.itemsize)
    return np.frombuffer(data, dtype=dtype, count=count).reshape(shape).copy()


def save(tensor: Tensor, file: FileLike) -> None:
    """Write `tensor` to `file` in the persisted tensor format."""
    with open_stream(file, "wb") as f:
        write_tensor(f, tensor)
    logger.debug("saved tensor %s %s", tensor.dtype.name, tensor.shape)


def load(file: FileLike, *, device: Any = None) -> Tensor:
    """
    Read one tensor.

    Raises
    ------
    EOFError
        If the stream is truncated.
    DTypeNotSupportedError
        If the type code is unknown.
    ShapeError
        If the header declares a tensor too large to address.
    """
    with open_stream(file, "rb") as f:
        st, shape = read_header(f)
        arr = read_array(f, st, shape)
    return Tensor._from_numpy(arr, device=device, dtype=st)


def load_into(tensor: Tensor, file: FileLike) -> Tensor:
    """
    Read one tensor into `tensor`, which must match its type and shape.

    Raises
    ------
    TypeError
        If the stored element type differs.
    ShapeError
        If the stored shape differs.
    """
    with open_stream(file, "rb") as f:
        st, shape = read_header(f)
        if st != tensor.dtype:
            raise TypeError(
                f"stored element type {st.name} does not match tensor type {tensor.dtype.name}"
            )
        if shape != tensor.shape:
            raise ShapeError(
                "stored tensor shape does not match", expected=tensor.shape, actual=shape
            )
        arr = read_array(f, st, shape)
    tensor.copy_from_numpy(arr)
    return tensor
