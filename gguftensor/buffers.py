"""Zero-copy tensor views over the mapped tensor-data region."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .errors import FormatError, UnsupportedElementType
from .format import (
    DTYPE_NAMES,
    DTYPE_NP,
    DTYPE_SIZES,
    GGML_TO_DTYPE,
    DType,
    GGMLType,
    shape_elements,
)
from .reader import GGUFContainer, TensorDescriptor

logger = logging.getLogger("gguftensor")


@dataclass
class BufferView:
    """Typed, shaped, read-only window onto mapped tensor bytes.

    ``data`` is a slice of the file mapping, never a copy. The view becomes
    invalid once the owning :class:`~gguftensor.store.BufferStore` is closed.
    """

    name: str
    dtype: DType
    shape: tuple[int, ...]
    offset: int
    data: memoryview

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    @property
    def n_elements(self) -> int:
        return shape_elements(self.shape)

    @property
    def dtype_name(self) -> str:
        return DTYPE_NAMES[self.dtype]

    def as_array(self) -> np.ndarray:
        """Return a zero-copy, read-only numpy array over the mapped bytes.

        BF16 tensors come back as ``uint16`` bit patterns.
        """
        return np.frombuffer(self.data, dtype=DTYPE_NP[self.dtype]).reshape(
            self.shape
        )

    def tobytes(self) -> bytes:
        """Return a copy of the tensor bytes."""
        return self.data.tobytes()

    def release(self) -> None:
        """Drop this view of the mapping. Safe to call more than once."""
        self.data.release()


def resolve_dtype(info: TensorDescriptor) -> DType:
    """Map a descriptor's ggml type to a plain element type or fail."""
    try:
        gtype = GGMLType(info.ggml_type)
    except ValueError:
        raise UnsupportedElementType(
            f"tensor {info.name!r}: unknown ggml type {info.ggml_type}"
        ) from None
    dtype = GGML_TO_DTYPE.get(gtype)
    if dtype is None:
        raise UnsupportedElementType(
            f"tensor {info.name!r}: ggml type {gtype.name} has no plain "
            f"element type"
        )
    return dtype


def load_buffers(
    buffers: dict[str, BufferView], container: GGUFContainer
) -> None:
    """Drain *container*'s tensor descriptors into *buffers*.

    Descriptor offsets are relative to the data region, whose base is only
    known after the last descriptor, so views are created once the sequence
    is exhausted.
    """
    pending: dict[str, tuple[TensorDescriptor, DType]] = {}
    for info in container.iter_tensor_infos():
        if info.name in pending or info.name in buffers:
            # This file seems invalid. Try to continue anyway.
            logger.warning("Found duplicated tensor: %s", info.name)
            continue
        pending[info.name] = (info, resolve_dtype(info))

    base = container.data_offset
    assert base is not None
    for name, (info, dtype) in pending.items():
        n_bytes = shape_elements(info.shape) * DTYPE_SIZES[dtype]
        start = base + info.offset
        if start + n_bytes > container.file.size:
            raise FormatError(
                f"tensor {name!r}: data at offset {start} + {n_bytes} bytes "
                f"exceeds file size {container.file.size}"
            )
        buffers[name] = BufferView(
            name=name,
            dtype=dtype,
            shape=info.shape,
            offset=start,
            data=container.file.mapped_slice(start, n_bytes),
        )
        logger.debug("Mapped tensor %s %s %s", name, dtype.name, info.shape)
