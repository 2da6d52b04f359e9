"""GGUF container reader – header validation and sequential entry decoding."""

from __future__ import annotations

import logging
import mmap
import os
import struct
from dataclasses import dataclass
from typing import Any, Iterator

from .errors import EndOfMetadata, FormatError, InvalidMagic, UnsupportedVersion
from .format import (
    COUNT_FMT,
    DEFAULT_ALIGNMENT,
    GGML_BLOCK,
    KEY_ALIGNMENT,
    INT_TYPES,
    MAGIC,
    MAX_ARRAY_DEPTH,
    MAX_ARRAY_LEN,
    MAX_KV_COUNT,
    MAX_NDIM,
    MAX_STRING_LEN,
    MAX_TENSOR_COUNT,
    SUPPORTED_VERSIONS,
    VALUE_NP_DTYPES,
    GGMLType,
    GGUFValueType,
    align,
    ggml_nbytes,
    is_power_of_two,
)

logger = logging.getLogger("gguftensor")

_U8 = struct.Struct("<B")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")

_SCALARS: dict[GGUFValueType, struct.Struct] = {
    GGUFValueType.UINT8: struct.Struct("<B"),
    GGUFValueType.INT8: struct.Struct("<b"),
    GGUFValueType.UINT16: struct.Struct("<H"),
    GGUFValueType.INT16: struct.Struct("<h"),
    GGUFValueType.UINT32: struct.Struct("<I"),
    GGUFValueType.INT32: struct.Struct("<i"),
    GGUFValueType.FLOAT32: struct.Struct("<f"),
    GGUFValueType.UINT64: struct.Struct("<Q"),
    GGUFValueType.INT64: struct.Struct("<q"),
    GGUFValueType.FLOAT64: struct.Struct("<d"),
}


# ── Decoded records ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Header:
    magic: bytes
    version: int
    tensor_count: int
    metadata_kv_count: int


@dataclass(frozen=True)
class ArrayPayload:
    """Undecoded array value as found in the file.

    ``data`` holds the raw little-endian item bytes for fixed-width item
    types, a tuple of ``str`` for string arrays, and ``None`` for nested
    arrays (which are skipped, not decoded).
    """

    item_type: GGUFValueType
    count: int
    data: Any


@dataclass(frozen=True)
class MetadataEntry:
    name: str
    type: GGUFValueType
    value: Any


@dataclass(frozen=True)
class TensorDescriptor:
    """One tensor info record.

    ``dims`` keep the on-disk order (innermost first); ``shape`` is the
    outer-to-inner order used by numpy. ``offset`` is relative to the data
    region. ``n_bytes`` is ``None`` when the ggml type is unknown.
    """

    name: str
    ggml_type: int
    dims: tuple[int, ...]
    offset: int
    n_bytes: int | None

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(reversed(self.dims))


# ── MappedFile ──────────────────────────────────────────────────────────────


class MappedFile:
    """Read-only memory mapping of a whole file.

    Hands out :class:`memoryview` slices over the mapping and releases all of
    them, then the mapping itself, on :meth:`close`.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        with open(path, "rb") as fd:
            self.size = os.fstat(fd.fileno()).st_size
            if self.size == 0:
                raise FormatError("file too small for header")
            self._mm: mmap.mmap | None = mmap.mmap(
                fd.fileno(), 0, access=mmap.ACCESS_READ
            )
        self._view: memoryview | None = memoryview(self._mm)
        self._slices: list[memoryview] = []

    @property
    def closed(self) -> bool:
        return self._mm is None

    @property
    def mm(self) -> mmap.mmap:
        if self._mm is None:
            raise ValueError(f"mapping of {self.path!r} is closed")
        return self._mm

    def mapped_slice(self, offset: int, length: int) -> memoryview:
        """Return a zero-copy view of ``[offset, offset + length)``."""
        if self._view is None:
            raise ValueError(f"mapping of {self.path!r} is closed")
        if offset < 0 or length < 0 or offset + length > self.size:
            raise FormatError(
                f"range {offset}+{length} exceeds mapped size {self.size}"
            )
        view = self._view[offset : offset + length]
        self._slices.append(view)
        return view

    def close(self) -> None:
        """Release the mapping.

        Raises :class:`BufferError` if a caller still holds an object (such
        as a numpy array) exported from one of the slices. Calling ``close``
        again once that object is gone finishes the job.
        """
        if self._mm is None:
            return
        for view in self._slices:
            view.release()
        self._slices.clear()
        if self._view is not None:
            self._view.release()
            self._view = None
        self._mm.close()
        self._mm = None

    def __enter__(self) -> MappedFile:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


# ── GGUFContainer ───────────────────────────────────────────────────────────


class GGUFContainer:
    """Sequential decoder over a mapped GGUF file.

    The header is validated on construction. Metadata entries and tensor
    descriptors are then produced one at a time, in file order, by
    :meth:`read_metadata` and :meth:`read_tensor_info`; each raises
    :class:`EndOfMetadata` once its header count is exhausted. Both producers
    are single-pass and metadata must be drained first.

    Usage::

        with GGUFContainer("model.gguf") as c:
            for entry in c.iter_metadata():
                print(entry.name, entry.value)
            for info in c.iter_tensor_infos():
                print(info.name, info.shape)
            print(c.data_offset)
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.file = MappedFile(path)
        try:
            self._pos = 0
            self.header = self._parse_header()
            self._count = struct.Struct(COUNT_FMT[self.header.version])
            self._kv_left = self.header.metadata_kv_count
            self._tensors_left = self.header.tensor_count
            self.alignment = DEFAULT_ALIGNMENT
            self._alignment_seen = False
            self.data_offset: int | None = None
        except BaseException:
            self.file.close()
            raise

    @property
    def version(self) -> int:
        return self.header.version

    @property
    def position(self) -> int:
        """Current cursor offset into the file."""
        return self._pos

    # ── Producers ────────────────────────────────────────────────────────

    def read_metadata(self) -> MetadataEntry:
        if self._kv_left == 0:
            raise EndOfMetadata("no more metadata entries")
        name = self._read_name()
        vtype = self._value_type(self._u32(), name)
        value = self._read_value(vtype, depth=0)
        self._kv_left -= 1
        entry = MetadataEntry(name=name, type=vtype, value=value)
        if name == KEY_ALIGNMENT and not self._alignment_seen:
            self._alignment_seen = True
            self._set_alignment(entry)
        return entry

    def iter_metadata(self) -> Iterator[MetadataEntry]:
        while True:
            try:
                yield self.read_metadata()
            except EndOfMetadata:
                return

    def read_tensor_info(self) -> TensorDescriptor:
        if self._kv_left:
            raise FormatError(
                f"{self._kv_left} metadata entries must be read before "
                f"tensor descriptors"
            )
        if self._tensors_left == 0:
            if self.data_offset is None:
                self.data_offset = align(self._pos, self.alignment)
            raise EndOfMetadata("no more tensor descriptors")

        name = self._read_name()
        n_dims = self._u32()
        if n_dims > MAX_NDIM:
            raise FormatError(
                f"tensor {name!r}: n_dims {n_dims} exceeds cap ({MAX_NDIM})"
            )
        dims = tuple(self._read_count() for _ in range(n_dims))
        gtype = self._u32()
        offset = self._u64()

        n_bytes = None
        if gtype in GGML_BLOCK:
            try:
                n_bytes = ggml_nbytes(GGMLType(gtype), dims)
            except ValueError as exc:
                raise FormatError(f"tensor {name!r}: {exc}") from exc

        self._tensors_left -= 1
        return TensorDescriptor(
            name=name, ggml_type=gtype, dims=dims, offset=offset, n_bytes=n_bytes
        )

    def iter_tensor_infos(self) -> Iterator[TensorDescriptor]:
        while True:
            try:
                yield self.read_tensor_info()
            except EndOfMetadata:
                return

    # ── Lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        self.file.close()

    def __enter__(self) -> GGUFContainer:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # ── Internal ─────────────────────────────────────────────────────────

    def _parse_header(self) -> Header:
        if self.file.size < len(MAGIC):
            raise FormatError("file too small for header")
        # magic alone decides InvalidMagic, whatever follows it
        magic = self.file.mm[: len(MAGIC)]
        if magic != MAGIC:
            raise InvalidMagic(f"bad magic: {magic!r}")
        self._pos = len(MAGIC)
        version = self._u32()
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(f"unsupported GGUF version {version}")

        count = struct.Struct(COUNT_FMT[version])
        tensor_count = self._unpack(count)
        kv_count = self._unpack(count)
        if tensor_count > MAX_TENSOR_COUNT:
            raise FormatError(
                f"tensor_count {tensor_count} exceeds safety cap "
                f"({MAX_TENSOR_COUNT}); refusing to parse"
            )
        if kv_count > MAX_KV_COUNT:
            raise FormatError(
                f"metadata_kv_count {kv_count} exceeds safety cap "
                f"({MAX_KV_COUNT}); refusing to parse"
            )
        return Header(
            magic=magic,
            version=version,
            tensor_count=tensor_count,
            metadata_kv_count=kv_count,
        )

    def _set_alignment(self, entry: MetadataEntry) -> None:
        value = entry.value
        if entry.type in INT_TYPES and is_power_of_two(value):
            self.alignment = value
        else:
            logger.warning(
                "Ignoring invalid %s=%r, using %d",
                KEY_ALIGNMENT, value, DEFAULT_ALIGNMENT,
            )

    def _take(self, n: int) -> int:
        """Advance the cursor by *n* bytes and return the old position."""
        start = self._pos
        if start + n > self.file.size:
            raise FormatError(
                f"truncated entry: {n} bytes at offset {start} exceed "
                f"file size {self.file.size}"
            )
        self._pos = start + n
        return start

    def _unpack(self, st: struct.Struct) -> Any:
        return st.unpack_from(self.file.mm, self._take(st.size))[0]

    def _u32(self) -> int:
        return self._unpack(_U32)

    def _u64(self) -> int:
        return self._unpack(_U64)

    def _read_count(self) -> int:
        return self._unpack(self._count)

    def _read_bytes(self) -> bytes:
        length = self._read_count()
        if length > MAX_STRING_LEN:
            raise FormatError(
                f"string length {length} at offset {self._pos} exceeds cap "
                f"({MAX_STRING_LEN})"
            )
        start = self._take(length)
        return self.file.mm[start : start + length]

    def _read_name(self) -> str:
        raw = self._read_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FormatError(
                f"name at offset {self._pos - len(raw)} contains invalid "
                f"UTF-8: {exc}"
            ) from exc

    def _read_string(self) -> str:
        # surrogateescape keeps arbitrary token bytes recoverable
        return self._read_bytes().decode("utf-8", "surrogateescape")

    def _value_type(self, tag: int, name: str) -> GGUFValueType:
        try:
            return GGUFValueType(tag)
        except ValueError:
            raise FormatError(
                f"metadata {name!r}: unknown value type {tag}"
            ) from None

    def _read_value(self, vtype: GGUFValueType, depth: int) -> Any:
        if vtype == GGUFValueType.STRING:
            return self._read_string()
        if vtype == GGUFValueType.ARRAY:
            return self._read_array(depth)
        if vtype == GGUFValueType.BOOL:
            return self._unpack(_U8) != 0
        return self._unpack(_SCALARS[vtype])

    def _read_array(self, depth: int) -> ArrayPayload:
        if depth >= MAX_ARRAY_DEPTH:
            raise FormatError(
                f"array nesting at offset {self._pos} exceeds cap "
                f"({MAX_ARRAY_DEPTH})"
            )
        item_type = self._value_type(self._u32(), "<array item>")
        n = self._read_count()
        if n > MAX_ARRAY_LEN:
            raise FormatError(
                f"array length {n} at offset {self._pos} exceeds cap "
                f"({MAX_ARRAY_LEN})"
            )
        if item_type == GGUFValueType.STRING:
            items = tuple(self._read_string() for _ in range(n))
            return ArrayPayload(item_type, n, items)
        if item_type == GGUFValueType.ARRAY:
            for _ in range(n):
                self._read_array(depth + 1)
            return ArrayPayload(item_type, n, None)
        nbytes = n * VALUE_NP_DTYPES[item_type].itemsize
        start = self._take(nbytes)
        return ArrayPayload(item_type, n, self.file.mm[start : start + nbytes])
