"""GGUF binary format constants, type tables, and alignment helpers."""

from enum import IntEnum

import numpy as np

# ── Magic & version ─────────────────────────────────────────────────────────

MAGIC = b"GGUF"
SUPPORTED_VERSIONS = (1, 2, 3)
DEFAULT_ALIGNMENT = 32

# ── Struct formats (little-endian) ──────────────────────────────────────────
#
# Header:
#   magic[4]  version(u32)  tensor_count  metadata_kv_count
#
# v1 stores counts, string lengths, array lengths and dims as u32;
# v2 and later widen all of them to u64.

COUNT_FMT = {1: "<I", 2: "<Q", 3: "<Q"}


# ── Metadata value types (u32) ─────────────────────────────────────────────


class GGUFValueType(IntEnum):
    UINT8 = 0
    INT8 = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    UINT64 = 10
    INT64 = 11
    FLOAT64 = 12


# Fixed-width scalar types → little-endian numpy dtype.
VALUE_NP_DTYPES: dict[GGUFValueType, np.dtype] = {
    GGUFValueType.UINT8: np.dtype("<u1"),
    GGUFValueType.INT8: np.dtype("<i1"),
    GGUFValueType.UINT16: np.dtype("<u2"),
    GGUFValueType.INT16: np.dtype("<i2"),
    GGUFValueType.UINT32: np.dtype("<u4"),
    GGUFValueType.INT32: np.dtype("<i4"),
    GGUFValueType.FLOAT32: np.dtype("<f4"),
    GGUFValueType.BOOL: np.dtype("<u1"),
    GGUFValueType.UINT64: np.dtype("<u8"),
    GGUFValueType.INT64: np.dtype("<i8"),
    GGUFValueType.FLOAT64: np.dtype("<f8"),
}

INT_TYPES = frozenset({
    GGUFValueType.UINT8, GGUFValueType.INT8,
    GGUFValueType.UINT16, GGUFValueType.INT16,
    GGUFValueType.UINT32, GGUFValueType.INT32,
    GGUFValueType.UINT64, GGUFValueType.INT64,
})
FLOAT_TYPES = frozenset({GGUFValueType.FLOAT32, GGUFValueType.FLOAT64})

# Accessor kind → value types it accepts.
VALUE_KINDS: dict[str, frozenset] = {
    "int": INT_TYPES,
    "float": FLOAT_TYPES,
    "bool": frozenset({GGUFValueType.BOOL}),
    "string": frozenset({GGUFValueType.STRING}),
}


# ── GGML tensor types (u32) ────────────────────────────────────────────────


class GGMLType(IntEnum):
    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2_K = 10
    Q3_K = 11
    Q4_K = 12
    Q5_K = 13
    Q6_K = 14
    Q8_K = 15
    IQ2_XXS = 16
    IQ2_XS = 17
    IQ3_XXS = 18
    IQ1_S = 19
    IQ4_NL = 20
    IQ3_S = 21
    IQ2_S = 22
    IQ4_XS = 23
    I8 = 24
    I16 = 25
    I32 = 26
    I64 = 27
    F64 = 28
    IQ1_M = 29
    BF16 = 30


# ggml type → (block_bytes, block_elements)
GGML_BLOCK: dict[GGMLType, tuple[int, int]] = {
    GGMLType.F32: (4, 1),
    GGMLType.F16: (2, 1),
    GGMLType.Q4_0: (18, 32),
    GGMLType.Q4_1: (20, 32),
    GGMLType.Q5_0: (22, 32),
    GGMLType.Q5_1: (24, 32),
    GGMLType.Q8_0: (34, 32),
    GGMLType.Q8_1: (36, 32),
    GGMLType.Q2_K: (84, 256),
    GGMLType.Q3_K: (110, 256),
    GGMLType.Q4_K: (144, 256),
    GGMLType.Q5_K: (176, 256),
    GGMLType.Q6_K: (210, 256),
    GGMLType.Q8_K: (292, 256),
    GGMLType.IQ2_XXS: (66, 256),
    GGMLType.IQ2_XS: (74, 256),
    GGMLType.IQ3_XXS: (98, 256),
    GGMLType.IQ1_S: (50, 256),
    GGMLType.IQ4_NL: (18, 32),
    GGMLType.IQ3_S: (110, 256),
    GGMLType.IQ2_S: (82, 256),
    GGMLType.IQ4_XS: (136, 256),
    GGMLType.I8: (1, 1),
    GGMLType.I16: (2, 1),
    GGMLType.I32: (4, 1),
    GGMLType.I64: (8, 1),
    GGMLType.F64: (8, 1),
    GGMLType.IQ1_M: (56, 256),
    GGMLType.BF16: (2, 1),
}


# ── Output element types ───────────────────────────────────────────────────


class DType(IntEnum):
    """Plain element types a tensor view can carry.

    Values are the matching ggml type ids.
    """

    F32 = 0
    F16 = 1
    I8 = 24
    I16 = 25
    I32 = 26
    I64 = 27
    F64 = 28
    BF16 = 30


DTYPE_NAMES: dict[DType, str] = {
    DType.F32: "float32", DType.F16: "float16", DType.BF16: "bfloat16",
    DType.F64: "float64", DType.I8: "int8", DType.I16: "int16",
    DType.I32: "int32", DType.I64: "int64",
}

DTYPE_SIZES: dict[DType, int] = {
    DType.F16: 2, DType.F32: 4, DType.BF16: 2, DType.F64: 8,
    DType.I8: 1, DType.I16: 2, DType.I32: 4, DType.I64: 8,
}

# numpy has no bfloat16; BF16 views expose the raw 16-bit patterns.
DTYPE_NP: dict[DType, np.dtype] = {
    DType.F16: np.dtype("<f2"),
    DType.F32: np.dtype("<f4"),
    DType.BF16: np.dtype("<u2"),
    DType.F64: np.dtype("<f8"),
    DType.I8: np.dtype("<i1"),
    DType.I16: np.dtype("<i2"),
    DType.I32: np.dtype("<i4"),
    DType.I64: np.dtype("<i8"),
}

# Only plain element types can be exposed as views; quantized blocks cannot.
GGML_TO_DTYPE: dict[GGMLType, DType] = {GGMLType(d): d for d in DType}

# ── Well-known metadata keys ───────────────────────────────────────────────

KEY_ALIGNMENT = "general.alignment"
KEY_ARCHITECTURE = "general.architecture"
KEY_NAME = "general.name"

KEY_TOKENS = "tokenizer.ggml.tokens"
KEY_SCORES = "tokenizer.ggml.scores"
KEY_MODEL = "tokenizer.ggml.model"
KEY_BOS_ID = "tokenizer.ggml.bos_token_id"
KEY_EOS_ID = "tokenizer.ggml.eos_token_id"
KEY_UNK_ID = "tokenizer.ggml.unknown_token_id"
KEY_PAD_ID = "tokenizer.ggml.padding_token_id"
KEY_ADD_SPACE_PREFIX = "tokenizer.ggml.add_space_prefix"
KEY_REMOVE_EXTRA_WS = "tokenizer.ggml.remove_extra_whitespaces"

# Token ids are u32; the maximum value marks an absent special token.
NOT_FOUND = (1 << 32) - 1

# ── Alignment helpers ──────────────────────────────────────────────────────


def align(offset: int, alignment: int) -> int:
    """Round *offset* up to the next multiple of *alignment* (a power of two)."""
    return (offset + alignment - 1) & ~(alignment - 1)


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


# ── Safety limits ──────────────────────────────────────────────────────────

MAX_TENSOR_COUNT = 10_000_000
MAX_KV_COUNT = 10_000_000
MAX_ARRAY_LEN = 16 * 1024 * 1024
MAX_ARRAY_DEPTH = 8
MAX_NDIM = 64
MAX_STRING_LEN = 16 * 1024 * 1024


# ── Shape utilities ────────────────────────────────────────────────────────


def shape_elements(shape) -> int:
    """Element count of *shape*, rejecting negative dims and u63 overflow."""
    n = 1
    for d in shape:
        if d < 0:
            raise ValueError(f"negative dimension: {d}")
        n *= d
        if n > (1 << 63):
            raise ValueError(f"shape product overflow: {list(shape)}")
    return n


def ggml_nbytes(gtype: GGMLType, shape) -> int:
    """Byte length of a tensor of *gtype* with *shape* (any dim order)."""
    block_bytes, block_elems = GGML_BLOCK[gtype]
    n = shape_elements(shape)
    if block_elems == 1:
        return n * block_bytes
    return (n // block_elems) * block_bytes
