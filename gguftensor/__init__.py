"""gguftensor – zero-copy GGUF model container reader."""

__version__ = "0.1.0"

from .format import (
    MAGIC, SUPPORTED_VERSIONS, NOT_FOUND,
    DType, DTYPE_NAMES, GGMLType, GGUFValueType,
)
from .errors import (
    GGUFError, FormatError, InvalidMagic, UnsupportedVersion,
    UnsupportedElementType, EndOfMetadata,
    VocabError, TokensNotFound, ScoresNotFound,
)
from .reader import GGUFContainer, Header, MappedFile, MetadataEntry, TensorDescriptor
from .metadata import MetadataStore, MetadataValue
from .buffers import BufferView
from .tokenizer import Dialect, Normalizer, SpecialTokens, Tokenizer
from .store import BufferStore, build_tokenizer, open

__all__ = [
    "__version__",
    "MAGIC", "SUPPORTED_VERSIONS", "NOT_FOUND",
    "DType", "DTYPE_NAMES", "GGMLType", "GGUFValueType",
    "GGUFError", "FormatError", "InvalidMagic", "UnsupportedVersion",
    "UnsupportedElementType", "EndOfMetadata",
    "VocabError", "TokensNotFound", "ScoresNotFound",
    "GGUFContainer", "Header", "MappedFile", "MetadataEntry", "TensorDescriptor",
    "MetadataStore", "MetadataValue", "BufferView",
    "Dialect", "Normalizer", "SpecialTokens", "Tokenizer",
    "BufferStore", "open", "build_tokenizer",
]
