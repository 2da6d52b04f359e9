"""Exception hierarchy for GGUF parse, load and tokenizer errors."""


class GGUFError(Exception):
    """Base exception for GGUF format / load errors."""


class FormatError(GGUFError):
    """Structurally invalid container: truncated, out of bounds, unknown tag."""


class InvalidMagic(FormatError):
    pass


class UnsupportedVersion(FormatError):
    pass


class UnsupportedElementType(FormatError):
    """Tensor element type cannot be exposed as a plain view (e.g. quantized)."""


class EndOfMetadata(GGUFError):
    """A container producer has yielded every entry its header announced."""


class VocabError(GGUFError):
    """Tokenizer metadata is missing or inconsistent."""


class TokensNotFound(VocabError):
    pass


class ScoresNotFound(VocabError):
    pass
