"""Tokenizer vocabulary extracted from GGUF metadata.

GGUF files ship their vocabulary as two parallel arrays,
``tokenizer.ggml.tokens`` and ``tokenizer.ggml.scores``. Two encodings are
in use:

- ``gpt2`` (byte-pair): every token is written through the GPT-2
  byte-to-unicode table, so each raw byte shows up as a printable code
  point. Loading inverts that table.
- anything else (sentencepiece / unigram): tokens are stored verbatim with
  ``▁`` standing for a space.

:func:`tokenizer_from_metadata` turns either encoding into the same in-memory
:class:`Tokenizer`: a table of raw token bytes, their scores, and the
special-token ids.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from .errors import ScoresNotFound, TokensNotFound, VocabError
from .format import (
    KEY_ADD_SPACE_PREFIX,
    KEY_BOS_ID,
    KEY_EOS_ID,
    KEY_MODEL,
    KEY_PAD_ID,
    KEY_REMOVE_EXTRA_WS,
    KEY_SCORES,
    KEY_TOKENS,
    KEY_UNK_ID,
    NOT_FOUND,
)
from .metadata import MetadataStore

logger = logging.getLogger("gguftensor")

SPIECE_SPACE = "▁".encode("utf-8")


@functools.lru_cache(maxsize=None)
def byte_level_decoder() -> dict[str, int]:
    """Return the inverse of the GPT-2 byte-to-unicode table."""
    bs = list(range(33, 127)) + list(range(161, 173)) + list(range(174, 256))
    cs = bs[:]
    n = 0
    for b in range(256):
        if b not in bs:
            bs.append(b)
            cs.append(256 + n)
            n += 1
    return {chr(c): b for b, c in zip(bs, cs)}


def byte_level_encode(raw: bytes) -> str:
    """Map raw bytes to their printable GPT-2 representation."""
    encoder = {b: c for c, b in byte_level_decoder().items()}
    return "".join(encoder[b] for b in raw)


class Dialect(enum.Enum):
    GPT2 = "gpt2"
    SENTENCEPIECE = "sentencepiece"

    @classmethod
    def from_model(cls, model: str | None) -> Dialect:
        return cls.GPT2 if model == "gpt2" else cls.SENTENCEPIECE

    def normalize(self, token: str) -> bytes:
        """Return the raw bytes a vocabulary entry stands for."""
        if self is Dialect.GPT2:
            decoder = byte_level_decoder()
            payload = bytearray()
            for char in token:
                byte = decoder.get(char)
                if byte is None:
                    payload.extend(char.encode("utf-8", "surrogateescape"))
                else:
                    payload.append(byte)
            return bytes(payload)
        return token.encode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class Normalizer:
    """Text normalization settings applied before encoding."""

    escape_whitespaces: bool = False
    add_space_prefix: bool = False
    remove_extra_whitespaces: bool = False
    byte_level: bool = False

    @classmethod
    def well_known(cls, dialect: Dialect) -> Normalizer:
        if dialect is Dialect.GPT2:
            return cls(byte_level=True)
        return cls(
            escape_whitespaces=True,
            add_space_prefix=True,
            remove_extra_whitespaces=True,
        )


@dataclass
class SpecialTokens:
    bos: int = NOT_FOUND
    eos: int = NOT_FOUND
    unk: int = NOT_FOUND
    pad: int = NOT_FOUND
    hard_space: int = NOT_FOUND


@dataclass
class Tokenizer:
    """Token table consumed by the encoding engine.

    Token ids are positions in insertion order. Looking up a token that
    occurs more than once returns its first id.
    """

    normalizer: Normalizer
    special_tokens: SpecialTokens
    dialect: Dialect = Dialect.SENTENCEPIECE
    tokens: list[bytes] = field(default_factory=list, init=False)
    scores: list[float] = field(default_factory=list, init=False)
    _index: dict[bytes, int] = field(default_factory=dict, init=False, repr=False)

    def __len__(self) -> int:
        return len(self.tokens)

    @property
    def next_token_id(self) -> int:
        return len(self.tokens)

    def add_token(self, score: float, token: bytes) -> int:
        token_id = self.next_token_id
        if token_id >= NOT_FOUND:
            raise VocabError("vocabulary exceeds the u32 id space")
        self.tokens.append(bytes(token))
        self.scores.append(float(score))
        self._index.setdefault(self.tokens[-1], token_id)
        return token_id

    def token_to_id(self, token: bytes) -> int:
        return self._index.get(token, NOT_FOUND)

    def id_to_token(self, token_id: int) -> bytes:
        return self.tokens[token_id]

    def score(self, token_id: int) -> float:
        return self.scores[token_id]

    def decode(self, ids: Iterable[int], skip_special: bool = True) -> bytes:
        specials = set()
        if skip_special:
            st = self.special_tokens
            specials = {st.bos, st.eos, st.pad}
        out = b"".join(self.tokens[i] for i in ids if i not in specials)
        if self.normalizer.escape_whitespaces:
            out = out.replace(SPIECE_SPACE, b" ")
        return out


def _special_id(metadata: MetadataStore, key: str, warn: bool) -> int:
    value = metadata.get_value(key, "int")
    if value is None:
        if warn:
            logger.warning("GGUF file: %s not found", key)
        return NOT_FOUND
    if not 0 <= value < NOT_FOUND:
        raise VocabError(f"{key}={value} is not a valid token id")
    return int(value)


def tokenizer_from_metadata(metadata: MetadataStore) -> Tokenizer:
    """Build a :class:`Tokenizer` from a completed metadata store.

    Everything is validated before the tokenizer is created, so a failure
    never leaves a half-populated vocabulary behind.
    """
    tokens = metadata.get_array(KEY_TOKENS, "string")
    if tokens is None:
        logger.error("GGUF file: tokens not found")
        raise TokensNotFound(f"{KEY_TOKENS} not found")
    scores = metadata.get_array(KEY_SCORES, "float")
    if scores is None:
        logger.error("GGUF file: scores not found")
        raise ScoresNotFound(f"{KEY_SCORES} not found")
    if len(tokens) != len(scores):
        raise VocabError(
            f"{len(tokens)} tokens but {len(scores)} scores; file is malformed"
        )

    dialect = Dialect.from_model(metadata.get_value(KEY_MODEL, "string"))
    special_tokens = SpecialTokens(
        bos=_special_id(metadata, KEY_BOS_ID, warn=True),
        eos=_special_id(metadata, KEY_EOS_ID, warn=True),
        unk=_special_id(metadata, KEY_UNK_ID, warn=False),
        pad=_special_id(metadata, KEY_PAD_ID, warn=False),
    )

    normalizer = Normalizer.well_known(dialect)
    add_prefix = metadata.get_value(KEY_ADD_SPACE_PREFIX, "bool")
    if add_prefix is not None:
        normalizer = replace(normalizer, add_space_prefix=add_prefix)
    remove_ws = metadata.get_value(KEY_REMOVE_EXTRA_WS, "bool")
    if remove_ws is not None:
        normalizer = replace(
            normalizer, remove_extra_whitespaces=remove_ws
        )

    tokenizer = Tokenizer(
        normalizer=normalizer, special_tokens=special_tokens, dialect=dialect
    )
    for token, score in zip(tokens, scores):
        tokenizer.add_token(float(score), dialect.normalize(token))

    # The byte-pair engine always splits on spaces.
    if dialect is Dialect.GPT2:
        tokenizer.special_tokens.hard_space = tokenizer.add_token(0.0, b" ")

    logger.info(
        "Built %s tokenizer with %d tokens", dialect.value, len(tokenizer)
    )
    return tokenizer
