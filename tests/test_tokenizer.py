"""Tokenizer vocabulary tests – gpt2 byte-level and sentencepiece dialects."""

from __future__ import annotations

import numpy as np
import pytest

from gguftensor.errors import GGUFError, ScoresNotFound, TokensNotFound, VocabError
from gguftensor.format import NOT_FOUND, GGUFValueType
from gguftensor.metadata import MetadataStore, MetadataValue
from gguftensor.tokenizer import (
    Dialect,
    Normalizer,
    SpecialTokens,
    Tokenizer,
    byte_level_decoder,
    byte_level_encode,
    tokenizer_from_metadata,
)


def _metadata(tokens=None, scores=None, model=None, **extra) -> MetadataStore:
    """Build a metadata store as the loader would from a GGUF file."""
    store = MetadataStore()
    if model is not None:
        store.insert("tokenizer.ggml.model", MetadataValue(GGUFValueType.STRING, model))
    if tokens is not None:
        store.insert(
            "tokenizer.ggml.tokens",
            MetadataValue(GGUFValueType.ARRAY, tuple(tokens), GGUFValueType.STRING),
        )
    if scores is not None:
        store.insert(
            "tokenizer.ggml.scores",
            MetadataValue(GGUFValueType.ARRAY, np.asarray(scores, np.float32),
                          GGUFValueType.FLOAT32),
        )
    for key, value in extra.items():
        store.insert(f"tokenizer.ggml.{key}", value)
    return store


def _u32(v: int) -> MetadataValue:
    return MetadataValue(GGUFValueType.UINT32, v)


class TestByteLevel:
    def test_table_covers_every_byte(self):
        decoder = byte_level_decoder()
        assert len(decoder) == 256
        assert sorted(decoder.values()) == list(range(256))

    def test_encode_decode_all_bytes(self):
        raw = bytes(range(256))
        assert Dialect.GPT2.normalize(byte_level_encode(raw)) == raw

    def test_printable_ascii_maps_to_itself(self):
        assert byte_level_encode(b"hello!") == "hello!"
        assert byte_level_encode(b" ") == "Ġ"
        assert byte_level_encode(b"\n") == "Ċ"

    def test_unknown_char_passes_through_as_utf8(self):
        assert Dialect.GPT2.normalize("中") == "中".encode("utf-8")


class TestGPT2:
    def test_vocab_and_hard_space(self):
        meta = _metadata(["a", "Ġhello", "<|endoftext|>"], [0.0, -1.0, -2.0],
                         model="gpt2", bos_token_id=_u32(2), eos_token_id=_u32(2))
        tok = tokenizer_from_metadata(meta)
        assert tok.dialect is Dialect.GPT2
        assert len(tok) == 4
        assert tok.special_tokens.hard_space == 3
        assert tok.id_to_token(3) == b" "
        assert tok.score(3) == 0.0
        assert tok.id_to_token(1) == b" hello"
        assert tok.token_to_id(b" hello") == 1
        assert tok.normalizer.byte_level
        assert not tok.normalizer.escape_whitespaces

    def test_decode_skips_specials(self):
        meta = _metadata(["Ġhi", "Ġthere", "<s>"], [0, 0, 0], model="gpt2",
                         bos_token_id=_u32(2), eos_token_id=_u32(2))
        tok = tokenizer_from_metadata(meta)
        assert tok.decode([2, 0, 1, 2]) == b" hi there"
        assert tok.decode([2, 0], skip_special=False) == b"<s> hi"


class TestSentencePiece:
    def test_tokens_kept_verbatim(self):
        meta = _metadata(["<unk>", "<s>", "</s>", "▁the"], [0, 0, 0, -1.5],
                         model="llama", bos_token_id=_u32(1), eos_token_id=_u32(2),
                         unknown_token_id=_u32(0))
        tok = tokenizer_from_metadata(meta)
        assert tok.dialect is Dialect.SENTENCEPIECE
        assert len(tok) == 4
        assert tok.id_to_token(3) == "▁the".encode("utf-8")
        assert tok.score(3) == -1.5
        assert tok.special_tokens.hard_space == NOT_FOUND
        assert tok.special_tokens.unk == 0
        assert tok.special_tokens.pad == NOT_FOUND

    def test_missing_model_is_sentencepiece(self):
        tok = tokenizer_from_metadata(_metadata(["a"], [0.0]))
        assert tok.dialect is Dialect.SENTENCEPIECE
        assert len(tok) == 1

    def test_decode_unescapes_spaces(self):
        meta = _metadata(["<s>", "▁hello", "▁world"], [0, 0, 0], model="llama",
                         bos_token_id=_u32(0), eos_token_id=_u32(0))
        tok = tokenizer_from_metadata(meta)
        assert tok.decode([0, 1, 2]) == b" hello world"

    def test_well_known_normalizer(self):
        tok = tokenizer_from_metadata(_metadata(["a"], [0.0], model="llama"))
        assert tok.normalizer == Normalizer(
            escape_whitespaces=True, add_space_prefix=True,
            remove_extra_whitespaces=True,
        )

    def test_normalizer_overrides(self):
        meta = _metadata(
            ["a"], [0.0], model="llama",
            add_space_prefix=MetadataValue(GGUFValueType.BOOL, False),
            remove_extra_whitespaces=MetadataValue(GGUFValueType.BOOL, False),
        )
        tok = tokenizer_from_metadata(meta)
        assert not tok.normalizer.add_space_prefix
        assert not tok.normalizer.remove_extra_whitespaces
        assert tok.normalizer.escape_whitespaces


class TestSpecialTokens:
    def test_missing_bos_eos_warn_and_use_sentinel(self, caplog):
        tok = tokenizer_from_metadata(_metadata(["a", "b"], [0, 0], model="llama"))
        assert tok.special_tokens.bos == NOT_FOUND
        assert tok.special_tokens.eos == NOT_FOUND
        assert NOT_FOUND == 2**32 - 1
        assert "tokenizer.ggml.bos_token_id not found" in caplog.text
        assert "tokenizer.ggml.eos_token_id not found" in caplog.text

    def test_missing_unk_pad_do_not_warn(self, caplog):
        meta = _metadata(["a"], [0], model="llama",
                         bos_token_id=_u32(0), eos_token_id=_u32(0))
        tokenizer_from_metadata(meta)
        assert "not found" not in caplog.text

    def test_non_integer_id_is_treated_as_missing(self):
        meta = _metadata(["a"], [0], model="llama",
                         bos_token_id=MetadataValue(GGUFValueType.STRING, "0"))
        assert tokenizer_from_metadata(meta).special_tokens.bos == NOT_FOUND

    def test_out_of_range_id(self):
        meta = _metadata(["a"], [0], model="llama",
                         bos_token_id=MetadataValue(GGUFValueType.UINT64, 2**40))
        with pytest.raises(VocabError, match="not a valid token id"):
            tokenizer_from_metadata(meta)


class TestErrors:
    def test_tokens_not_found(self, caplog):
        with pytest.raises(TokensNotFound):
            tokenizer_from_metadata(_metadata(scores=[0.0], model="gpt2"))
        assert "tokens not found" in caplog.text

    def test_scores_not_found(self, caplog):
        with pytest.raises(ScoresNotFound):
            tokenizer_from_metadata(_metadata(tokens=["a"], model="gpt2"))
        assert "scores not found" in caplog.text

    def test_tokens_wrong_type(self):
        store = _metadata(scores=[0.0])
        store.insert("tokenizer.ggml.tokens", MetadataValue(GGUFValueType.STRING, "a"))
        with pytest.raises(TokensNotFound):
            tokenizer_from_metadata(store)

    def test_length_mismatch(self):
        with pytest.raises(VocabError, match="2 tokens but 1 scores"):
            tokenizer_from_metadata(_metadata(["a", "b"], [0.0]))

    def test_vocab_errors_are_gguf_errors(self):
        assert issubclass(TokensNotFound, VocabError)
        assert issubclass(ScoresNotFound, VocabError)
        assert issubclass(VocabError, GGUFError)


class TestTokenizerTable:
    def _tok(self) -> Tokenizer:
        return Tokenizer(Normalizer(), SpecialTokens())

    def test_ids_follow_insertion_order(self):
        tok = self._tok()
        assert tok.next_token_id == 0
        assert tok.add_token(-1.0, b"x") == 0
        assert tok.add_token(-2.0, b"y") == 1
        assert tok.next_token_id == 2
        assert tok.scores == [-1.0, -2.0]

    def test_duplicate_token_maps_to_first_id(self):
        tok = self._tok()
        tok.add_token(0.0, b"x")
        tok.add_token(0.0, b"x")
        assert len(tok) == 2
        assert tok.token_to_id(b"x") == 0

    def test_unknown_token(self):
        assert self._tok().token_to_id(b"zzz") == NOT_FOUND
