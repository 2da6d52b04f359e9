"""Metadata store tests – value materialization and first-write-wins loading."""

from __future__ import annotations

import struct

import numpy as np
import pytest

from gguf_builder import GGUFBuilder

from gguftensor.format import GGUFValueType
from gguftensor.metadata import MetadataStore, MetadataValue, load_metadata
from gguftensor.reader import GGUFContainer


def _load(path) -> MetadataStore:
    store = MetadataStore()
    with GGUFContainer(path) as c:
        load_metadata(store, c)
    return store


class TestScalars:
    @pytest.mark.parametrize(
        "vtype, value",
        [
            (GGUFValueType.UINT8, 255),
            (GGUFValueType.INT8, -128),
            (GGUFValueType.UINT16, 65535),
            (GGUFValueType.INT16, -32768),
            (GGUFValueType.UINT32, 2**32 - 1),
            (GGUFValueType.INT32, -(2**31)),
            (GGUFValueType.UINT64, 2**64 - 1),
            (GGUFValueType.INT64, -(2**63)),
            (GGUFValueType.FLOAT32, 1.5),
            (GGUFValueType.FLOAT64, -0.125),
            (GGUFValueType.BOOL, True),
            (GGUFValueType.STRING, "llama"),
        ],
    )
    def test_scalar_types(self, tmp_path, vtype, value):
        b = GGUFBuilder().add("k", vtype, value)
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store["k"].type == vtype
        assert store["k"].value == value
        assert not store["k"].is_array

    def test_bool_nonzero_byte_is_true(self, tmp_path):
        b = GGUFBuilder()
        b.add_raw(b._string("flag") + struct.pack("<IB", GGUFValueType.BOOL, 2))
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store["flag"].value is True

    def test_string_with_invalid_utf8_is_kept(self, tmp_path):
        b = GGUFBuilder().add("s", GGUFValueType.STRING, b"ab\xffcd")
        store = _load(b.write(tmp_path / "m.gguf"))
        raw = store["s"].value.encode("utf-8", "surrogateescape")
        assert raw == b"ab\xffcd"


class TestArrays:
    @pytest.mark.parametrize(
        "item_type, items, dtype",
        [
            (GGUFValueType.UINT8, [0, 1, 255], np.uint8),
            (GGUFValueType.INT32, [-1, 0, 7], np.int32),
            (GGUFValueType.UINT64, [1, 2**63], np.uint64),
            (GGUFValueType.FLOAT32, [0.5, -2.0], np.float32),
            (GGUFValueType.FLOAT64, [1e300], np.float64),
        ],
    )
    def test_numeric_arrays(self, tmp_path, item_type, items, dtype):
        b = GGUFBuilder().add_array("xs", item_type, items)
        store = _load(b.write(tmp_path / "m.gguf"))
        val = store["xs"]
        assert val.is_array
        assert val.item_type == item_type
        assert val.value.dtype == dtype
        np.testing.assert_array_equal(val.value, np.array(items, dtype=dtype))

    def test_arrays_are_read_only(self, tmp_path):
        b = GGUFBuilder().add_array("xs", GGUFValueType.INT16, [1, 2, 3])
        store = _load(b.write(tmp_path / "m.gguf"))
        with pytest.raises(ValueError):
            store["xs"].value[0] = 9

    def test_bool_array(self, tmp_path):
        b = GGUFBuilder().add_array("flags", GGUFValueType.BOOL, [True, False, True])
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store["flags"].value.dtype == np.bool_
        assert store["flags"].to_python() == [True, False, True]

    def test_string_array(self, tmp_path):
        b = GGUFBuilder().add_array("names", GGUFValueType.STRING, ["a", "", "▁b"])
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store["names"].value == ("a", "", "▁b")
        assert store.get_array("names", "string") == ("a", "", "▁b")

    def test_empty_array(self, tmp_path):
        b = GGUFBuilder().add_array("none", GGUFValueType.FLOAT32, [])
        store = _load(b.write(tmp_path / "m.gguf"))
        assert len(store["none"].value) == 0

    def test_nested_array_becomes_null(self, tmp_path, caplog):
        b = GGUFBuilder()
        b.add_array("nested", GGUFValueType.ARRAY, [(GGUFValueType.UINT8, [1])])
        b.add("after", GGUFValueType.UINT8, 3)
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store["nested"].is_null
        assert store["after"].value == 3
        assert "Ignoring nested array metadata: nested" in caplog.text


class TestLoad:
    def test_duplicate_key_first_wins(self, tmp_path, caplog):
        b = GGUFBuilder()
        b.add("general.name", GGUFValueType.STRING, "first")
        b.add("general.name", GGUFValueType.STRING, "second")
        b.add("other", GGUFValueType.UINT8, 1)
        store = _load(b.write(tmp_path / "m.gguf"))
        assert len(store) == 2
        assert store["general.name"].value == "first"
        assert "Found duplicated metadata key: general.name" in caplog.text

    def test_keys_keep_file_order(self, tmp_path):
        b = GGUFBuilder()
        for key in ["z", "a", "m"]:
            b.add(key, GGUFValueType.UINT8, 0)
        store = _load(b.write(tmp_path / "m.gguf"))
        assert list(store) == ["z", "a", "m"]

    def test_values_outlive_the_mapping(self, tmp_path):
        b = GGUFBuilder()
        b.add("s", GGUFValueType.STRING, "kept")
        b.add_array("xs", GGUFValueType.UINT32, [4, 5])
        store = _load(b.write(tmp_path / "m.gguf"))
        # the container is closed at this point
        assert store["s"].value == "kept"
        assert store["xs"].to_python() == [4, 5]

    def test_to_dict(self, tmp_path):
        b = GGUFBuilder()
        b.add("n", GGUFValueType.INT32, -3)
        b.add_array("xs", GGUFValueType.FLOAT32, [1.0])
        b.add_array("ss", GGUFValueType.STRING, ["a"])
        store = _load(b.write(tmp_path / "m.gguf"))
        assert store.to_dict() == {"n": -3, "xs": [1.0], "ss": ["a"]}


class TestTypedAccessors:
    def _store(self) -> MetadataStore:
        store = MetadataStore()
        store.insert("n", MetadataValue(GGUFValueType.UINT32, 5))
        store.insert("f", MetadataValue(GGUFValueType.FLOAT32, 0.5))
        store.insert("b", MetadataValue(GGUFValueType.BOOL, False))
        store.insert("s", MetadataValue(GGUFValueType.STRING, "x"))
        store.insert(
            "xs",
            MetadataValue(GGUFValueType.ARRAY, np.zeros(2, np.float32),
                          GGUFValueType.FLOAT32),
        )
        return store

    def test_matching_kind(self):
        store = self._store()
        assert store.get_value("n", "int") == 5
        assert store.get_value("f", "float") == 0.5
        assert store.get_value("b", "bool") is False
        assert store.get_value("s", "string") == "x"
        assert store.get_array("xs", "float") is not None

    def test_mismatch_and_missing_return_none(self):
        store = self._store()
        assert store.get_value("s", "int") is None
        assert store.get_value("n", "string") is None
        assert store.get_value("b", "int") is None
        assert store.get_value("missing", "int") is None
        assert store.get_value("xs", "float") is None
        assert store.get_array("xs", "string") is None
        assert store.get_array("n", "int") is None

    def test_insert_does_not_overwrite(self):
        store = self._store()
        assert store.insert("n", MetadataValue(GGUFValueType.UINT32, 9)) is False
        assert store["n"].value == 5
