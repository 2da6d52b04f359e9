"""Metadata values and the store built from a container's metadata entries."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterator

import numpy as np

from .format import VALUE_KINDS, VALUE_NP_DTYPES, GGUFValueType
from .reader import ArrayPayload, GGUFContainer, MetadataEntry

logger = logging.getLogger("gguftensor")


@dataclass(frozen=True)
class MetadataValue:
    """Tagged metadata value.

    ``type`` is the GGUF value type, or ``None`` for the null value. Scalars
    are plain Python objects. Arrays carry their ``item_type`` and hold a
    read-only numpy array (numeric and bool items) or a tuple of ``str``.
    """

    type: GGUFValueType | None
    value: Any
    item_type: GGUFValueType | None = None

    @property
    def is_null(self) -> bool:
        return self.type is None

    @property
    def is_array(self) -> bool:
        return self.type == GGUFValueType.ARRAY

    def to_python(self) -> Any:
        if self.is_array and isinstance(self.value, np.ndarray):
            return self.value.tolist()
        if self.is_array:
            return list(self.value)
        return self.value


NULL = MetadataValue(type=None, value=None)


def _copy_array(name: str, arr: ArrayPayload) -> MetadataValue:
    if arr.item_type == GGUFValueType.STRING:
        return MetadataValue(GGUFValueType.ARRAY, arr.data, arr.item_type)
    if arr.item_type == GGUFValueType.ARRAY:
        logger.warning("Ignoring nested array metadata: %s", name)
        return NULL
    values = np.frombuffer(arr.data, dtype=VALUE_NP_DTYPES[arr.item_type])
    if arr.item_type == GGUFValueType.BOOL:
        values = values != 0
        values.flags.writeable = False
    return MetadataValue(GGUFValueType.ARRAY, values, arr.item_type)


def wrap_entry(entry: MetadataEntry) -> MetadataValue:
    """Materialize a decoded entry into an owned :class:`MetadataValue`."""
    if isinstance(entry.value, ArrayPayload):
        return _copy_array(entry.name, entry.value)
    return MetadataValue(entry.type, entry.value)


class MetadataStore(Mapping):
    """Read-only mapping of metadata key → :class:`MetadataValue`.

    The typed accessors return ``None`` both for a missing key and for a
    value whose type does not match the requested kind
    (``"int"``, ``"float"``, ``"bool"`` or ``"string"``).
    """

    def __init__(self) -> None:
        self._values: dict[str, MetadataValue] = {}

    def __getitem__(self, key: str) -> MetadataValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def insert(self, name: str, value: MetadataValue) -> bool:
        """Insert unless *name* is already present. Return ``True`` if stored."""
        if name in self._values:
            return False
        self._values[name] = value
        return True

    def get_value(self, name: str, kind: str) -> Any:
        val = self._values.get(name)
        if val is None or val.type not in VALUE_KINDS[kind]:
            return None
        return val.value

    def get_array(self, name: str, kind: str) -> Any:
        val = self._values.get(name)
        if val is None or not val.is_array or val.item_type not in VALUE_KINDS[kind]:
            return None
        return val.value

    def to_dict(self) -> dict[str, Any]:
        return {k: v.to_python() for k, v in self._values.items()}


def load_metadata(store: MetadataStore, container: GGUFContainer) -> None:
    """Drain *container*'s metadata entries into *store* (first write wins)."""
    logger.debug(
        "Expecting %d metadata entries", container.header.metadata_kv_count
    )
    for entry in container.iter_metadata():
        logger.debug("Loading metadata: %s", entry.name)
        if entry.name in store:
            # Most keys are optional, so keep going with the first value.
            logger.warning("Found duplicated metadata key: %s", entry.name)
            continue
        store.insert(entry.name, wrap_entry(entry))
