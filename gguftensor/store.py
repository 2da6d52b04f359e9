"""Load a GGUF file into an in-memory index of metadata and tensor views."""

from __future__ import annotations

import logging
from typing import Iterator

from .buffers import BufferView, load_buffers
from .errors import GGUFError
from .format import KEY_ARCHITECTURE, KEY_NAME
from .metadata import MetadataStore, load_metadata
from .reader import GGUFContainer, Header, MappedFile
from .tokenizer import Tokenizer, tokenizer_from_metadata

logger = logging.getLogger("gguftensor")


class BufferStore:
    """Result of :func:`open`: mapped files, metadata, and tensor views.

    The store owns the file mappings. Every :class:`BufferView` it hands out
    points into them and is invalid after :meth:`close`. Arrays obtained
    from :meth:`BufferView.as_array` must be dropped before closing, or
    ``close`` raises :class:`BufferError`.

    Usage::

        with gguftensor.open("model.gguf") as store:
            print(store.architecture, len(store.buffers))
            w = store.tensor("token_embd.weight").as_array()
            tok = store.get_tokenizer()
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.files: list[MappedFile] = []
        self.header: Header | None = None
        self.metadata = MetadataStore()
        self.buffers: dict[str, BufferView] = {}
        self.data_offset: int | None = None

    @property
    def version(self) -> int:
        assert self.header is not None
        return self.header.version

    @property
    def architecture(self) -> str | None:
        return self.metadata.get_value(KEY_ARCHITECTURE, "string")

    @property
    def name(self) -> str | None:
        return self.metadata.get_value(KEY_NAME, "string")

    def tensor(self, name: str) -> BufferView:
        view = self.buffers.get(name)
        if view is None:
            raise GGUFError(f"tensor {name!r} not found")
        return view

    def __iter__(self) -> Iterator[BufferView]:
        return iter(self.buffers.values())

    def __contains__(self, name: object) -> bool:
        return name in self.buffers

    def get_tokenizer(self) -> Tokenizer:
        return tokenizer_from_metadata(self.metadata)

    def close(self) -> None:
        for view in self.buffers.values():
            view.release()
        for f in self.files:
            f.close()

    def __enter__(self) -> BufferStore:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def open(path: str) -> BufferStore:
    """Parse *path* and map its tensors.

    The load is all-or-nothing: on any error the mapping is released and the
    exception propagates.
    """
    container = GGUFContainer(path)
    store = BufferStore(path)
    store.files.append(container.file)
    try:
        store.header = container.header
        # metadata must be read in order to read tensors
        load_metadata(store.metadata, container)
        load_buffers(store.buffers, container)
        store.data_offset = container.data_offset
    except BaseException:
        store.close()
        raise

    if len(store.buffers) != store.header.tensor_count:
        logger.warning(
            "Expected to find %d tensors in %s, only found %d",
            store.header.tensor_count, path, len(store.buffers),
        )
    logger.info(
        "Loaded %s: GGUF v%d, %d metadata keys, %d tensors",
        path, store.header.version, len(store.metadata), len(store.buffers),
    )
    return store


def build_tokenizer(store: BufferStore) -> Tokenizer:
    """Build the tokenizer vocabulary described by *store*'s metadata."""
    return store.get_tokenizer()
