"""gguftensor CLI – inspect and validate GGUF files, dump their vocabulary."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import numpy as np

from . import __version__, _blake3
from .errors import GGUFError
from .format import NOT_FOUND
from .metadata import MetadataValue
from .store import BufferStore, build_tokenizer, open as open_store


# ── Terminal UI (ANSI styles on a TTY, Unicode tables) ──────────────────────

_SGR = {"bold": 1, "dim": 2, "red": 31, "green": 32, "cyan": 36}


def _use_color(stream=None) -> bool:
    """Style output only for a terminal, and never when NO_COLOR is set."""
    stream = sys.stdout if stream is None else stream
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        return False
    return not os.environ.get("NO_COLOR", "").strip()

def _c(style: str, text: str, stream=None) -> str:
    code = _SGR.get(style)
    if code is None or not _use_color(stream):
        return text
    return f"\033[{code}m{text}\033[0m"

def _section(title: str) -> str:
    return _c("cyan", f"\n  ◆ {title}")

def _ok(msg: str) -> str:
    return _c("green", "✓ ") + msg

def _fail(msg: str) -> str:
    # failures go to stderr, so color depends on that stream
    return _c("red", "✗ ", sys.stderr) + msg

def _clip(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 1] + "…"

def _table(headers: list[str], rows: list[list[str]]) -> list[str]:
    """Return lines for a UTF-8 box table sized to its content."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells: list[str]) -> str:
        return "│" + "│".join(f" {c.ljust(w)} " for c, w in zip(cells, widths)) + "│"

    rule = ["─" * (w + 2) for w in widths]
    out = ["╭" + "┬".join(rule) + "╮", line(headers), "├" + "┼".join(rule) + "┤"]
    out.extend(line(row) for row in rows)
    out.append("╰" + "┴".join(rule) + "╯")
    return out


def _describe(value: MetadataValue) -> tuple[str, str]:
    """Return (type, short value) strings for a metadata value."""
    if value.is_null:
        return "null", "-"
    if value.is_array:
        assert value.item_type is not None
        kind = f"{value.item_type.name.lower()}[{len(value.value)}]"
        head = value.value[:4]
        if isinstance(head, np.ndarray):
            head = head.tolist()
        return kind, _clip(repr(list(head)), 48)
    return value.type.name.lower(), _clip(repr(value.value), 48)


def _special(token_id: int) -> str:
    return "-" if token_id == NOT_FOUND else str(token_id)


# ── inspect ─────────────────────────────────────────────────────────────────


def cmd_inspect(args: argparse.Namespace) -> None:
    with open_store(args.file) as store:
        _print_inspect(store, args)


def _print_inspect(store: BufferStore, args: argparse.Namespace) -> None:
    assert store.header is not None
    print(_c("bold", f"\n  GGUF  v{store.version}  ") + _c("dim", store.path))
    print(_section("File"))
    print(f"    Size         {store.files[0].size:,}")
    print(f"    Tensors      {store.header.tensor_count}")
    print(f"    Metadata     {store.header.metadata_kv_count}")
    print(f"    Data offset  {store.data_offset}")
    if store.architecture:
        print(f"    Arch         {store.architecture}")

    print(_section(f"Metadata ({len(store.metadata)})"))
    rows = []
    for key, value in store.metadata.items():
        kind, shown = _describe(value)
        rows.append([_clip(key, 48), kind, shown])
    if rows:
        for line in _table(["Key", "Type", "Value"], rows):
            print("  " + line)

    views = list(store)
    limit = len(views) if args.max_tensors is None else max(args.max_tensors, 0)
    show = min(limit, len(views))
    print(_section(f"Tensors ({len(views)}, showing {show})"))
    headers = ["Name", "Dtype", "Shape", "Offset", "Bytes"]
    if args.hash:
        headers.append("BLAKE3")
        if not _blake3.available():
            print(_c("dim", "    blake3 not installed; pip install gguftensor[verify]"))
    rows = []
    for view in views[:show]:
        row = [_clip(view.name, 42), view.dtype_name, str(list(view.shape)),
               str(view.offset), str(view.nbytes)]
        if args.hash:
            row.append((_blake3.hexdigest(view.data) or "-")[:16])
        rows.append(row)
    if rows:
        for line in _table(headers, rows):
            print("  " + line)
    if len(views) > show:
        print(_c("dim", f"\n  … and {len(views) - show} more (use --max-tensors to show more)"))
    print()


# ── validate ────────────────────────────────────────────────────────────────


def cmd_validate(args: argparse.Namespace) -> None:
    with open_store(args.file) as store:
        print(_ok(f"{len(store.metadata)} metadata keys, {len(store.buffers)} tensors."))
        if args.tokenizer:
            tok = build_tokenizer(store)
            print(_ok(f"{tok.dialect.value} tokenizer with {len(tok)} tokens."))


# ── vocab ───────────────────────────────────────────────────────────────────


def cmd_vocab(args: argparse.Namespace) -> None:
    with open_store(args.file) as store:
        tok = build_tokenizer(store)
    st = tok.special_tokens
    print(_section(f"Tokenizer ({tok.dialect.value}, {len(tok)} tokens)"))
    print(f"    bos {_special(st.bos)}  eos {_special(st.eos)}  "
          f"unk {_special(st.unk)}  pad {_special(st.pad)}  "
          f"hard_space {_special(st.hard_space)}")
    show = min(args.limit, len(tok))
    rows = [[str(i), _clip(repr(tok.id_to_token(i)), 40), f"{tok.score(i):g}"]
            for i in range(show)]
    if rows:
        for line in _table(["Id", "Token", "Score"], rows):
            print("  " + line)
    print()


# ── Entry point ─────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="gguftensor", description="GGUF container inspector"
    )
    parser.add_argument(
        "--version", action="version", version=f"gguftensor {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("inspect", help="Inspect a .gguf file", aliases=["info"])
    p.add_argument("file")
    p.add_argument("--max-tensors", type=int, default=None)
    p.add_argument("--hash", action="store_true",
                   help="Show a BLAKE3 fingerprint of each tensor (needs blake3)")

    p = sub.add_parser("validate", help="Check that a .gguf file loads")
    p.add_argument("file")
    p.add_argument("--tokenizer", action="store_true",
                   help="Also build the tokenizer vocabulary")

    p = sub.add_parser("vocab", help="Show the tokenizer vocabulary")
    p.add_argument("file")
    p.add_argument("--limit", type=int, default=20)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    cmds = {
        "inspect": cmd_inspect,
        "info": cmd_inspect,  # alias
        "validate": cmd_validate,
        "vocab": cmd_vocab,
    }
    fn = cmds.get(args.command)
    if fn is None:
        parser.print_help()
        sys.exit(1)
    try:
        fn(args)
    except (GGUFError, OSError) as exc:
        print(_fail(str(exc)), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
