"""Optional BLAKE3 fingerprints of tensor payloads.

When blake3 is not installed, :func:`hexdigest` returns None.
"""

from __future__ import annotations

from typing import Optional

_blake3_module = None


def _get_blake3():
    global _blake3_module
    if _blake3_module is None:
        try:
            import blake3 as b
            _blake3_module = b
        except ImportError:
            _blake3_module = False
    return _blake3_module if _blake3_module else None


def available() -> bool:
    return _get_blake3() is not None


def hexdigest(data) -> Optional[str]:
    """BLAKE3-256 hex digest of any bytes-like object (hashed in place)."""
    b3 = _get_blake3()
    if b3 is None:
        return None
    return b3.blake3(data).hexdigest()
