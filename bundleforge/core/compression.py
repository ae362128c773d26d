"""Transparent decompression of fetched payloads."""

from __future__ import annotations

import bz2
import gzip
import lzma
import zlib
from collections.abc import Callable

from bundleforge.core.errors import DecompressError

_GZIP_MAGIC = b"\x1f\x8b"
_BZIP2_MAGIC = b"BZh"
_XZ_MAGIC = b"\xfd7zXZ\x00"

_DECOMPRESSORS: tuple[tuple[str, bytes, Callable[[bytes], bytes]], ...] = (
    ("gzip", _GZIP_MAGIC, gzip.decompress),
    ("bzip2", _BZIP2_MAGIC, bz2.decompress),
    ("xz", _XZ_MAGIC, lzma.decompress),
)


def auto_decompress(data: bytes) -> bytes:
    """Decompress ``data`` if it carries a known magic number.

    Payloads that are not compressed are returned unchanged.
    """
    for name, magic, decompress in _DECOMPRESSORS:
        if data.startswith(magic):
            try:
                return decompress(data)
            except (OSError, EOFError, ValueError, zlib.error, lzma.LZMAError) as exc:
                raise DecompressError(f"failed to auto decompress ({name}): {exc}") from exc
    return data
