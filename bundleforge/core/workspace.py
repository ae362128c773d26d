"""Per-invocation working trees and tar archive handling.

A ``WorkingTree`` is a uniquely named temporary directory owned by exactly
one pipeline invocation::

    bundleforge-XXXXXXXX/
        content/        extracted payload; what gets archived
        areas/<name>/   scratch areas (e.g. an extracted patch source)

It is removed when the ``with`` block exits, whether or not an error
escaped. Archives produced by ``archive_directory`` are deterministic:
identical trees yield identical bytes and therefore identical digests.
"""

from __future__ import annotations

import gzip
import io
import logging
import shutil
import tarfile
import tempfile
from pathlib import Path
from types import TracebackType
from typing import Literal

from bundleforge.core.errors import InputFormatError, NotAnArchiveError, PathNotFoundError

logger = logging.getLogger(__name__)

_CONTENT_DIR = "content"
_AREAS_DIR = "areas"


class WorkingTree:
    """An exclusively owned temporary directory tree."""

    def __init__(self, root: Path) -> None:
        self._root = root
        (root / _CONTENT_DIR).mkdir(parents=True, exist_ok=True)

    @classmethod
    def create(cls, parent: Path | None = None) -> WorkingTree:
        if parent is not None:
            Path(parent).mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix="bundleforge-", dir=parent))
        logger.debug("Created working tree %s", root)
        return cls(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def content(self) -> Path:
        return self._root / _CONTENT_DIR

    def area(self, name: str) -> Path:
        """Return (creating it) the scratch area ``name``."""
        path = self._root / _AREAS_DIR / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolve(self, relative: str, base: Path | None = None) -> Path:
        """Resolve ``relative`` under ``base`` (default ``content``).

        Raises ``PathNotFoundError`` if the result escapes ``base``.
        """
        anchor = (base or self.content).resolve()
        candidate = (anchor / relative.lstrip("/")).resolve()
        if candidate != anchor and anchor not in candidate.parents:
            raise PathNotFoundError(f"path '{relative}' escapes the working tree")
        return candidate

    @property
    def exists(self) -> bool:
        return self._root.exists()

    def cleanup(self) -> None:
        shutil.rmtree(self._root, ignore_errors=True)
        logger.debug("Removed working tree %s", self._root)

    def __enter__(self) -> WorkingTree:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


def is_tar(data: bytes) -> bool:
    """True if ``data`` starts with a valid (checksummed) tar header block."""
    if len(data) < tarfile.BLOCKSIZE:
        return False
    try:
        tarfile.TarInfo.frombuf(
            data[: tarfile.BLOCKSIZE], tarfile.ENCODING, "surrogateescape"
        )
    except tarfile.HeaderError:
        return False
    return True


def extract_archive(data: bytes, destination: Path) -> None:
    """Extract tar ``data`` into ``destination``.

    Raises ``NotAnArchiveError`` before touching the filesystem when ``data``
    is not a tar archive.
    """
    if not is_tar(data):
        raise NotAnArchiveError()
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
            archive.extractall(destination, filter="data")
    except (tarfile.TarError, OSError) as exc:
        raise InputFormatError(f"extract tar error: {exc}") from exc


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mode = 0o755 if info.isdir() else 0o644
    return info


def archive_directory(
    path: Path, compression: Literal["gzip", "none"] = "gzip"
) -> bytes:
    """Archive the contents of ``path`` deterministically."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:", format=tarfile.PAX_FORMAT) as archive:
        for entry in sorted(path.rglob("*"), key=lambda p: p.relative_to(path).as_posix()):
            if not (entry.is_file() or entry.is_dir()) or entry.is_symlink():
                continue
            arcname = entry.relative_to(path).as_posix()
            info = _normalize(archive.gettarinfo(str(entry), arcname=arcname))
            if entry.is_file():
                with entry.open("rb") as handle:
                    archive.addfile(info, handle)
            else:
                archive.addfile(info)
    data = buffer.getvalue()
    if compression == "gzip":
        return gzip.compress(data, mtime=0)
    return data
