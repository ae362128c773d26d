"""Content-addressable cache with mutable tags and immutable digests.

Storage layout::

    {base}/blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
    {base}/repositories/{storage_name}/tags/{tag}        -> "sha256:<hex>"
    {base}/repositories/{storage_name}/blobs/{sha256}    (membership marker)

Blobs are shared and immutable once stored. A repository (one per
Identity) records which digests were pushed under it and where each tag
currently points. Every file is written to a unique temporary file in the
target directory and moved into place with ``os.replace``, so readers never
observe partial content and concurrent tag writes resolve last-write-wins.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from bundleforge.core.errors import (
    BundleforgeError,
    CacheNotFoundError,
    CacheWriteError,
    InputFormatError,
)
from bundleforge.core.hasher import format_digest, sha256_hex, split_digest
from bundleforge.models.identity import Identity

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]{0,127}$")
_HEX_RE = re.compile(r"^[a-f0-9]{64}$")


class ArtifactIntegrityError(BundleforgeError):
    """Raised when a stored blob's hash does not match its address."""

    kind = "integrity"


@runtime_checkable
class Cache(Protocol):
    """The four operations the pipeline needs from a blob cache."""

    def is_cached(self, identity: Identity, tag: str) -> bool:
        ...

    def push_data(self, data: BinaryIO | bytes, identity: Identity, tag: str) -> str:
        ...

    def fetch_data_by_identity(self, identity: Identity, tag: str) -> BinaryIO:
        ...

    def fetch_data_by_digest(self, identity: Identity, digest: str) -> BinaryIO:
        ...


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FilesystemCache:
    """Filesystem-backed implementation of ``Cache``.

    Safe for concurrent use from threads or processes sharing ``base_path``:
    pushes under distinct identities touch disjoint repository directories,
    and every visible file is complete.

    Parameters
    ----------
    base_path:
        Root directory for the cache. Created if it does not exist.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._blobs = self._base / "blobs"
        self._repos = self._base / "repositories"
        self._blobs.mkdir(parents=True, exist_ok=True)
        self._repos.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _blob_path(self, hex_digest: str) -> Path:
        return self._blobs / hex_digest[:2] / hex_digest[2:4] / f"{hex_digest}.dat"

    def _repo_path(self, identity: Identity) -> Path:
        return self._repos / identity.storage_name()

    def _tag_path(self, identity: Identity, tag: str) -> Path:
        if not _TAG_RE.match(tag):
            raise InputFormatError(f"invalid tag {tag!r}")
        return self._repo_path(identity) / "tags" / tag

    def _member_path(self, identity: Identity, hex_digest: str) -> Path:
        return self._repo_path(identity) / "blobs" / hex_digest

    # ------------------------------------------------------------------
    # Cache protocol
    # ------------------------------------------------------------------

    def is_cached(self, identity: Identity, tag: str) -> bool:
        """True once a push under ``(identity, tag)`` has completed."""
        return self._tag_path(identity, tag).is_file()

    def push_data(self, data: BinaryIO | bytes, identity: Identity, tag: str) -> str:
        """Consume ``data``, store it, bind ``tag`` to it, and return its digest."""
        tag_path = self._tag_path(identity, tag)
        try:
            hex_digest = self._store_blob(data)
            _atomic_write(self._member_path(identity, hex_digest), b"")
            digest = format_digest(hex_digest)
            _atomic_write(tag_path, digest.encode("ascii"))
        except OSError as exc:
            raise CacheWriteError(
                f"failed to push blob for {identity.storage_name()}:{tag}: {exc}"
            ) from exc

        logger.debug(
            "Pushed %s to %s:%s", digest, identity.storage_name(), tag
        )
        return digest

    def fetch_data_by_identity(self, identity: Identity, tag: str) -> BinaryIO:
        """Open the blob the tag currently points at."""
        return self.fetch_data_by_digest(identity, self.tag_digest(identity, tag))

    def tag_digest(self, identity: Identity, tag: str) -> str:
        """Return the digest ``tag`` is currently bound to."""
        tag_path = self._tag_path(identity, tag)
        try:
            return tag_path.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            raise CacheNotFoundError(
                f"tag '{tag}' not found for {identity.storage_name()}"
            ) from None

    def fetch_data_by_digest(self, identity: Identity, digest: str) -> BinaryIO:
        """Open a blob previously pushed under ``identity``."""
        hex_digest = split_digest(digest)
        if not _HEX_RE.match(hex_digest) or not self._member_path(
            identity, hex_digest
        ).exists():
            raise CacheNotFoundError(
                f"digest '{digest}' not found for {identity.storage_name()}"
            )
        try:
            return self._blob_path(hex_digest).open("rb")
        except FileNotFoundError:
            raise CacheNotFoundError(f"blob '{digest}' missing from cache") from None

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify(self, digest: str) -> bool:
        """Re-hash a stored blob and compare against its address."""
        hex_digest = split_digest(digest)
        path = self._blob_path(hex_digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == hex_digest

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _store_blob(self, data: BinaryIO | bytes) -> str:
        """Stream ``data`` into a temp file while hashing; move into place."""
        staging = self._blobs / "staging"
        staging.mkdir(parents=True, exist_ok=True)
        hasher = hashlib.sha256()
        fd, tmp_name = tempfile.mkstemp(dir=staging, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    hasher.update(data)
                    handle.write(data)
                else:
                    for chunk in iter(lambda: data.read(_CHUNK_SIZE), b""):
                        hasher.update(chunk)
                        handle.write(chunk)
            hex_digest = hasher.hexdigest()
            path = self._blob_path(hex_digest)
            if path.exists():
                if not self.verify(hex_digest):
                    raise ArtifactIntegrityError(
                        f"Existing blob at {hex_digest} failed integrity check"
                    )
                Path(tmp_name).unlink(missing_ok=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return hex_digest
