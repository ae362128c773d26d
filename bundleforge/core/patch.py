"""Patch engine: strategic merge of a file from an external source.

The patch source is a git-like object resolved by a ``SourceResolver`` to
an artifact URL and revision. The artifact (a tar archive, usually
gzipped) is downloaded by ``ArtifactFetcher``, extracted next to the base
payload in the same working tree, and the document at the source path is
merged into the document at the target path.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

from bundleforge.config import settings
from bundleforge.core.compression import auto_decompress
from bundleforge.core.errors import (
    DocumentParseError,
    PatchPathNotFoundError,
    SourceFetchError,
    UnsupportedSourceError,
)
from bundleforge.core.hasher import sha256_hex, split_digest
from bundleforge.core.strategic_merge import merge_documents
from bundleforge.core.workspace import WorkingTree, extract_archive
from bundleforge.core.yamlio import dump_documents, load_documents
from bundleforge.models.identity import Identity
from bundleforge.models.references import GIT_REPOSITORY_KIND, PatchStrategicMerge
from bundleforge.models.snapshot import SourceArtifact

logger = logging.getLogger(__name__)

SUPPORTED_SOURCE_KINDS = frozenset({GIT_REPOSITORY_KIND})
PATCH_SOURCE_AREA = "patch-source"


@runtime_checkable
class SourceResolver(Protocol):
    """Resolves a source object to its current artifact.

    Implementations raise ``ObjectNotFoundError`` if the object does not
    exist and ``UnsupportedSourceError`` for kinds they cannot serve.
    """

    def resolve(self, kind: str, name: str, namespace: str) -> SourceArtifact:
        ...


class ArtifactFetcher:
    """Downloads source artifacts over HTTP(S) or reads them from disk.

    Parameters
    ----------
    timeout:
        Per-request timeout in seconds for HTTP downloads.
    client:
        Optional preconfigured ``httpx.Client`` (tests pass one backed by
        ``httpx.MockTransport``). The fetcher does not close a client it
        did not create.
    """

    def __init__(self, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self._timeout = timeout
        self._client = client

    def fetch(self, artifact: SourceArtifact) -> bytes:
        """Return the artifact bytes, verifying the declared checksum."""
        scheme = urlparse(artifact.url).scheme.lower()
        if scheme in ("http", "https"):
            data = self._download(artifact.url)
        elif scheme in ("", "file"):
            data = self._read_local(artifact.url)
        else:
            raise SourceFetchError(f"unsupported artifact URL scheme '{scheme}'")

        if artifact.checksum:
            expected = split_digest(artifact.checksum).lower()
            actual = sha256_hex(data)
            if not hmac.compare_digest(expected, actual):
                raise SourceFetchError(
                    f"artifact checksum mismatch for {artifact.url}: "
                    f"expected {expected}, got {actual}"
                )
        logger.debug("Fetched artifact %s (%d bytes)", artifact.url, len(data))
        return data

    def _download(self, url: str) -> bytes:
        try:
            if self._client is not None:
                response = self._client.get(url)
                response.raise_for_status()
                return response.content
            with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPStatusError as exc:
            raise SourceFetchError(
                f"failed to download {url}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"failed to download {url}: {exc}") from exc

    @staticmethod
    def _read_local(url: str) -> bytes:
        parsed = urlparse(url)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise SourceFetchError(f"failed to read artifact {path}: {exc}") from exc


@dataclass(frozen=True)
class PatchOutcome:
    content: Path
    identity: Identity
    revision: str


def _load_documents(path: Path) -> list[Any]:
    documents = load_documents(path.read_text(encoding="utf-8"), path.name)
    if not documents:
        raise DocumentParseError(f"{path.name} holds no documents")
    return documents


def _locate(tree: WorkingTree, relative: str, base: Path, role: str) -> Path:
    path = tree.resolve(relative, base=base)
    if not path.is_file():
        raise PatchPathNotFoundError(f"{role} path '{relative}' not found")
    return path


class PatchEngine:
    """Applies a strategic merge patch from an external source."""

    def __init__(
        self, sources: SourceResolver, fetcher: ArtifactFetcher | None = None
    ) -> None:
        self._sources = sources
        self._fetcher = fetcher or ArtifactFetcher(timeout=settings.http_timeout_seconds)

    def resolve_source(self, patch: PatchStrategicMerge) -> SourceArtifact:
        ref = patch.source.source_ref
        if ref.kind not in SUPPORTED_SOURCE_KINDS:
            raise UnsupportedSourceError(
                f"source `{ref.name}` kind '{ref.kind}' not supported"
            )
        return self._sources.resolve(ref.kind, ref.name, ref.namespace)

    def apply_patch(
        self,
        base: bytes,
        patch: PatchStrategicMerge,
        tree: WorkingTree,
        artifact: SourceArtifact | None = None,
    ) -> PatchOutcome:
        """Merge ``patch.source.path`` into ``patch.target.path`` of ``base``."""
        artifact = artifact or self.resolve_source(patch)
        source_data = auto_decompress(self._fetcher.fetch(artifact))

        extract_archive(base, tree.content)
        source_root = tree.area(PATCH_SOURCE_AREA)
        extract_archive(source_data, source_root)

        source_path = _locate(tree, patch.source.path, source_root, "source")
        target_path = _locate(tree, patch.target.path, tree.content, "target")

        merged = merge_documents(
            _load_documents(target_path), _load_documents(source_path)
        )
        target_path.write_text(dump_documents(merged), encoding="utf-8")
        logger.info(
            "Patched %s with %s@%s",
            patch.target.path,
            patch.source.source_ref.name,
            artifact.revision,
        )

        identity = Identity(
            component_name=patch.source.source_ref.name,
            component_version=artifact.revision,
            resource_name=patch.target.path,
            resource_version=artifact.checksum or artifact.revision,
        )
        return PatchOutcome(tree.content, identity, artifact.revision)
