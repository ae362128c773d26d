"""Container image reference parsing.

Follows the usual registry conventions: a first path segment containing a
``.`` or ``:`` (or equal to ``localhost``) names the registry, otherwise the
reference lives on Docker Hub (``index.docker.io``), where single-segment
repositories are implicitly under ``library/``. A missing tag means
``latest``. When both a tag and a digest are present, the digest wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bundleforge.core.errors import InputFormatError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}
_REPOSITORY_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::\d+)?$")


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    identifier: str
    is_digest: bool = False

    @property
    def context(self) -> str:
        return f"{self.registry}/{self.repository}"

    def name(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.context}{separator}{self.identifier}"

    def __str__(self) -> str:
        return self.name()


def _split_registry(name: str) -> tuple[str, str]:
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        if not _REGISTRY_RE.match(first):
            raise InputFormatError(f"invalid registry {first!r} in reference")
        registry = DEFAULT_REGISTRY if first in _DOCKER_HUB_ALIASES else first
        return registry, rest
    return DEFAULT_REGISTRY, name


def parse_reference(ref: str) -> ImageReference:
    """Parse ``ref`` into its registry, repository, and tag or digest."""
    text = ref.strip()
    if not text:
        raise InputFormatError("empty image reference")

    digest = ""
    if "@" in text:
        text, digest = text.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InputFormatError(f"invalid digest {digest!r} in reference {ref!r}")

    tag = ""
    slash = text.rfind("/")
    colon = text.rfind(":")
    if colon > slash:
        text, tag = text[:colon], text[colon + 1 :]
        if not _TAG_RE.match(tag):
            raise InputFormatError(f"invalid tag {tag!r} in reference {ref!r}")

    registry, repository = _split_registry(text)
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"
    if not _REPOSITORY_RE.match(repository):
        raise InputFormatError(f"invalid repository {repository!r} in reference {ref!r}")

    if digest:
        return ImageReference(registry, repository, digest, is_digest=True)
    return ImageReference(registry, repository, tag or DEFAULT_TAG)
