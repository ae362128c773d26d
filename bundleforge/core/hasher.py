"""Canonical hashing helpers for content addressing and identity naming.

Every digest produced here is derived from canonical JSON (sorted keys,
compact separators, ASCII-only) or from raw bytes, so the same inputs
always map to the same address regardless of process or host.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

DIGEST_ALGORITHM = "sha256"


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce sorted, compact canonical JSON bytes."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def format_digest(hex_digest: str) -> str:
    """Return the ``sha256:<hex>`` form of a hex digest."""
    return f"{DIGEST_ALGORITHM}:{hex_digest}"


def split_digest(digest: str) -> str:
    """Strip the ``sha256:`` prefix from a digest, if present."""
    return digest.removeprefix(f"{DIGEST_ALGORITHM}:")


def identity_storage_name(identity: dict[str, str]) -> str:
    """Derive the cache repository name for an identity mapping.

    The first eight bytes of the SHA-256 of the canonical identity are
    rendered as an unsigned decimal, giving names like ``sha-1009814895297045910``.
    """
    raw = hashlib.sha256(canonical_json_bytes(identity)).digest()
    return f"sha-{int.from_bytes(raw[:8], 'big')}"
