"""Snapshot, source-artifact, status and result records."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from bundleforge.models.identity import Identity
from bundleforge.models.stages import StageTransition


class Snapshot(BaseModel):
    """Published record of a cached blob.

    Downstream references resolve a snapshot by name, require ``ready``,
    and fetch ``digest`` from the cache under ``identity``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str = "default"
    identity: Identity
    digest: str = ""
    tag: str = ""
    ready: bool = False


class SourceArtifact(BaseModel):
    """Location and revision of an external (git-like) source archive."""

    model_config = ConfigDict(frozen=True)

    url: str
    revision: str
    checksum: str = ""


class MutationStatus(BaseModel):
    """Versions consumed and the outcome of one mutation."""

    latest_source_version: str = ""
    latest_config_version: str = ""
    latest_patch_source_version: str = ""
    last_applied_digest: str = ""
    snapshot: Snapshot | None = None
    transitions: list[StageTransition] = Field(default_factory=list)


class MutationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity: Identity
    digest: str
    tag: str
    status: MutationStatus
    completed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
