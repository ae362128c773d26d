"""Access specifications: the closed set of variants that yield image references."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AccessType(str, Enum):
    OCI_ARTIFACT = "ociArtifact"
    OCI_BLOB = "ociBlob"
    LOCAL_BLOB = "localBlob"
    UNSUPPORTED = "unsupported"


# Legacy and alternate spellings accepted on the wire.
_TYPE_ALIASES: dict[str, AccessType] = {
    "ociartifact": AccessType.OCI_ARTIFACT,
    "ociregistry": AccessType.OCI_ARTIFACT,
    "ociimage": AccessType.OCI_ARTIFACT,
    "ociblob": AccessType.OCI_BLOB,
    "localblob": AccessType.LOCAL_BLOB,
}


def access_type(spec: dict[str, Any]) -> AccessType:
    """Normalize the ``type`` of a raw access spec (``ociArtifact/v1`` -> OCI_ARTIFACT)."""
    raw = str(spec.get("type", ""))
    base = raw.split("/", 1)[0].lower()
    return _TYPE_ALIASES.get(base, AccessType.UNSUPPORTED)


class OCIArtifactAccess(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    image_reference: str = Field(alias="imageReference")


class OCIBlobAccess(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    ref: str
    digest: str
    media_type: str = Field(default="", alias="mediaType")
    size: int = 0


class LocalBlobAccess(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    local_reference: str = Field(default="", alias="localReference")
    media_type: str = Field(default="", alias="mediaType")
    reference_name: str = Field(default="", alias="referenceName")
    global_access: dict[str, Any] | None = Field(default=None, alias="globalAccess")
