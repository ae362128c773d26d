"""Artifact identity: the logical address of a cached blob."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bundleforge.core.hasher import identity_storage_name

COMPONENT_NAME_KEY = "component-name"
COMPONENT_VERSION_KEY = "component-version"
RESOURCE_NAME_KEY = "resource-name"
RESOURCE_VERSION_KEY = "resource-version"

IDENTITY_KEYS: tuple[str, ...] = (
    COMPONENT_NAME_KEY,
    COMPONENT_VERSION_KEY,
    RESOURCE_NAME_KEY,
    RESOURCE_VERSION_KEY,
)


class Identity(BaseModel):
    """Fixed-key identity of a versioned resource or derived artifact.

    The key set is closed: constructing an Identity with any other key
    fails validation. Two identities are equal iff all four values match.
    Serialized form uses the dashed key names (``component-name`` etc.).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    component_name: str = Field(default="", alias=COMPONENT_NAME_KEY)
    component_version: str = Field(default="", alias=COMPONENT_VERSION_KEY)
    resource_name: str = Field(default="", alias=RESOURCE_NAME_KEY)
    resource_version: str = Field(default="", alias=RESOURCE_VERSION_KEY)

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> Identity:
        """Build an Identity from its dashed-key mapping form."""
        return cls.model_validate(data)

    def to_dict(self) -> dict[str, str]:
        """Return the ordered dashed-key mapping form."""
        return self.model_dump(by_alias=True)

    def storage_name(self) -> str:
        """Deterministic repository name used by the cache."""
        return identity_storage_name(self.to_dict())

    def __str__(self) -> str:
        return ",".join(f"{k}={v}" for k, v in self.to_dict().items())
