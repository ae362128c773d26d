"""Component model records consumed from the component-version collaborator."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from bundleforge.core.errors import ResourceNotFoundError


class ComponentResource(BaseModel):
    """A resource declared by a component descriptor.

    ``access`` is the raw access specification (a mapping with a ``type``
    discriminator); see ``bundleforge.models.access``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    name: str
    version: str = ""
    type: str = ""
    access: dict[str, Any] = Field(default_factory=dict)
    extra_identity: dict[str, str] = Field(default_factory=dict, alias="extraIdentity")


class DescriptorReference(BaseModel):
    """A component descriptor's reference to another component."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    component_name: str = Field(alias="componentName")
    version: str


class ComponentDescriptor(BaseModel):
    """The descriptor (spec) of one component version."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    name: str
    version: str
    provider: str = ""
    resources: list[ComponentResource] = Field(default_factory=list)
    references: list[DescriptorReference] = Field(default_factory=list)

    def get_resource(self, name: str) -> ComponentResource:
        for resource in self.resources:
            if resource.name == name:
                return resource
        raise ResourceNotFoundError(
            f"resource '{name}' not found in component {self.name}:{self.version}"
        )

    def to_document(self) -> dict[str, Any]:
        """Plain JSON form used as expression scope."""
        return self.model_dump(mode="json", by_alias=True)


class ComponentReference(BaseModel):
    """Resolved reference tree of a component version.

    The root node is the component version itself; ``references`` holds
    its resolved dependencies, each addressable by ``name``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    component_name: str = Field(default="", alias="componentName")
    version: str
    references: list[ComponentReference] = Field(default_factory=list)

    @property
    def component(self) -> str:
        return self.component_name or self.name

    def find(self, path: list[str]) -> ComponentReference:
        """Walk ``path`` (reference names) down from this node."""
        node = self
        walked: list[str] = []
        for hop in path:
            walked.append(hop)
            for child in node.references:
                if child.name == hop:
                    node = child
                    break
            else:
                raise ResourceNotFoundError(
                    f"couldn't find component descriptor for reference "
                    f"'{'/'.join(walked)}' under {self.component}"
                )
        return node


class ComponentVersion(BaseModel):
    """A reconciled component version record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    namespace: str = "default"
    component: str
    reconciled_version: str = Field(alias="reconciledVersion")
    component_descriptor: ComponentReference = Field(alias="componentDescriptor")
