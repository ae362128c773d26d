"""Mutation inputs: object references, sources, and the mutation spec."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bundleforge.core.errors import ConfigurationError

COMPONENT_VERSION_KIND = "ComponentVersion"
GIT_REPOSITORY_KIND = "GitRepository"


class ReferencePathEntry(BaseModel):
    """One hop through a component's references (by reference name)."""

    model_config = ConfigDict(frozen=True)

    name: str


class ResourceRef(BaseModel):
    """Selects a resource inside a component version.

    ``reference_path`` walks into referenced components before the
    resource is looked up; an empty path selects the root component.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    version: str = ""
    reference_path: list[ReferencePathEntry] = Field(
        default_factory=list, alias="referencePath"
    )
    extra_identity: dict[str, str] = Field(default_factory=dict, alias="extraIdentity")

    def path_names(self) -> list[str]:
        return [entry.name for entry in self.reference_path]


class ObjectReference(BaseModel):
    """Reference to a mutation input.

    ``kind == "ComponentVersion"`` selects a resource of a component version
    (``resource_ref`` required); any other kind names an object that
    publishes a snapshot.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: str
    name: str
    namespace: str = "default"
    api_version: str = Field(default="", alias="apiVersion")
    resource_ref: ResourceRef | None = Field(default=None, alias="resourceRef")

    @property
    def is_component_version(self) -> bool:
        return self.kind == COMPONENT_VERSION_KIND

    @model_validator(mode="after")
    def _component_version_needs_resource(self) -> ObjectReference:
        if self.is_component_version and self.resource_ref is None:
            raise ValueError(
                f"reference to {self.kind} '{self.name}' requires a resourceRef"
            )
        return self

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


class NamespacedName(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str = "default"


class PatchSourceRef(BaseModel):
    """Kind/name/namespace of an external (git-like) patch source."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    namespace: str = "default"


class PatchSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source_ref: PatchSourceRef = Field(alias="sourceRef")
    path: str


class PatchTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str


class PatchStrategicMerge(BaseModel):
    """Merge ``source.path`` from an external source into ``target.path``."""

    model_config = ConfigDict(frozen=True)

    source: PatchSource
    target: PatchTarget


class MutationSpec(BaseModel):
    """What to mutate and how.

    Exactly one transform runs per mutation: configuration (``config_ref``
    plus ``values``), localization (``config_ref`` alone), strategic merge
    (``patch_strategic_merge``), or none (pass-through).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source_ref: ObjectReference = Field(alias="sourceRef")
    config_ref: ObjectReference | None = Field(default=None, alias="configRef")
    values: dict[str, Any] | None = None
    patch_strategic_merge: PatchStrategicMerge | None = Field(
        default=None, alias="patchStrategicMerge"
    )

    @model_validator(mode="after")
    def _transforms_are_exclusive(self) -> MutationSpec:
        if self.patch_strategic_merge is not None and (
            self.config_ref is not None or self.values is not None
        ):
            raise ValueError(
                "patchStrategicMerge cannot be combined with configRef or values"
            )
        if self.values is not None and self.config_ref is None:
            raise ValueError("values require a configRef")
        return self

    @property
    def is_configuration(self) -> bool:
        return self.config_ref is not None and self.values is not None

    @property
    def is_localization(self) -> bool:
        return self.config_ref is not None and self.values is None

    @property
    def is_patch(self) -> bool:
        return self.patch_strategic_merge is not None


class Source(BaseModel):
    """Boundary form of a source: an object reference or a resource selector."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source_ref: ObjectReference | None = Field(default=None, alias="sourceRef")
    resource_ref: ResourceRef | None = Field(default=None, alias="resourceRef")


class MutationObject(BaseModel):
    """A named, generation-stamped mutation request as handed in by a scheduler.

    ``resource_ref`` sources (and a ``resource_ref``-only config) resolve
    against ``component_version_ref``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    namespace: str = "default"
    generation: int = 1
    component_version_ref: NamespacedName | None = Field(
        default=None, alias="componentVersionRef"
    )
    source: Source = Field(default_factory=Source)
    config_ref: Source | None = Field(default=None, alias="configRef")
    values: dict[str, Any] | None = None
    patch_strategic_merge: PatchStrategicMerge | None = Field(
        default=None, alias="patchStrategicMerge"
    )

    def _to_reference(self, source: Source, role: str) -> ObjectReference:
        if source.source_ref is not None:
            return source.source_ref
        if source.resource_ref is not None:
            if self.component_version_ref is None:
                raise ConfigurationError(
                    f"{role} resourceRef requires a componentVersionRef"
                )
            return ObjectReference(
                kind=COMPONENT_VERSION_KIND,
                name=self.component_version_ref.name,
                namespace=self.component_version_ref.namespace,
                resource_ref=source.resource_ref,
            )
        raise ConfigurationError(
            "either sourceRef or resourceRef should be defined, but both are empty"
        )

    def to_mutation_spec(self) -> MutationSpec:
        """Normalize the boundary request into a MutationSpec.

        Fails with ConfigurationError before any I/O when the request
        names no source or combines exclusive transforms.
        """
        source_ref = self._to_reference(self.source, "source")
        config_ref = (
            self._to_reference(self.config_ref, "config")
            if self.config_ref is not None
            else None
        )
        try:
            return MutationSpec(
                source_ref=source_ref,
                config_ref=config_ref,
                values=self.values,
                patch_strategic_merge=self.patch_strategic_merge,
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
