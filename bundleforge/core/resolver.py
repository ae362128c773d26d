"""Data resolution: raw bytes and identities for mutation inputs.

An ``ObjectReference`` resolves along one of two paths:

1. **Component version** (``kind == "ComponentVersion"``): look up the
   component version record, authenticate, fetch the selected resource
   through the component-version collaborator, auto-decompress.
2. **Snapshot** (any other kind): read the object's published snapshot
   name, require the snapshot to be ready, fetch its digest from the
   cache under the snapshot's identity, auto-decompress.

Errors from collaborators surface unchanged; nothing is retried here.
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Protocol, runtime_checkable

from bundleforge.core.cache import Cache
from bundleforge.core.compression import auto_decompress
from bundleforge.core.errors import (
    ConfigurationError,
    ResourceNotFoundError,
    SnapshotNotReadyError,
)
from bundleforge.models.components import (
    ComponentDescriptor,
    ComponentReference,
    ComponentVersion,
)
from bundleforge.models.identity import Identity
from bundleforge.models.references import ObjectReference, ResourceRef
from bundleforge.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ComponentVersionFetcher(Protocol):
    """Access to component versions, their resources, and descriptors.

    Implementations raise ``ObjectNotFoundError`` / ``ResourceNotFoundError``
    for missing records, ``AuthenticationError`` when credentials fail, and
    ``UnsupportedAccessError`` for resources they cannot download.
    """

    def get_component_version(self, name: str, namespace: str) -> ComponentVersion:
        ...

    def authenticate(self, component_version: ComponentVersion) -> Any:
        """Return an opaque, authenticated access context."""
        ...

    def get_resource(
        self,
        context: Any,
        component_version: ComponentVersion,
        resource_ref: ResourceRef,
    ) -> BinaryIO | bytes:
        ...

    def get_component_descriptor(
        self, namespace: str, component: str, version: str
    ) -> ComponentDescriptor | None:
        ...


@runtime_checkable
class DynamicObjectFetcher(Protocol):
    """Lookup of snapshot-publishing objects and their snapshots.

    ``get_snapshot_name`` raises ``ObjectNotFoundError`` when the object is
    missing or has not published a snapshot name; ``get_snapshot`` raises
    ``SnapshotNotFoundError``.
    """

    def get_snapshot_name(self, kind: str, name: str, namespace: str) -> str:
        ...

    def get_snapshot(self, name: str, namespace: str) -> Snapshot:
        ...


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def _read_all(payload: BinaryIO | bytes) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    try:
        return payload.read()
    finally:
        payload.close()


class DataResolver:
    """Resolves object references to bytes and identities.

    Parameters
    ----------
    components:
        Component-version collaborator.
    objects:
        Snapshot-publishing object collaborator.
    cache:
        Cache holding published snapshots.
    """

    def __init__(
        self,
        components: ComponentVersionFetcher,
        objects: DynamicObjectFetcher,
        cache: Cache,
    ) -> None:
        self._components = components
        self._objects = objects
        self._cache = cache

    # ------------------------------------------------------------------
    # Bytes
    # ------------------------------------------------------------------

    def resolve(self, ref: ObjectReference) -> bytes:
        """Return the fully read, decompressed payload behind ``ref``."""
        if ref.is_component_version:
            return self._resolve_component_resource(ref)
        return self._resolve_snapshot_data(ref)

    def _resolve_component_resource(self, ref: ObjectReference) -> bytes:
        assert ref.resource_ref is not None
        cv = self._components.get_component_version(ref.name, ref.namespace)
        context = self._components.authenticate(cv)
        payload = self._components.get_resource(context, cv, ref.resource_ref)
        data = auto_decompress(_read_all(payload))
        logger.debug(
            "Resolved resource %s of %s (%d bytes)",
            ref.resource_ref.name,
            ref,
            len(data),
        )
        return data

    def _ready_snapshot(self, ref: ObjectReference) -> Snapshot:
        snapshot_name = self._objects.get_snapshot_name(
            ref.kind, ref.name, ref.namespace
        )
        snapshot = self._objects.get_snapshot(snapshot_name, ref.namespace)
        if not snapshot.ready:
            raise SnapshotNotReadyError(
                f"snapshot not ready: {ref.namespace}/{snapshot_name}"
            )
        return snapshot

    def _resolve_snapshot_data(self, ref: ObjectReference) -> bytes:
        snapshot = self._ready_snapshot(ref)
        with self._cache.fetch_data_by_digest(snapshot.identity, snapshot.digest) as blob:
            data = blob.read()
        data = auto_decompress(data)
        logger.debug(
            "Resolved snapshot %s of %s (%d bytes)", snapshot.name, ref, len(data)
        )
        return data

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def resolve_identity(self, ref: ObjectReference) -> Identity:
        """Return the identity of ``ref`` without transferring bytes."""
        if ref.is_component_version:
            assert ref.resource_ref is not None
            cv = self._components.get_component_version(ref.name, ref.namespace)
            return Identity(
                component_name=cv.component_descriptor.component,
                component_version=cv.component_descriptor.version,
                resource_name=ref.resource_ref.name,
                resource_version=ref.resource_ref.version,
            )
        snapshot_name = self._objects.get_snapshot_name(
            ref.kind, ref.name, ref.namespace
        )
        return self._objects.get_snapshot(snapshot_name, ref.namespace).identity

    # ------------------------------------------------------------------
    # Component records
    # ------------------------------------------------------------------

    def component_version(self, ref: ObjectReference) -> ComponentVersion:
        if not ref.is_component_version:
            raise ConfigurationError(
                f"cannot retrieve component version for {ref.kind} '{ref.name}'"
            )
        return self._components.get_component_version(ref.name, ref.namespace)

    def component_reference(
        self, cv: ComponentVersion, resource_ref: ResourceRef | None
    ) -> ComponentReference:
        """Walk the resource selector's reference path from the root component."""
        path = resource_ref.path_names() if resource_ref is not None else []
        return cv.component_descriptor.find(path)

    def component_descriptor(
        self, cv: ComponentVersion, node: ComponentReference
    ) -> ComponentDescriptor:
        descriptor = self._components.get_component_descriptor(
            cv.namespace, node.component, node.version
        )
        if descriptor is None:
            raise ResourceNotFoundError(
                f"component descriptor not found for {node.component}:{node.version}"
            )
        return descriptor

    def fetch_descriptor(
        self, namespace: str, component: str, version: str
    ) -> ComponentDescriptor | None:
        """Pass-through descriptor lookup used by the component document builder."""
        return self._components.get_component_descriptor(namespace, component, version)
