"""Tests for DataResolver."""

from __future__ import annotations

import gzip

import pytest

from bundleforge.core.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    ResourceNotFoundError,
    SnapshotNotReadyError,
)
from bundleforge.models.components import ComponentReference, ComponentVersion
from bundleforge.models.identity import Identity
from bundleforge.models.references import ObjectReference, ResourceRef
from bundleforge.models.snapshot import Snapshot

from conftest import read_tar


def _cv_ref(resource: str = "manifests", **kwargs) -> ObjectReference:
    return ObjectReference(
        kind="ComponentVersion",
        name="podinfo",
        resource_ref=ResourceRef(name=resource, version="1.0.0", **kwargs),
    )


class TestComponentPath:
    def test_resource_bytes_are_decompressed(self, resolver, component_version):
        data = resolver.resolve(_cv_ref())
        assert set(read_tar(data)) == {"configmap.yaml", "deploy.yaml"}
        assert data[:2] != b"\x1f\x8b"

    def test_identity_from_component_descriptor(self, resolver, component_version):
        assert resolver.resolve_identity(_cv_ref()) == Identity(
            component_name="ocm.software/podinfo",
            component_version="6.2.0",
            resource_name="manifests",
            resource_version="1.0.0",
        )

    def test_identity_does_not_fetch_bytes(self, resolver, components, component_version):
        resolver.resolve_identity(_cv_ref())
        assert components.resource_calls == 0

    def test_missing_component_version(self, resolver):
        with pytest.raises(ObjectNotFoundError):
            resolver.resolve(_cv_ref())

    def test_missing_resource(self, resolver, component_version):
        with pytest.raises(ResourceNotFoundError):
            resolver.resolve(_cv_ref("nope"))

    def test_component_version_requires_component_kind(self, resolver):
        with pytest.raises(ConfigurationError):
            resolver.component_version(ObjectReference(kind="Localization", name="x"))

    def test_component_reference_walks_path(self, resolver, components):
        cv = ComponentVersion(
            name="app",
            component="acme.org/app",
            reconciled_version="1.0.0",
            component_descriptor=ComponentReference(
                name="acme.org/app",
                version="1.0.0",
                references=[ComponentReference(name="backend", component_name="acme.org/backend", version="2.0.0")],
            ),
        )
        node = resolver.component_reference(
            cv, ResourceRef(name="config", reference_path=[{"name": "backend"}])
        )
        assert node.component == "acme.org/backend"
        assert resolver.component_reference(cv, None).component == "acme.org/app"

    def test_component_descriptor_missing(self, resolver, component_version):
        node = ComponentReference(name="ghost", version="0.0.1")
        with pytest.raises(ResourceNotFoundError, match="ghost:0.0.1"):
            resolver.component_descriptor(component_version, node)


class TestSnapshotPath:
    IDENTITY = Identity(
        component_name="ocm.software/podinfo",
        component_version="6.2.0",
        resource_name="manifests",
        resource_version="1.0.0",
    )

    def _publish(self, cache, objects, data: bytes, *, ready: bool = True) -> Snapshot:
        digest = cache.push_data(data, self.IDENTITY, "1")
        snapshot = Snapshot(
            name="podinfo-localized",
            identity=self.IDENTITY,
            digest=digest,
            tag="1",
            ready=ready,
        )
        objects.publish("Localization", "podinfo", snapshot)
        return snapshot

    def test_ready_snapshot(self, resolver, cache, objects, tar_builder):
        payload = tar_builder({"a.yaml": "a: 1\n"})
        self._publish(cache, objects, gzip.compress(payload))
        ref = ObjectReference(kind="Localization", name="podinfo")
        assert resolver.resolve(ref) == payload
        assert resolver.resolve_identity(ref) == self.IDENTITY

    def test_snapshot_not_ready(self, resolver, cache, objects):
        self._publish(cache, objects, b"data", ready=False)
        with pytest.raises(SnapshotNotReadyError, match="podinfo-localized"):
            resolver.resolve(ObjectReference(kind="Localization", name="podinfo"))

    def test_unpublished_object(self, resolver):
        with pytest.raises(ObjectNotFoundError):
            resolver.resolve(ObjectReference(kind="Configuration", name="podinfo"))
