"""Shared test fixtures for bundleforge."""

from __future__ import annotations

import gzip
import io
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO

import pytest
import yaml

from bundleforge.config import ForgeSettings
from bundleforge.core.cache import FilesystemCache
from bundleforge.core.errors import (
    CacheWriteError,
    ObjectNotFoundError,
    ResourceNotFoundError,
    SnapshotNotFoundError,
)
from bundleforge.core.orchestrator import MutationPipeline
from bundleforge.core.patch import ArtifactFetcher, PatchEngine
from bundleforge.core.resolver import DataResolver
from bundleforge.models.components import (
    ComponentDescriptor,
    ComponentReference,
    ComponentVersion,
)
from bundleforge.models.identity import Identity
from bundleforge.models.references import ResourceRef
from bundleforge.models.snapshot import Snapshot, SourceArtifact

TarBuilder = Callable[..., bytes]


def build_tar(files: dict[str, str | bytes], *, compress: bool = False) -> bytes:
    """Build a tar archive in memory from ``{path: content}``."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:") as archive:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    raw = buffer.getvalue()
    return gzip.compress(raw, mtime=0) if compress else raw


def read_tar(data: bytes) -> dict[str, str]:
    """Return ``{path: text}`` for every regular file of a (gzipped) tar."""
    if data[:2] == b"\x1f\x8b":
        data = gzip.decompress(data)
    files: dict[str, str] = {}
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
        for member in archive.getmembers():
            if member.isfile():
                handle = archive.extractfile(member)
                assert handle is not None
                files[member.name] = handle.read().decode("utf-8")
    return files


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeComponentFetcher:
    """In-memory component versions, resources and descriptors."""

    def __init__(self) -> None:
        self.versions: dict[tuple[str, str], ComponentVersion] = {}
        self.resources: dict[tuple[str, str], bytes] = {}
        self.descriptors: dict[tuple[str, str], ComponentDescriptor] = {}
        self.resource_calls = 0

    def add_version(self, cv: ComponentVersion) -> ComponentVersion:
        self.versions[(cv.namespace, cv.name)] = cv
        return cv

    def add_resource(self, cv_name: str, resource: str, data: bytes) -> None:
        self.resources[(cv_name, resource)] = data

    def add_descriptor(self, descriptor: ComponentDescriptor) -> ComponentDescriptor:
        self.descriptors[(descriptor.name, descriptor.version)] = descriptor
        return descriptor

    def get_component_version(self, name: str, namespace: str) -> ComponentVersion:
        try:
            return self.versions[(namespace, name)]
        except KeyError:
            raise ObjectNotFoundError(f"component version {namespace}/{name} not found") from None

    def authenticate(self, component_version: ComponentVersion) -> Any:
        return {"component": component_version.component}

    def get_resource(
        self, context: Any, component_version: ComponentVersion, resource_ref: ResourceRef
    ) -> BinaryIO | bytes:
        self.resource_calls += 1
        try:
            return io.BytesIO(self.resources[(component_version.name, resource_ref.name)])
        except KeyError:
            raise ResourceNotFoundError(f"resource {resource_ref.name} not found") from None

    def get_component_descriptor(
        self, namespace: str, component: str, version: str
    ) -> ComponentDescriptor | None:
        return self.descriptors.get((component, version))


class FakeObjectFetcher:
    """In-memory snapshot-publishing objects."""

    def __init__(self) -> None:
        self.snapshot_names: dict[tuple[str, str, str], str] = {}
        self.snapshots: dict[tuple[str, str], Snapshot] = {}

    def publish(self, kind: str, name: str, snapshot: Snapshot) -> None:
        self.snapshot_names[(kind, snapshot.namespace, name)] = snapshot.name
        self.snapshots[(snapshot.namespace, snapshot.name)] = snapshot

    def get_snapshot_name(self, kind: str, name: str, namespace: str) -> str:
        try:
            return self.snapshot_names[(kind, namespace, name)]
        except KeyError:
            raise ObjectNotFoundError(f"{kind} {namespace}/{name} not found") from None

    def get_snapshot(self, name: str, namespace: str) -> Snapshot:
        try:
            return self.snapshots[(namespace, name)]
        except KeyError:
            raise SnapshotNotFoundError(f"snapshot {namespace}/{name} not found") from None


class FakeSourceResolver:
    """Maps (kind, namespace, name) to a fixed SourceArtifact."""

    def __init__(self) -> None:
        self.artifacts: dict[tuple[str, str, str], SourceArtifact] = {}

    def add(self, kind: str, name: str, artifact: SourceArtifact, namespace: str = "default") -> None:
        self.artifacts[(kind, namespace, name)] = artifact

    def resolve(self, kind: str, name: str, namespace: str) -> SourceArtifact:
        try:
            return self.artifacts[(kind, namespace, name)]
        except KeyError:
            raise ObjectNotFoundError(f"{kind} {namespace}/{name} not found") from None


class RecordingCache(FilesystemCache):
    """FilesystemCache that counts pushes."""

    def __init__(self, base_path: Path) -> None:
        super().__init__(base_path)
        self.pushes: list[tuple[Identity, str, str]] = []

    def push_data(self, data: BinaryIO | bytes, identity: Identity, tag: str) -> str:
        digest = super().push_data(data, identity, tag)
        self.pushes.append((identity, tag, digest))
        return digest


class FailingPushCache(RecordingCache):
    def push_data(self, data: BinaryIO | bytes, identity: Identity, tag: str) -> str:
        raise CacheWriteError("registry unavailable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tar_builder() -> TarBuilder:
    return build_tar


@pytest.fixture
def tar_reader() -> Callable[[bytes], dict[str, str]]:
    return read_tar


@pytest.fixture
def forge_settings(tmp_path: Path) -> ForgeSettings:
    """Settings isolated from the environment, with working trees under tmp."""
    return ForgeSettings(
        _env_file=None,
        cache_path=tmp_path / "cache",
        workdir_root=tmp_path / "work",
    )


@pytest.fixture
def cache(tmp_path: Path) -> RecordingCache:
    return RecordingCache(tmp_path / "cache")


@pytest.fixture
def components() -> FakeComponentFetcher:
    return FakeComponentFetcher()


@pytest.fixture
def objects() -> FakeObjectFetcher:
    return FakeObjectFetcher()


@pytest.fixture
def sources() -> FakeSourceResolver:
    return FakeSourceResolver()


@pytest.fixture
def resolver(
    components: FakeComponentFetcher, objects: FakeObjectFetcher, cache: RecordingCache
) -> DataResolver:
    return DataResolver(components, objects, cache)


@pytest.fixture
def pipeline(
    cache: RecordingCache,
    resolver: DataResolver,
    sources: FakeSourceResolver,
    forge_settings: ForgeSettings,
) -> MutationPipeline:
    return MutationPipeline(
        cache,
        resolver,
        patch_engine=PatchEngine(sources, ArtifactFetcher()),
        settings=forge_settings,
    )


@pytest.fixture
def failing_cache(tmp_path: Path) -> FailingPushCache:
    return FailingPushCache(tmp_path / "failing-cache")


@pytest.fixture
def failing_pipeline(
    failing_cache: FailingPushCache,
    resolver: DataResolver,
    forge_settings: ForgeSettings,
) -> MutationPipeline:
    """A pipeline whose cache rejects every push."""
    return MutationPipeline(failing_cache, resolver, settings=forge_settings)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: podinfo
data:
  PODINFO_UI_MESSAGE: placeholder
  PODINFO_UI_COLOR: white
"""

DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: podinfo
spec:
  replicas: 1
  template:
    spec:
      containers:
        - name: podinfo
          image: ghcr.io/stefanprodan/podinfo:6.2.0
          imagePullPolicy: IfNotPresent
"""

CONFIG_DATA = {
    "apiVersion": "config.bundleforge.io/v1alpha1",
    "kind": "ConfigData",
    "configuration": {
        "defaults": {"color": "red", "message": "Hello, world!"},
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "color": {"type": "string"},
                "message": {"type": "string"},
            },
        },
        "rules": [
            {"value": "(( message ))", "file": "configmap.yaml", "path": "data.PODINFO_UI_MESSAGE"},
            {"value": "(( color ))", "file": "configmap.yaml", "path": "data.PODINFO_UI_COLOR"},
        ],
    },
    "localization": [
        {
            "file": "deploy.yaml",
            "resource": {"name": "image"},
            "image": "spec.template.spec.containers[0].image",
        }
    ],
}


def config_yaml(document: dict[str, Any] | None = None) -> bytes:
    return yaml.safe_dump(document or CONFIG_DATA, sort_keys=False).encode("utf-8")


@pytest.fixture
def component_version(components: FakeComponentFetcher) -> ComponentVersion:
    """A component version ``podinfo`` with manifests, config and image resources."""
    cv = components.add_version(
        ComponentVersion(
            name="podinfo",
            namespace="default",
            component="ocm.software/podinfo",
            reconciled_version="6.2.0",
            component_descriptor=ComponentReference(
                name="ocm.software/podinfo",
                component_name="ocm.software/podinfo",
                version="6.2.0",
            ),
        )
    )
    components.add_descriptor(
        ComponentDescriptor.model_validate(
            {
                "name": "ocm.software/podinfo",
                "version": "6.2.0",
                "provider": "ocm.software",
                "resources": [
                    {"name": "manifests", "version": "1.0.0", "type": "dir", "access": {"type": "localBlob"}},
                    {"name": "config", "version": "1.0.0", "type": "configdata", "access": {"type": "localBlob"}},
                    {
                        "name": "image",
                        "version": "6.2.0",
                        "type": "ociImage",
                        "access": {
                            "type": "ociArtifact",
                            "imageReference": "ghcr.io/stefanprodan/podinfo:6.2.0",
                        },
                    },
                ],
            }
        )
    )
    components.add_resource(
        "podinfo",
        "manifests",
        build_tar({"configmap.yaml": CONFIGMAP, "deploy.yaml": DEPLOYMENT}, compress=True),
    )
    components.add_resource("podinfo", "config", config_yaml())
    return cv
