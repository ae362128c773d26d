"""End-to-end tests for MutationPipeline against in-memory collaborators.

Each test drives one (or a chain of) mutations through resolve, transform,
archive and push, then inspects the cached result the way a downstream
consumer would: fetch by tag, read the archive.
"""

from __future__ import annotations

import copy
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
import yaml

from bundleforge.core.errors import (
    CacheWriteError,
    ConfigurationError,
    NotAnArchiveError,
    ResourceNotFoundError,
    RuleTargetNotFoundError,
    StageFailedError,
    UnresolvedNodesError,
)
from bundleforge.models.components import ComponentDescriptor, ComponentReference
from bundleforge.models.identity import Identity
from bundleforge.models.references import (
    MutationObject,
    MutationSpec,
    ObjectReference,
    ResourceRef,
)
from bundleforge.models.snapshot import SourceArtifact
from bundleforge.models.stages import MutationStage

from conftest import CONFIG_DATA, DEPLOYMENT, build_tar, config_yaml, read_tar

PATCH = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: podinfo
spec:
  replicas: 2
  template:
    spec:
      containers:
        - name: podinfo
          imagePullPolicy: Always
        - name: sidecar
          image: busybox:1.36
"""


def _resource(name: str, version: str = "1.0.0") -> ObjectReference:
    return ObjectReference(
        kind="ComponentVersion",
        name="podinfo",
        resource_ref=ResourceRef(name=name, version=version),
    )


def _cached_files(cache, result) -> dict[str, str]:
    with cache.fetch_data_by_identity(result.identity, result.tag) as blob:
        return read_tar(blob.read())


def _stages(result) -> list[MutationStage]:
    return [t.to_stage for t in result.status.transitions]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfigure:
    def test_values_land_in_configmap(self, pipeline, cache, component_version):
        spec = MutationSpec(
            source_ref=_resource("manifests"),
            config_ref=_resource("config"),
            values={"message": "this is a new message", "color": "bittersweet"},
        )

        result = pipeline.mutate(spec, name="podinfo-config", generation=3)

        configmap = yaml.safe_load(_cached_files(cache, result)["configmap.yaml"])
        assert configmap["data"] == {
            "PODINFO_UI_MESSAGE": "this is a new message",
            "PODINFO_UI_COLOR": "bittersweet",
        }
        assert result.tag == "3"
        assert result.identity == Identity(
            component_name="ocm.software/podinfo",
            component_version="6.2.0",
            resource_name="config",
            resource_version="1.0.0",
        )
        assert len(cache.pushes) == 1
        assert result.status.snapshot.name == "podinfo-config"
        assert result.status.snapshot.ready
        assert result.status.last_applied_digest == result.digest
        assert result.status.latest_source_version == "6.2.0"
        assert result.status.latest_config_version == "6.2.0"
        assert _stages(result) == [
            MutationStage.RESOLVE_SOURCE,
            MutationStage.RESOLVE_CONFIG,
            MutationStage.TRANSFORM,
            MutationStage.ARCHIVE,
            MutationStage.CACHE_PUSH,
            MutationStage.DONE,
        ]

    def test_defaults_apply_without_overrides(self, pipeline, cache, component_version):
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=_resource("config"), values={}
        )
        configmap = yaml.safe_load(
            _cached_files(cache, pipeline.mutate(spec))["configmap.yaml"]
        )
        assert configmap["data"]["PODINFO_UI_MESSAGE"] == "Hello, world!"
        assert configmap["data"]["PODINFO_UI_COLOR"] == "red"

    def test_same_input_same_digest(self, pipeline, component_version):
        spec = MutationSpec(
            source_ref=_resource("manifests"),
            config_ref=_resource("config"),
            values={"color": "blue"},
        )
        assert pipeline.mutate(spec, generation=1).digest == pipeline.mutate(spec, generation=2).digest

    def test_unresolved_expression_fails_without_push(
        self, pipeline, cache, components, component_version
    ):
        document = copy.deepcopy(CONFIG_DATA)
        document["configuration"]["rules"].append(
            {"value": "(( nope ))", "file": "configmap.yaml", "path": "data.BROKEN"}
        )
        components.add_resource("podinfo", "config", config_yaml(document))
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=_resource("config"), values={}
        )

        with pytest.raises(StageFailedError) as excinfo:
            pipeline.mutate(spec)

        assert excinfo.value.stage == "transform"
        assert isinstance(excinfo.value.cause, UnresolvedNodesError)
        assert "(( nope ))" in str(excinfo.value)
        assert cache.pushes == []

    def test_missing_rule_file_fails_without_push(
        self, pipeline, cache, components, component_version
    ):
        document = copy.deepcopy(CONFIG_DATA)
        document["configuration"]["rules"][0]["file"] = "absent.yaml"
        components.add_resource("podinfo", "config", config_yaml(document))
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=_resource("config"), values={}
        )

        with pytest.raises(StageFailedError) as excinfo:
            pipeline.mutate(spec)

        assert isinstance(excinfo.value.cause, RuleTargetNotFoundError)
        assert excinfo.value.retryable
        assert cache.pushes == []

    def test_plain_text_source_is_rejected(self, pipeline, cache, components, component_version):
        components.add_resource("podinfo", "manifests", b"just: yaml\n")
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=_resource("config"), values={}
        )

        with pytest.raises(StageFailedError) as excinfo:
            pipeline.mutate(spec)

        assert isinstance(excinfo.value.cause, NotAnArchiveError)
        assert "expected tarred directory content" in str(excinfo.value)
        assert cache.pushes == []


# ---------------------------------------------------------------------------
# Localization
# ---------------------------------------------------------------------------


class TestLocalize:
    def _localization_config(self, components) -> None:
        document = copy.deepcopy(CONFIG_DATA)
        document["localization"] = [
            {
                "file": "deploy.yaml",
                "resource": {"name": "image"},
                "image": "spec.template.spec.containers[0].image",
                "registry": "metadata.annotations.registry",
                "tag": "metadata.labels.version",
            }
        ]
        components.add_resource("podinfo", "config", config_yaml(document))

    def test_image_fields_from_descriptor(self, pipeline, cache, components, component_version):
        self._localization_config(components)
        spec = MutationSpec(source_ref=_resource("manifests"), config_ref=_resource("config"))

        result = pipeline.mutate(spec, name="podinfo-localized")

        deploy = yaml.safe_load(_cached_files(cache, result)["deploy.yaml"])
        assert deploy["spec"]["template"]["spec"]["containers"][0]["image"] == (
            "ghcr.io/stefanprodan/podinfo:6.2.0"
        )
        assert deploy["metadata"]["annotations"] == {"registry": "ghcr.io"}
        assert deploy["metadata"]["labels"] == {"version": "6.2.0"}

    def test_configure_consumes_localized_snapshot(
        self, pipeline, cache, objects, components, component_version
    ):
        self._localization_config(components)
        localized = pipeline.mutate(
            MutationSpec(source_ref=_resource("manifests"), config_ref=_resource("config")),
            name="podinfo-localized",
        )
        objects.publish("Localization", "podinfo", localized.status.snapshot)

        configured = pipeline.mutate(
            MutationSpec(
                source_ref=ObjectReference(kind="Localization", name="podinfo"),
                config_ref=_resource("config"),
                values={"message": "chained"},
            ),
            name="podinfo-configured",
        )

        files = _cached_files(cache, configured)
        assert yaml.safe_load(files["configmap.yaml"])["data"]["PODINFO_UI_MESSAGE"] == "chained"
        assert yaml.safe_load(files["deploy.yaml"])["metadata"]["labels"] == {"version": "6.2.0"}
        assert configured.status.latest_source_version == "6.2.0"
        assert len(cache.pushes) == 2

    def _with_backend_reference(self, components, component_version) -> None:
        root = component_version.component_descriptor.model_copy(
            update={
                "references": [
                    ComponentReference(
                        name="backend",
                        component_name="ocm.software/backend",
                        version="1.0.0",
                    )
                ]
            }
        )
        components.add_version(component_version.model_copy(update={"component_descriptor": root}))
        components.add_descriptor(
            ComponentDescriptor(name="ocm.software/backend", version="1.0.0", provider="ocm.software")
        )

    def _referenced_config(self, path: str) -> ObjectReference:
        return ObjectReference(
            kind="ComponentVersion",
            name="podinfo",
            resource_ref=ResourceRef(name="config", version="1.0.0", reference_path=[{"name": path}]),
        )

    def test_reference_path_resolves_images_from_root(
        self, pipeline, cache, components, component_version
    ):
        self._localization_config(components)
        self._with_backend_reference(components, component_version)
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=self._referenced_config("backend")
        )

        result = pipeline.mutate(spec, name="podinfo-localized")

        deploy = yaml.safe_load(_cached_files(cache, result)["deploy.yaml"])
        assert deploy["spec"]["template"]["spec"]["containers"][0]["image"] == (
            "ghcr.io/stefanprodan/podinfo:6.2.0"
        )
        assert deploy["metadata"]["labels"] == {"version": "6.2.0"}

    def test_unknown_reference_path_fails(self, pipeline, cache, components, component_version):
        self._localization_config(components)
        self._with_backend_reference(components, component_version)
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=self._referenced_config("frontend")
        )

        with pytest.raises(StageFailedError) as excinfo:
            pipeline.mutate(spec)

        assert isinstance(excinfo.value.cause, ResourceNotFoundError)
        assert "frontend" in str(excinfo.value.cause)
        assert cache.pushes == []


# ---------------------------------------------------------------------------
# Strategic merge
# ---------------------------------------------------------------------------


class TestPatch:
    def test_git_source_patch(self, pipeline, cache, sources, component_version, tmp_path: Path):
        archive = tmp_path / "patches.tar.gz"
        archive.write_bytes(build_tar({"patches/deploy.yaml": PATCH}, compress=True))
        sources.add("GitRepository", "podinfo-patches", SourceArtifact(url=str(archive), revision="main@sha1:9c1b"))
        spec = MutationSpec.model_validate(
            {
                "sourceRef": _resource("manifests").model_dump(by_alias=True),
                "patchStrategicMerge": {
                    "source": {
                        "sourceRef": {"kind": "GitRepository", "name": "podinfo-patches"},
                        "path": "patches/deploy.yaml",
                    },
                    "target": {"path": "deploy.yaml"},
                },
            }
        )

        result = pipeline.mutate(spec, name="podinfo-patched")

        deploy = yaml.safe_load(_cached_files(cache, result)["deploy.yaml"])
        containers = deploy["spec"]["template"]["spec"]["containers"]
        assert deploy["spec"]["replicas"] == 2
        assert len(containers) == 2
        assert containers[0]["imagePullPolicy"] == "Always"
        assert result.identity.component_name == "podinfo-patches"
        assert result.status.latest_patch_source_version == "main@sha1:9c1b"
        assert MutationStage.RESOLVE_CONFIG not in _stages(result)

    def test_unsupported_source_kind(self, pipeline, cache, component_version):
        spec = MutationSpec.model_validate(
            {
                "sourceRef": _resource("manifests").model_dump(by_alias=True),
                "patchStrategicMerge": {
                    "source": {"sourceRef": {"kind": "Bucket", "name": "b"}, "path": "p.yaml"},
                    "target": {"path": "deploy.yaml"},
                },
            }
        )
        with pytest.raises(StageFailedError, match="kind 'Bucket' not supported"):
            pipeline.mutate(spec)
        assert cache.pushes == []


# ---------------------------------------------------------------------------
# Pass-through and boundary
# ---------------------------------------------------------------------------


class TestPassThrough:
    def test_source_bytes_pushed_unchanged(self, pipeline, cache, component_version):
        result = pipeline.mutate(MutationSpec(source_ref=_resource("manifests")))

        files = _cached_files(cache, result)
        assert yaml.safe_load(files["deploy.yaml"]) == yaml.safe_load(DEPLOYMENT)
        assert result.identity.resource_name == "manifests"
        assert MutationStage.RESOLVE_CONFIG not in _stages(result)


class TestBoundary:
    def test_object_without_source_fails_before_io(self, pipeline, cache, components):
        request = MutationObject(name="empty", componentVersionRef={"name": "podinfo"})
        with pytest.raises(ConfigurationError, match="both are empty"):
            pipeline.mutate(request)
        assert components.resource_calls == 0
        assert cache.pushes == []

    def test_object_resource_refs_resolve_against_component_version(
        self, pipeline, cache, component_version
    ):
        request = MutationObject.model_validate(
            {
                "name": "podinfo-config",
                "namespace": "default",
                "generation": 7,
                "componentVersionRef": {"name": "podinfo"},
                "source": {"resourceRef": {"name": "manifests", "version": "1.0.0"}},
                "configRef": {"resourceRef": {"name": "config", "version": "1.0.0"}},
                "values": {"color": "teal"},
            }
        )

        result = pipeline.mutate(request)

        assert result.tag == "7"
        assert result.status.snapshot.name == "podinfo-config"
        configmap = yaml.safe_load(_cached_files(cache, result)["configmap.yaml"])
        assert configmap["data"]["PODINFO_UI_COLOR"] == "teal"

    def test_push_failure_surfaces_as_cache_push_stage(
        self, failing_pipeline, failing_cache, component_version
    ):
        with pytest.raises(StageFailedError) as excinfo:
            failing_pipeline.mutate(MutationSpec(source_ref=_resource("manifests")))
        assert excinfo.value.stage == "cache_push"
        assert isinstance(excinfo.value.cause, CacheWriteError)
        assert excinfo.value.retryable

    def test_working_tree_removed_on_success_and_failure(
        self, pipeline, forge_settings, components, component_version
    ):
        spec = MutationSpec(
            source_ref=_resource("manifests"), config_ref=_resource("config"), values={}
        )
        pipeline.mutate(spec)
        assert list(forge_settings.workdir_root.iterdir()) == []

        components.add_resource("podinfo", "manifests", b"plain text, no archive")
        with pytest.raises(StageFailedError):
            pipeline.mutate(spec)
        assert list(forge_settings.workdir_root.iterdir()) == []


class TestConcurrency:
    def test_parallel_mutations_do_not_interfere(self, pipeline, cache, component_version):
        colors = [f"color-{i}" for i in range(8)]

        def run(index: int):
            spec = MutationSpec(
                source_ref=_resource("manifests"),
                config_ref=_resource("config"),
                values={"color": colors[index]},
            )
            return pipeline.mutate(spec, name=f"m-{index}", generation=index + 1)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run, range(len(colors))))

        for index, result in enumerate(results):
            configmap = yaml.safe_load(_cached_files(cache, result)["configmap.yaml"])
            assert configmap["data"]["PODINFO_UI_COLOR"] == colors[index]
        assert len({result.digest for result in results}) == len(colors)
