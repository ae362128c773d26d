"""Mutation pipeline: the central coordinator for one mutation.

``MutationPipeline.mutate`` runs the stages strictly in order::

    resolve_source -> [resolve_config] -> transform -> archive -> cache_push -> done

The transform is exactly one of configure, localize, patch, or
pass-through, selected by which fields of the MutationSpec are set. Any
error escaping a stage moves the invocation to ``failed`` and is re-raised
as ``StageFailedError`` naming the stage. The working tree lives in a
``with`` block so it is removed on every exit path, and the cache sees at
most one push per invocation.

The pipeline keeps no state between invocations; concurrent calls share
only the cache.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from bundleforge.config import ForgeSettings
from bundleforge.config import settings as default_settings
from bundleforge.core.cache import Cache
from bundleforge.core.compiler import (
    build_component_document,
    compile_configuration,
    compile_localization,
    parse_config_data,
)
from bundleforge.core.errors import (
    ConfigurationError,
    InputFormatError,
    NotAnArchiveError,
    StageFailedError,
)
from bundleforge.core.evaluator import (
    CascadeEvaluator,
    CascadeMappingEvaluator,
    DocumentEvaluator,
    MappingEvaluator,
)
from bundleforge.core.patch import PatchEngine
from bundleforge.core.resolver import DataResolver
from bundleforge.core.schema import JsonSchemaValidator, SchemaValidator
from bundleforge.core.stage_machine import StageMachine
from bundleforge.core.substitute import FilesystemMutationEngine
from bundleforge.core.workspace import WorkingTree, archive_directory, is_tar
from bundleforge.models.identity import Identity
from bundleforge.models.references import MutationObject, MutationSpec
from bundleforge.models.snapshot import MutationResult, MutationStatus, Snapshot
from bundleforge.models.stages import MutationStage, TransformKind
from bundleforge.models.substitutions import RuleSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Resolved:
    data: bytes
    identity: Identity


def transform_kind(spec: MutationSpec) -> TransformKind:
    if spec.is_patch:
        return TransformKind.PATCH
    if spec.is_configuration:
        return TransformKind.CONFIGURE
    if spec.is_localization:
        return TransformKind.LOCALIZE
    return TransformKind.PASS_THROUGH


class MutationPipeline:
    """Runs mutations against a shared cache.

    Parameters
    ----------
    cache:
        Destination of the result (and source of snapshot inputs through
        ``resolver``).
    resolver:
        Resolves object references to bytes and identities.
    patch_engine:
        Required only for strategic merge mutations.
    settings:
        Bounds, working-tree location and archive compression. Defaults to
        the environment-driven module settings.
    """

    def __init__(
        self,
        cache: Cache,
        resolver: DataResolver,
        *,
        patch_engine: PatchEngine | None = None,
        evaluator: DocumentEvaluator | None = None,
        mapping_evaluator: MappingEvaluator | None = None,
        validator: SchemaValidator | None = None,
        engine: FilesystemMutationEngine | None = None,
        settings: ForgeSettings | None = None,
    ) -> None:
        self._cache = cache
        self._resolver = resolver
        self._patch_engine = patch_engine
        self._evaluator = evaluator or CascadeEvaluator()
        self._mapping_evaluator = mapping_evaluator or CascadeMappingEvaluator(
            self._evaluator
        )
        self._validator = validator or JsonSchemaValidator()
        self._engine = engine or FilesystemMutationEngine()
        self._settings = settings or default_settings

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def mutate(
        self,
        request: MutationObject | MutationSpec,
        *,
        name: str = "mutation",
        namespace: str = "default",
        generation: int = 1,
    ) -> MutationResult:
        """Run one mutation and return the pushed identity, digest and status.

        A ``MutationObject`` supplies its own name, namespace and generation;
        the keyword arguments apply to a bare ``MutationSpec``.

        Raises
        ------
        ConfigurationError
            The request names no source or combines exclusive transforms.
            Raised before any I/O.
        StageFailedError
            A stage failed; ``cause`` holds the original error.
        """
        if isinstance(request, MutationObject):
            spec = request.to_mutation_spec()
            name, namespace, generation = (
                request.name,
                request.namespace,
                request.generation,
            )
        else:
            spec = request

        tag = str(generation)
        status = MutationStatus()
        machine = StageMachine(status, label=f"{namespace}/{name}")
        kind = transform_kind(spec)

        with self._stage(machine, MutationStage.RESOLVE_SOURCE):
            source = self._resolve_source(spec, status)

        config: _Resolved | None = None
        if spec.config_ref is not None:
            with self._stage(machine, MutationStage.RESOLVE_CONFIG):
                config = self._resolve_config(spec, status)

        with WorkingTree.create(self._settings.workdir_root) as tree:
            with self._stage(machine, MutationStage.TRANSFORM, kind.value):
                identity = self._transform(kind, spec, source, config, tree, status)

            with self._stage(machine, MutationStage.ARCHIVE):
                if kind == TransformKind.PASS_THROUGH:
                    payload = source.data
                else:
                    payload = archive_directory(
                        tree.content, self._settings.archive_compression
                    )

            with self._stage(machine, MutationStage.CACHE_PUSH):
                digest = self._cache.push_data(payload, identity, tag)

        snapshot = Snapshot(
            name=name,
            namespace=namespace,
            identity=identity,
            digest=digest,
            tag=tag,
            ready=True,
        )
        status.last_applied_digest = digest
        status.snapshot = snapshot
        machine.transition(MutationStage.DONE, digest)
        logger.info(
            "Mutation %s/%s pushed %s under %s:%s",
            namespace,
            name,
            digest,
            identity.storage_name(),
            tag,
        )
        return MutationResult(identity=identity, digest=digest, tag=tag, status=status)

    @contextmanager
    def _stage(
        self, machine: StageMachine, stage: MutationStage, detail: str = ""
    ) -> Iterator[None]:
        machine.transition(stage, detail)
        try:
            yield
        except Exception as exc:
            machine.fail(str(exc))
            raise StageFailedError(stage.value, exc) from exc

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _resolve_source(self, spec: MutationSpec, status: MutationStatus) -> _Resolved:
        data = self._resolver.resolve(spec.source_ref)
        identity = self._resolver.resolve_identity(spec.source_ref)
        status.latest_source_version = identity.component_version
        if not data:
            raise InputFormatError("source resource data cannot be empty")
        return _Resolved(data, identity)

    def _resolve_config(self, spec: MutationSpec, status: MutationStatus) -> _Resolved:
        assert spec.config_ref is not None
        data = self._resolver.resolve(spec.config_ref)
        identity = self._resolver.resolve_identity(spec.config_ref)
        status.latest_config_version = identity.component_version
        return _Resolved(data, identity)

    def _transform(
        self,
        kind: TransformKind,
        spec: MutationSpec,
        source: _Resolved,
        config: _Resolved | None,
        tree: WorkingTree,
        status: MutationStatus,
    ) -> Identity:
        """Run the selected transform into ``tree`` and return the result identity."""
        if kind == TransformKind.PASS_THROUGH:
            return source.identity

        if kind == TransformKind.PATCH:
            return self._patch(spec, source, tree, status)

        assert config is not None
        if not is_tar(source.data):
            raise NotAnArchiveError()
        if kind == TransformKind.CONFIGURE:
            rules = self._configure_rules(spec, config)
        else:
            rules = self._localize_rules(spec, config)
        if not rules:
            logger.warning(
                "No rules generated from the config data; the snapshot will "
                "carry no modifications"
            )
        self._engine.apply(source.data, rules, tree)
        return config.identity

    def _configure_rules(self, spec: MutationSpec, config: _Resolved) -> RuleSet:
        document = parse_config_data(config.data)
        return compile_configuration(
            document.configuration,
            spec.values,
            evaluator=self._evaluator,
            validator=self._validator,
            reject_unknown=self._settings.reject_unknown_values,
        )

    def _localize_rules(self, spec: MutationSpec, config: _Resolved) -> RuleSet:
        assert spec.config_ref is not None
        document = parse_config_data(config.data)
        cv = self._resolver.component_version(spec.config_ref)
        # The reference path must resolve; resources always come from the root.
        node = self._resolver.component_reference(cv, spec.config_ref.resource_ref)
        self._resolver.component_descriptor(cv, node)
        root = self._resolver.component_descriptor(cv, cv.component_descriptor)

        def component_document() -> dict:
            return build_component_document(
                self._resolver.fetch_descriptor,
                cv.namespace,
                root,
                max_depth=self._settings.max_reference_depth,
            )

        return compile_localization(
            document.localization,
            root,
            component_document,
            mapping_evaluator=self._mapping_evaluator,
            max_alias_hops=self._settings.max_alias_hops,
        )

    def _patch(
        self,
        spec: MutationSpec,
        source: _Resolved,
        tree: WorkingTree,
        status: MutationStatus,
    ) -> Identity:
        assert spec.patch_strategic_merge is not None
        if self._patch_engine is None:
            raise ConfigurationError("strategic merge requested but no patch engine is configured")
        artifact = self._patch_engine.resolve_source(spec.patch_strategic_merge)
        status.latest_patch_source_version = artifact.revision
        outcome = self._patch_engine.apply_patch(
            source.data, spec.patch_strategic_merge, tree, artifact
        )
        return outcome.identity
