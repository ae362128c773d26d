"""Substitution rule compiler.

Turns a ConfigData document into an ordered ``RuleSet``:

* **Configuration**: override values are merged into the declared
  defaults, the rules' expressions are cascaded against the merged
  template, and the resolved rules come back with their ``subst-<i>`` ids.
* **Localization**: each entry either evaluates a custom mapping against
  the component document, or resolves a component resource's access
  specification to an image reference and emits one rule per requested
  target (``registry``, ``repository``, ``image``, ``tag``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import yaml
from pydantic import ValidationError

from bundleforge.core.errors import (
    DocumentParseError,
    InputFormatError,
    ResourceNotFoundError,
    UnknownValuesError,
    UnsupportedAccessError,
)
from bundleforge.core.evaluator import (
    CascadeEvaluator,
    CascadeMappingEvaluator,
    DocumentEvaluator,
    MappingEvaluator,
)
from bundleforge.core.image_ref import ImageReference, parse_reference
from bundleforge.core.schema import JsonSchemaValidator, SchemaValidator
from bundleforge.models.access import (
    AccessType,
    LocalBlobAccess,
    OCIArtifactAccess,
    OCIBlobAccess,
    access_type,
)
from bundleforge.models.components import ComponentDescriptor
from bundleforge.models.configdata import ConfigData, Configuration, LocalizationRule
from bundleforge.models.substitutions import RuleSet, Substitution

logger = logging.getLogger(__name__)

ADJUSTMENTS_KEY = "adjustments"

DescriptorLookup = Callable[[str, str, str], ComponentDescriptor | None]


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------


def parse_config_data(data: bytes | str) -> ConfigData:
    """Parse and validate a ConfigData YAML document."""
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise DocumentParseError(f"failed to unmarshal content: {exc}") from exc
    if raw is None:
        return ConfigData()
    if not isinstance(raw, dict):
        raise DocumentParseError(
            f"failed to unmarshal content: expected a mapping, got {type(raw).__name__}"
        )
    try:
        return ConfigData.model_validate(raw)
    except ValidationError as exc:
        raise DocumentParseError(f"failed to unmarshal content: {exc}") from exc


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def merge_values(
    defaults: dict[str, Any],
    values: dict[str, Any],
    *,
    reject_unknown: bool = False,
) -> dict[str, Any]:
    """Overwrite top-level keys of ``defaults`` that ``values`` also declares.

    Keys of ``values`` that ``defaults`` does not declare are dropped with a
    warning, or rejected when ``reject_unknown`` is set.
    """
    unknown = sorted(key for key in values if key not in defaults)
    if unknown:
        if reject_unknown:
            raise UnknownValuesError(
                f"override values not declared in defaults: {', '.join(unknown)}"
            )
        logger.warning(
            "Dropping override values not declared in defaults: %s", ", ".join(unknown)
        )
    merged = dict(defaults)
    for key, value in values.items():
        if key in defaults:
            merged[key] = value
    return merged


def compile_configuration(
    configuration: Configuration,
    values: dict[str, Any] | None,
    *,
    evaluator: DocumentEvaluator | None = None,
    validator: SchemaValidator | None = None,
    reject_unknown: bool = False,
) -> RuleSet:
    """Resolve the configuration rules against defaults merged with ``values``.

    Raises
    ------
    SchemaValidationError
        ``values`` violate the declared schema.
    UnresolvedNodesError
        A rule expression references a name the template does not define.
    """
    evaluator = evaluator or CascadeEvaluator()
    validator = validator or JsonSchemaValidator()
    overrides = values if values is not None else {}
    if not isinstance(overrides, dict):
        raise DocumentParseError(
            f"cannot unmarshal values: expected a mapping, got {type(overrides).__name__}"
        )

    adjustments = RuleSet()
    for index, rule in enumerate(configuration.rules):
        adjustments.add(f"subst-{index}", rule.file, rule.path, rule.value)

    if configuration.schema_:
        validator.validate(overrides, configuration.schema_)

    template = merge_values(
        configuration.defaults, overrides, reject_unknown=reject_unknown
    )
    template[ADJUSTMENTS_KEY] = [
        rule.model_dump(mode="json", by_alias=True) for rule in adjustments
    ]

    result = evaluator.cascade(template, template_name=ADJUSTMENTS_KEY)
    resolved = [Substitution.model_validate(item) for item in result[ADJUSTMENTS_KEY]]
    logger.debug("Compiled %d configuration rules", len(resolved))
    return RuleSet(resolved)


# ---------------------------------------------------------------------------
# Component document
# ---------------------------------------------------------------------------


def build_component_document(
    lookup: DescriptorLookup,
    namespace: str,
    descriptor: ComponentDescriptor,
    *,
    max_depth: int = 16,
) -> dict[str, Any]:
    """Compose ``{"component": ...}`` with every reference expanded in place.

    Each entry of ``component.references`` gains a ``component`` key holding
    the referenced descriptor, recursively. A component that already appears
    on the path from the root, or a reference below ``max_depth``, is left
    unexpanded.
    """
    root = (descriptor.name, descriptor.version)
    return {
        "component": _expand(lookup, namespace, descriptor, frozenset({root}), 0, max_depth)
    }


def _expand(
    lookup: DescriptorLookup,
    namespace: str,
    descriptor: ComponentDescriptor,
    ancestors: frozenset[tuple[str, str]],
    depth: int,
    max_depth: int,
) -> dict[str, Any]:
    document = descriptor.to_document()
    references: list[dict[str, Any]] = []
    for reference in document.get("references", []):
        key = (reference["componentName"], reference["version"])
        if key in ancestors:
            logger.warning(
                "Component reference cycle at %s:%s, leaving it unexpanded", *key
            )
            references.append(reference)
            continue
        if depth >= max_depth:
            logger.warning(
                "Component reference depth %d reached at %s:%s, leaving it unexpanded",
                max_depth,
                *key,
            )
            references.append(reference)
            continue
        child = lookup(namespace, *key)
        if child is None:
            raise ResourceNotFoundError(
                f"component descriptor not found for reference "
                f"'{reference['name']}' ({key[0]}:{key[1]})"
            )
        expanded = _expand(
            lookup, namespace, child, ancestors | {key}, depth + 1, max_depth
        )
        references.append({**reference, "component": expanded})
    return {**document, "references": references}


# ---------------------------------------------------------------------------
# Localization
# ---------------------------------------------------------------------------

# Each resolver returns (reference, None) for a terminal variant or
# (None, aliased access spec) to follow a global alias.
_AccessStep = tuple[str | None, dict[str, Any] | None]


def _from_oci_artifact(spec: dict[str, Any]) -> _AccessStep:
    return OCIArtifactAccess.model_validate(spec).image_reference, None


def _from_oci_blob(spec: dict[str, Any]) -> _AccessStep:
    access = OCIBlobAccess.model_validate(spec)
    return f"{access.ref}@{access.digest}", None


def _from_local_blob(spec: dict[str, Any]) -> _AccessStep:
    access = LocalBlobAccess.model_validate(spec)
    if not access.global_access:
        raise UnsupportedAccessError("cannot determine image digest")
    return None, access.global_access


def _unsupported(spec: dict[str, Any]) -> _AccessStep:
    raise UnsupportedAccessError("cannot determine access spec type")


_ACCESS_RESOLVERS: dict[AccessType, Callable[[dict[str, Any]], _AccessStep]] = {
    AccessType.OCI_ARTIFACT: _from_oci_artifact,
    AccessType.OCI_BLOB: _from_oci_blob,
    AccessType.LOCAL_BLOB: _from_local_blob,
    AccessType.UNSUPPORTED: _unsupported,
}


def resolve_access_reference(access: dict[str, Any], *, max_hops: int = 8) -> str:
    """Reduce an access specification to a single image reference string."""
    spec: dict[str, Any] = access
    for _ in range(max_hops + 1):
        try:
            reference, alias = _ACCESS_RESOLVERS[access_type(spec)](spec)
        except ValidationError as exc:
            raise DocumentParseError(f"invalid access specification: {exc}") from exc
        if reference is not None:
            return reference
        assert alias is not None
        spec = alias
    raise UnsupportedAccessError(
        f"global access alias chain longer than {max_hops} hops"
    )


def _target_value(kind: str, image: ImageReference) -> str:
    if kind == "registry":
        return image.registry
    if kind == "repository":
        return image.repository
    if kind == "image":
        return image.name()
    return image.identifier


def compile_localization(
    entries: list[LocalizationRule],
    descriptor: ComponentDescriptor,
    component_document: dict[str, Any] | Callable[[], dict[str, Any]],
    *,
    mapping_evaluator: MappingEvaluator | None = None,
    max_alias_hops: int = 8,
) -> RuleSet:
    """Compile localization entries in document order.

    ``descriptor`` provides the resources whose access specifications are
    localized. ``component_document`` is the mapping scope; it may be given
    as a callable so it is only built when an entry needs it.
    """
    mapping_evaluator = mapping_evaluator or CascadeMappingEvaluator()
    scope: dict[str, Any] | None = None
    rules = RuleSet()

    for entry in entries:
        if entry.mapping is not None:
            if scope is None:
                scope = (
                    component_document()
                    if callable(component_document)
                    else component_document
                )
            value = mapping_evaluator.evaluate(entry.mapping.transform, scope)
            rules.add("custom", entry.file, entry.mapping.path, value)
            continue

        if entry.resource is None:
            raise DocumentParseError(
                f"localization entry for file '{entry.file}' declares neither "
                "a resource nor a mapping"
            )
        resource = descriptor.get_resource(entry.resource.name)
        reference = resolve_access_reference(resource.access, max_hops=max_alias_hops)
        try:
            image = parse_reference(reference)
        except InputFormatError as exc:
            raise InputFormatError(f"failed to parse access reference: {exc}") from exc

        for kind, path in entry.targets():
            rules.add(kind, entry.file, path, _target_value(kind, image))

    logger.debug("Compiled %d localization rules", len(rules))
    return rules
