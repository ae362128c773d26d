"""Strategic merge of manifest documents.

Mappings merge recursively and patch scalars override base scalars. A
``null`` patch value deletes the key. Sequences listed in ``MERGE_KEYS``
merge element-wise on their merge key (``containers`` by ``name``, ``ports``
by ``containerPort``, ...); any other sequence is appended to. Two
directives are understood inside mappings::

    $patch: replace   # use the patch mapping as-is
    $patch: delete    # remove the mapping (or the keyed list element)
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from bundleforge.core.errors import MergeTypeMismatchError, PatchTargetNotFoundError

logger = logging.getLogger(__name__)

DIRECTIVE = "$patch"

MERGE_KEYS: dict[str, str] = {
    "containers": "name",
    "initContainers": "name",
    "ephemeralContainers": "name",
    "volumes": "name",
    "env": "name",
    "imagePullSecrets": "name",
    "ports": "containerPort",
    "volumeMounts": "mountPath",
    "volumeDevices": "devicePath",
    "hostAliases": "ip",
    "topologySpreadConstraints": "topologyKey",
}


class _Deleted:
    pass


_DELETED = _Deleted()


def _kind_of(value: Any) -> str:
    if isinstance(value, dict):
        return "mapping"
    if isinstance(value, list):
        return "sequence"
    return "scalar"


def _strip(value: Any) -> Any:
    """Copy ``value`` with merge directives removed."""
    if isinstance(value, dict):
        return {k: _strip(v) for k, v in value.items() if k != DIRECTIVE}
    if isinstance(value, list):
        return [_strip(item) for item in value]
    return copy.deepcopy(value)


def _mismatch(base: Any, patch: Any, location: str) -> MergeTypeMismatchError:
    return MergeTypeMismatchError(
        f"cannot merge {_kind_of(patch)} into {_kind_of(base)} at "
        f"'{location or '<root>'}'"
    )


def _merge_mapping(base: Any, patch: dict[str, Any], location: str) -> Any:
    directive = patch.get(DIRECTIVE)
    if directive == "delete":
        return _DELETED
    if directive == "replace" or base is None:
        return _strip(patch)
    if not isinstance(base, dict):
        raise _mismatch(base, patch, location)

    result = copy.deepcopy(base)
    for key, value in patch.items():
        if key == DIRECTIVE:
            continue
        child = f"{location}.{key}" if location else str(key)
        if value is None:
            result.pop(key, None)
        elif key in result:
            merged = _merge(result[key], value, child, field=str(key))
            if merged is _DELETED:
                result.pop(key)
            else:
                result[key] = merged
        else:
            stripped = _merge(None, value, child, field=str(key))
            if stripped is not _DELETED:
                result[key] = stripped
    return result


def _keyed(items: list[Any], merge_key: str) -> bool:
    return all(isinstance(item, dict) and merge_key in item for item in items)


def _merge_sequence(base: Any, patch: list[Any], location: str, field: str) -> Any:
    if base is None:
        return [_strip(item) for item in patch if not _is_delete(item)]
    if not isinstance(base, list):
        raise _mismatch(base, patch, location)

    merge_key = MERGE_KEYS.get(field)
    if merge_key is None or not _keyed(patch, merge_key) or not _keyed(base, merge_key):
        return copy.deepcopy(base) + [_strip(item) for item in patch]

    result = [copy.deepcopy(item) for item in base]
    for item in patch:
        wanted = item[merge_key]
        index = next(
            (i for i, existing in enumerate(result) if existing[merge_key] == wanted),
            None,
        )
        element = f"{location}[{merge_key}={wanted}]"
        if _is_delete(item):
            if index is not None:
                result.pop(index)
            continue
        if index is None:
            result.append(_strip(item))
        else:
            result[index] = _merge(result[index], item, element)
    return result


def _is_delete(item: Any) -> bool:
    return isinstance(item, dict) and item.get(DIRECTIVE) == "delete"


def _merge(base: Any, patch: Any, location: str, field: str = "") -> Any:
    if isinstance(patch, dict):
        return _merge_mapping(base, patch, location)
    if isinstance(patch, list):
        return _merge_sequence(base, patch, location, field)
    if isinstance(base, (dict, list)):
        raise _mismatch(base, patch, location)
    return copy.deepcopy(patch)


def strategic_merge(base: Any, patch: Any) -> Any:
    """Return ``base`` with ``patch`` merged in; neither input is modified."""
    merged = _merge(base, patch, "")
    if merged is _DELETED:
        return {}
    return merged


# ---------------------------------------------------------------------------
# Multi-document
# ---------------------------------------------------------------------------


def _document_key(document: Any) -> tuple[str, str, str] | None:
    if not isinstance(document, dict) or "kind" not in document:
        return None
    metadata = document.get("metadata") or {}
    return (
        str(document["kind"]),
        str(metadata.get("name", "")),
        str(metadata.get("namespace", "")),
    )


def _matches(target: Any, patch_key: tuple[str, str, str]) -> bool:
    target_key = _document_key(target)
    if target_key is None:
        return False
    kind, name, namespace = patch_key
    if target_key[0] != kind or target_key[1] != name:
        return False
    return not (namespace and target_key[2]) or target_key[2] == namespace


def merge_documents(targets: list[Any], patches: list[Any]) -> list[Any]:
    """Merge each patch document into its matching target document.

    Patch documents declaring a ``kind`` are matched on ``kind``,
    ``metadata.name`` and, when both sides declare one, ``metadata.namespace``.
    A patch without a ``kind`` merges into a lone target document.
    """
    result = list(targets)
    for patch in patches:
        key = _document_key(patch)
        if key is None:
            if len(result) != 1:
                raise PatchTargetNotFoundError(
                    f"patch document without kind needs exactly one target document, "
                    f"found {len(result)}"
                )
            result[0] = strategic_merge(result[0], patch)
            continue
        for index, target in enumerate(result):
            if _matches(target, key):
                result[index] = strategic_merge(target, patch)
                logger.debug("Merged patch into %s/%s", key[0], key[1])
                break
        else:
            raise PatchTargetNotFoundError(
                f"no target document matches {key[0]} '{key[1]}'"
            )
    return result
