"""Filesystem mutation engine: applies substitution rules to a working tree."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from bundleforge.core.errors import (
    DocumentParseError,
    PathNotFoundError,
    RuleTargetNotFoundError,
)
from bundleforge.core.evaluator import split_path
from bundleforge.core.workspace import WorkingTree, extract_archive
from bundleforge.core.yamlio import dump_documents, load_documents
from bundleforge.models.substitutions import Substitution

logger = logging.getLogger(__name__)

_JSON_SUFFIXES = {".json"}


def _is_json(path: Path) -> bool:
    return path.suffix.lower() in _JSON_SUFFIXES


def load_document(path: Path) -> Any:
    """Read one YAML or JSON document; multi-document YAML is rejected."""
    text = path.read_text(encoding="utf-8")
    if _is_json(path):
        try:
            return json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise DocumentParseError(f"failed to parse {path.name}: {exc}") from exc
    documents = load_documents(text, path.name)
    if len(documents) > 1:
        raise DocumentParseError(
            f"{path.name} holds {len(documents)} documents; substitution needs exactly one"
        )
    return documents[0] if documents else {}


def dump_document(path: Path, document: Any) -> None:
    if _is_json(path):
        text = json.dumps(document, indent=2) + "\n"
    else:
        text = dump_documents([document])
    path.write_text(text, encoding="utf-8")


def _mapping_key(node: dict, segment: Any) -> Any:
    """Existing key of ``node`` spelled ``segment``, else its string form."""
    key = str(segment)
    if key in node:
        return key
    for existing in node:
        if not isinstance(existing, str) and str(existing).lower() == key.lower():
            return existing
    return key


def set_path(document: Any, path: str, value: Any) -> Any:
    """Set ``value`` at dotted ``path`` inside ``document`` and return it.

    Missing mapping keys along the way are created. List indices must
    already exist.
    """
    segments = split_path(path)
    if not segments:
        raise PathNotFoundError(f"empty substitution path {path!r}")
    if document is None:
        document = {}

    node = document
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1
        if isinstance(node, dict):
            key = _mapping_key(node, segment)
            if last:
                node[key] = value
            else:
                if not isinstance(node.get(key), (dict, list)):
                    node[key] = {}
                node = node[key]
        elif isinstance(node, list):
            if not isinstance(segment, int) or segment >= len(node):
                raise PathNotFoundError(
                    f"index {segment!r} out of range at path {path!r}"
                )
            if last:
                node[segment] = value
            else:
                if not isinstance(node[segment], (dict, list)):
                    node[segment] = {}
                node = node[segment]
        else:
            raise PathNotFoundError(f"cannot descend into a scalar at path {path!r}")
    return document


class FilesystemMutationEngine:
    """Extracts an archive into a working tree and applies substitutions."""

    def apply(
        self,
        archive: bytes,
        rules: Iterable[Substitution],
        tree: WorkingTree,
    ) -> Path:
        """Apply ``rules`` in order and return the mutated content root."""
        extract_archive(archive, tree.content)
        self.apply_rules(rules, tree)
        return tree.content

    def apply_rules(self, rules: Iterable[Substitution], tree: WorkingTree) -> int:
        documents: dict[Path, Any] = {}
        count = 0
        for rule in rules:
            target = tree.resolve(rule.file)
            if target not in documents:
                if not target.is_file():
                    raise RuleTargetNotFoundError(
                        f"file '{rule.file}' for rule '{rule.id}' not found"
                    )
                documents[target] = load_document(target)
            documents[target] = set_path(documents[target], rule.path, rule.value)
            logger.debug("Applied rule %s to %s:%s", rule.id, rule.file, rule.path)
            count += 1

        for target, document in documents.items():
            dump_document(target, document)
        return count
