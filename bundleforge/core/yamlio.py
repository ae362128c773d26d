"""Round-trip YAML for files inside a working tree.

Manifests are rewritten in place, so comments, key order and scalar quoting
survive a load/dump cycle. Configuration documents are parsed elsewhere
with PyYAML; this module only touches the payload files being mutated.
"""

from __future__ import annotations

import io
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from bundleforge.core.errors import DocumentParseError


def _round_trip() -> YAML:
    # YAML instances keep per-document state; one per call.
    handler = YAML()
    handler.preserve_quotes = True
    handler.width = 4096
    return handler


def load_documents(text: str, name: str) -> list[Any]:
    """Parse every non-empty document in ``text``."""
    try:
        return [doc for doc in _round_trip().load_all(text) if doc is not None]
    except YAMLError as exc:
        raise DocumentParseError(f"failed to parse {name}: {exc}") from exc


def dump_documents(documents: list[Any]) -> str:
    stream = io.StringIO()
    handler = _round_trip()
    if len(documents) == 1:
        handler.dump(documents[0], stream)
    else:
        handler.dump_all(documents, stream)
    return stream.getvalue()
