"""Expression cascading over YAML/JSON documents.

Two capabilities are consumed by the rule compiler:

* ``DocumentEvaluator.cascade``: resolve every expression node of a
  document, failing with the full list of nodes that could not be resolved.
* ``MappingEvaluator.evaluate``: evaluate a mapping transform against a
  document and return the value at its ``out`` key.

``CascadeEvaluator`` is the bundled implementation. An expression node is a
string of the form ``(( expr ))``::

    expr         := alternative ( "||" alternative )*
    alternative  := operand+
    operand      := reference | "string" | integer | true | false | nil
    reference    := name ( "." name | "." index | "[" index "]" | ".[" index "]" )*

A single operand yields its value unchanged (maps and lists included);
several operands are concatenated as strings. References resolve against
the document being cascaded first, then the optional scope document.
Alternatives are tried left to right; the first whose references all exist
wins. A reference to a node that is itself still unresolved waits for a
later pass, so resolution order follows the references, not the document.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import yaml

from bundleforge.core.errors import (
    ConfigValidationError,
    ExpressionSyntaxError,
    UnresolvedNodesError,
)

logger = logging.getLogger(__name__)

NodePath = tuple[Any, ...]

_NODE_RE = re.compile(r"^\s*\(\((?P<expr>.*)\)\)\s*$", re.DOTALL)
_TOKEN_RE = re.compile(
    r"""
      (?P<alt>\|\|)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<number>-?\d+)(?![\w.\[])
    | (?P<ref>[A-Za-z_][\w-]*(?:\.\[\d+\]|\[\d+\]|\.[\w-]+)*)
    """,
    re.VERBOSE,
)
_SEGMENT_RE = re.compile(r"\[(\d+)\]|([^.\[\]]+)")
_LITERALS: dict[str, Any] = {"true": True, "false": False, "nil": None, "null": None}


@runtime_checkable
class DocumentEvaluator(Protocol):
    def cascade(
        self,
        document: dict[str, Any],
        *,
        template_name: str = "template",
        scope: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...


@runtime_checkable
class MappingEvaluator(Protocol):
    def evaluate(self, transform: str, document: dict[str, Any]) -> Any:
        ...


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Operand:
    text: str
    literal: bool
    value: Any = None
    segments: tuple[str | int, ...] = ()


@dataclass(frozen=True)
class _Expression:
    source: str
    alternatives: tuple[tuple[_Operand, ...], ...]

    def render(self) -> str:
        return f"(( {self.source} ))"


def is_expression(value: Any) -> bool:
    return isinstance(value, str) and _NODE_RE.match(value) is not None


def split_path(text: str) -> tuple[str | int, ...]:
    """Split ``a.b[0].c`` / ``a.[0].c`` / ``a.0.c`` into segments."""
    segments: list[str | int] = []
    for index, name in _SEGMENT_RE.findall(text):
        if index:
            segments.append(int(index))
        elif name.isdigit():
            segments.append(int(name))
        else:
            segments.append(name)
    return tuple(segments)


def _unquote(token: str) -> str:
    body = token[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def parse_expression(node: str, location: str = "") -> _Expression:
    match = _NODE_RE.match(node)
    if match is None:
        raise ExpressionSyntaxError(f"not an expression node: {node!r}")
    source = match.group("expr").strip()
    where = f" at {location}" if location else ""

    alternatives: list[tuple[_Operand, ...]] = []
    current: list[_Operand] = []
    pos = 0
    while pos < len(source):
        if source[pos].isspace():
            pos += 1
            continue
        token = _TOKEN_RE.match(source, pos)
        if token is None:
            raise ExpressionSyntaxError(
                f"invalid expression (( {source} )){where}: "
                f"unexpected input {source[pos:]!r}"
            )
        pos = token.end()
        if token.group("alt"):
            if not current:
                raise ExpressionSyntaxError(
                    f"invalid expression (( {source} )){where}: empty alternative"
                )
            alternatives.append(tuple(current))
            current = []
        elif token.group("string") is not None:
            text = token.group("string")
            current.append(_Operand(text, True, _unquote(text)))
        elif token.group("number") is not None:
            text = token.group("number")
            current.append(_Operand(text, True, int(text)))
        else:
            text = token.group("ref")
            if text in _LITERALS:
                current.append(_Operand(text, True, _LITERALS[text]))
            else:
                current.append(_Operand(text, False, segments=split_path(text)))
    if not current:
        raise ExpressionSyntaxError(
            f"invalid expression (( {source} )){where}: empty expression"
        )
    alternatives.append(tuple(current))
    return _Expression(source, tuple(alternatives))


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def _key_name(key: Any) -> str:
    """Render a mapping key the way YAML would spell it."""
    if isinstance(key, bool):
        return "true" if key else "false"
    if key is None:
        return "null"
    return str(key)


def _find_key(node: dict[Any, Any], segment: str | int) -> tuple[bool, Any]:
    if isinstance(segment, str) and segment in node:
        return True, segment
    wanted = str(segment)
    for key in node:
        if (type(key) is type(segment) and key == segment) or _key_name(key) == wanted:
            return True, key
    return False, None


def lookup(document: Any, segments: tuple[str | int, ...]) -> tuple[bool, Any, NodePath]:
    """Return (found, value, concrete path) for ``segments`` in ``document``.

    The concrete path holds the mapping keys as they appear in the document,
    so non-string keys (``8080``, YAML's ``on`` read as ``True``) survive.
    """
    node = document
    concrete: list[Any] = []
    for segment in segments:
        if isinstance(node, dict):
            found, key = _find_key(node, segment)
            if not found:
                return False, None, tuple(concrete)
            node = node[key]
            concrete.append(key)
        elif isinstance(node, list) and isinstance(segment, int) and not isinstance(segment, bool):
            if segment >= len(node):
                return False, None, tuple(concrete)
            node = node[segment]
            concrete.append(segment)
        else:
            return False, None, tuple(concrete)
    return True, node, tuple(concrete)


def _get(document: Any, path: NodePath) -> Any:
    node = document
    for segment in path:
        node = node[segment]
    return node


def _collect_nodes(value: Any, path: NodePath, out: list[NodePath]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            _collect_nodes(child, path + (key,), out)
    elif isinstance(value, list):
        for index, child in enumerate(value):
            _collect_nodes(child, path + (index,), out)
    elif is_expression(value):
        out.append(path)


def _assign(document: Any, path: NodePath, value: Any) -> None:
    node = document
    for segment in path[:-1]:
        node = node[segment]
    node[path[-1]] = value


def format_index_path(document: Any, path: NodePath) -> str:
    """Render ``path``: list positions as ``[n]``, mapping keys by name."""
    parts: list[str] = []
    node = document
    for segment in path:
        if isinstance(node, list):
            parts.append(f"[{segment}]")
        else:
            parts.append(_key_name(segment))
        node = node[segment] if isinstance(node, (dict, list)) else None
    return ".".join(parts)


def format_keyed_path(document: Any, path: NodePath) -> str:
    """Like ``format_index_path`` but list elements with a ``name`` use it."""
    parts: list[str] = []
    node = document
    for segment in path:
        if isinstance(node, list):
            element = node[segment]
            if isinstance(element, dict) and isinstance(element.get("name"), str):
                parts.append(f"name:{element['name']}")
            else:
                parts.append(f"[{segment}]")
        else:
            parts.append(_key_name(segment))
        node = node[segment] if isinstance(node, (dict, list)) else None
    return ".".join(parts)



def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ConfigValidationError("cannot concatenate a map or list")
    return str(value)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


class _Pending(Exception):
    """A referenced node is not resolved yet."""

    def __init__(self, reference: str) -> None:
        self.reference = reference


@dataclass
class _Outcome:
    resolved: bool
    value: Any = None
    pending: str = ""
    missing: list[str] = field(default_factory=list)


class CascadeEvaluator:
    """Fixpoint resolver for ``(( expr ))`` nodes."""

    def __init__(self, max_passes: int = 256) -> None:
        self._max_passes = max_passes

    def cascade(
        self,
        document: dict[str, Any],
        *,
        template_name: str = "template",
        scope: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return a copy of ``document`` with every expression node resolved.

        Raises
        ------
        ExpressionSyntaxError
            A node is not a well-formed expression.
        UnresolvedNodesError
            One or more nodes reference names that do not exist, or wait on
            each other in a cycle.
        """
        result = copy.deepcopy(document)
        paths: list[NodePath] = []
        _collect_nodes(result, (), paths)
        expressions = {
            path: parse_expression(_get(result, path), format_index_path(result, path))
            for path in paths
        }
        remaining = list(paths)
        outcomes: dict[NodePath, _Outcome] = {}

        for _ in range(self._max_passes):
            progressed = False
            for path in list(remaining):
                outcome = self._evaluate(expressions[path], result, scope, remaining)
                outcomes[path] = outcome
                if outcome.resolved:
                    _assign(result, path, copy.deepcopy(outcome.value))
                    remaining.remove(path)
                    progressed = True
            if not remaining or not progressed:
                break

        if remaining:
            raise UnresolvedNodesError(
                template_name,
                [
                    self._describe(
                        expressions[path], outcomes.get(path), template_name, result, path
                    )
                    for path in remaining
                ],
            )
        logger.debug("Cascaded template %s: %d nodes resolved", template_name, len(paths))
        return result

    def _resolve_reference(
        self,
        operand: _Operand,
        document: dict[str, Any],
        scope: dict[str, Any] | None,
        remaining: list[NodePath],
    ) -> tuple[bool, Any]:
        found, value, concrete = lookup(document, operand.segments)
        if found:
            if any(path[: len(concrete)] == concrete for path in remaining):
                raise _Pending(operand.text)
            return True, value
        if scope is not None:
            found, value, _ = lookup(scope, operand.segments)
            if found:
                return True, value
        return False, None

    def _evaluate(
        self,
        expression: _Expression,
        document: dict[str, Any],
        scope: dict[str, Any] | None,
        remaining: list[NodePath],
    ) -> _Outcome:
        missing: list[str] = []
        for alternative in expression.alternatives:
            values: list[Any] = []
            complete = True
            for operand in alternative:
                if operand.literal:
                    values.append(operand.value)
                    continue
                try:
                    found, value = self._resolve_reference(
                        operand, document, scope, remaining
                    )
                except _Pending as pending:
                    return _Outcome(False, pending=pending.reference)
                if not found:
                    missing.append(operand.text)
                    complete = False
                    break
                values.append(value)
            if complete:
                if len(values) == 1:
                    return _Outcome(True, values[0])
                return _Outcome(True, "".join(_stringify(v) for v in values))
        return _Outcome(False, missing=missing)

    @staticmethod
    def _describe(
        expression: _Expression,
        outcome: _Outcome | None,
        template_name: str,
        document: dict[str, Any],
        path: NodePath,
    ) -> str:
        if outcome is not None and outcome.missing:
            reason = f"*'{outcome.missing[0]}' not found"
        elif outcome is not None and outcome.pending:
            reason = f"*'{outcome.pending}' is unresolved"
        else:
            reason = "*unresolved"
        return (
            f"\t{expression.render()}\tin template {template_name}"
            f"\t{format_index_path(document, path)}"
            f"\t({format_keyed_path(document, path)})"
            f"\t{reason}"
        )


class CascadeMappingEvaluator:
    """Evaluates a YAML mapping transform and returns its ``out`` value."""

    def __init__(self, evaluator: DocumentEvaluator | None = None) -> None:
        self._evaluator = evaluator or CascadeEvaluator()

    def evaluate(self, transform: str, document: dict[str, Any]) -> Any:
        try:
            template = yaml.safe_load(transform)
        except yaml.YAMLError as exc:
            raise ExpressionSyntaxError(f"invalid mapping transform: {exc}") from exc
        if not isinstance(template, dict):
            raise ExpressionSyntaxError("mapping transform must be a YAML mapping")
        if "out" not in template:
            raise ExpressionSyntaxError("mapping transform must define 'out'")
        result = self._evaluator.cascade(template, template_name="mapping", scope=document)
        return result["out"]
