"""Compiled substitution rules."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Substitution(BaseModel):
    """A compiled (file, path, value) instruction.

    ``id`` serializes as ``name`` so expression diagnostics can address a
    rule by its id (``adjustments.name:subst-0.value``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="name")
    file: str
    path: str
    value: Any = None


class RuleSet:
    """Ordered substitution rules with batch-unique ids.

    The first rule of a given id keeps it verbatim; later rules reusing the
    id get a ``-<n>`` suffix.
    """

    def __init__(self, rules: list[Substitution] | None = None) -> None:
        self._rules: list[Substitution] = []
        self._seen: dict[str, int] = {}
        for rule in rules or []:
            self.add(rule.id, rule.file, rule.path, rule.value)

    def _unique_id(self, base: str) -> str:
        count = self._seen.get(base, 0)
        self._seen[base] = count + 1
        candidate = base if count == 0 else f"{base}-{count}"
        while candidate in self._seen and candidate != base:
            count += 1
            self._seen[base] = count + 1
            candidate = f"{base}-{count}"
        if candidate != base:
            self._seen[candidate] = 1
        return candidate

    def add(self, rule_id: str, file: str, path: str, value: Any) -> Substitution:
        rule = Substitution(id=self._unique_id(rule_id), file=file, path=path, value=value)
        self._rules.append(rule)
        return rule

    @property
    def rules(self) -> list[Substitution]:
        return list(self._rules)

    def __iter__(self) -> Iterator[Substitution]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)
