"""ConfigData document: configuration rules and localization entries."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConfigurationRule(BaseModel):
    """Set ``path`` inside ``file`` to the (expression) ``value``."""

    model_config = ConfigDict(frozen=True)

    value: Any
    file: str
    path: str


class Configuration(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    defaults: dict[str, Any] = Field(default_factory=dict)
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    rules: list[ConfigurationRule] = Field(default_factory=list)


class LocalizationResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class LocalizationMapping(BaseModel):
    """Custom value computed from the component document.

    ``transform`` is evaluated with the component tree in scope; the
    value at its ``out`` key lands at ``path``.
    """

    model_config = ConfigDict(frozen=True)

    transform: str
    path: str


class LocalizationRule(BaseModel):
    """One localization entry.

    Either ``mapping`` is set, or ``resource`` plus any subset of the
    ``registry``/``repository``/``image``/``tag`` target paths.
    """

    model_config = ConfigDict(frozen=True)

    file: str
    resource: LocalizationResource | None = None
    registry: str = ""
    repository: str = ""
    image: str = ""
    tag: str = ""
    mapping: LocalizationMapping | None = None

    def targets(self) -> list[tuple[str, str]]:
        """Requested (target kind, in-file path) pairs in emission order."""
        return [
            (kind, path)
            for kind, path in (
                ("registry", self.registry),
                ("repository", self.repository),
                ("image", self.image),
                ("tag", self.tag),
            )
            if path
        ]


class ConfigData(BaseModel):
    """Parsed ConfigData document.

    Both sections are optional; unrelated top-level keys (``kind``,
    ``metadata``, ...) are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    configuration: Configuration = Field(default_factory=Configuration)
    localization: list[LocalizationRule] = Field(default_factory=list)
