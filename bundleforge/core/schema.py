"""JSON Schema validation of configuration override values."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from bundleforge.core.errors import DocumentParseError, SchemaValidationError


@runtime_checkable
class SchemaValidator(Protocol):
    def validate(self, value: Any, schema: dict[str, Any]) -> None:
        """Raise ``SchemaValidationError`` if ``value`` violates ``schema``."""
        ...


class JsonSchemaValidator:
    """Draft 2020-12 validator reporting every violation with its JSON path."""

    def validate(self, value: Any, schema: dict[str, Any]) -> None:
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as exc:
            raise DocumentParseError(f"invalid configuration schema: {exc.message}") from exc

        validator = Draft202012Validator(schema)
        errors = sorted(validator.iter_errors(value), key=lambda e: list(e.absolute_path))
        if not errors:
            return
        details = "; ".join(
            f"{error.json_path}: {error.message}" for error in errors
        )
        raise SchemaValidationError(f"validation failed: {details}")
