"""Error taxonomy for the mutation pipeline.

Every error raised by bundleforge derives from ``BundleforgeError``. The
``kind`` label groups errors for operators and the ``retryable`` flag tells
the invoking scheduler whether a later attempt may succeed (a dependency
may appear, a transport may recover). Nothing in the pipeline retries on
its own.
"""

from __future__ import annotations

from typing import ClassVar


class BundleforgeError(RuntimeError):
    """Root of all bundleforge errors."""

    kind: ClassVar[str] = "error"
    retryable: ClassVar[bool] = False


# ---------------------------------------------------------------------------
# Input format
# ---------------------------------------------------------------------------


class InputFormatError(BundleforgeError):
    """A payload or document could not be read in the expected format."""

    kind = "input-format"


class NotAnArchiveError(InputFormatError):
    """Raised when a payload that must be a tar archive is not one."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "expected tarred directory content for configuration/localization "
            "resources, got plain text"
        )


class DocumentParseError(InputFormatError):
    """Raised when a YAML/JSON document cannot be parsed or has the wrong shape."""


class ExpressionSyntaxError(InputFormatError):
    """Raised when an expression node is syntactically invalid."""


class DecompressError(InputFormatError):
    """Raised when a compressed payload cannot be decompressed."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ConfigValidationError(BundleforgeError):
    """Configuration values or expressions failed validation."""

    kind = "validation"


class SchemaValidationError(ConfigValidationError):
    """Raised when override values do not satisfy the declared schema."""


class UnresolvedNodesError(ConfigValidationError):
    """Raised when a cascade leaves expression nodes unresolved."""

    def __init__(self, template_name: str, nodes: list[str]) -> None:
        self.template_name = template_name
        self.nodes = list(nodes)
        super().__init__(
            f"processing template {template_name}: unresolved nodes:\n"
            + "\n".join(self.nodes)
        )


class UnknownValuesError(ConfigValidationError):
    """Raised when override values name keys absent from the defaults."""


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(BundleforgeError):
    """A dependency of this attempt does not exist (yet)."""

    kind = "not-found"
    retryable = True


class RuleTargetNotFoundError(NotFoundError):
    """Raised when a substitution rule names a file absent from the tree."""


class PathNotFoundError(NotFoundError):
    """Raised when a document path cannot be addressed."""


class ResourceNotFoundError(NotFoundError):
    """Raised when a component version has no such resource or reference."""


class ObjectNotFoundError(NotFoundError):
    """Raised when a referenced object (or its snapshot name) does not exist."""


class SnapshotNotFoundError(NotFoundError):
    """Raised when a referenced snapshot record does not exist."""


class SnapshotNotReadyError(NotFoundError):
    """Raised when a snapshot exists but is not ready."""


class CacheNotFoundError(NotFoundError):
    """Raised when a cache tag or digest is unbound."""


class PatchPathNotFoundError(NotFoundError):
    """Raised when a patch source or target path does not exist."""


class PatchTargetNotFoundError(NotFoundError):
    """Raised when no target document matches a patch document."""


# ---------------------------------------------------------------------------
# Transient infrastructure
# ---------------------------------------------------------------------------


class TransientError(BundleforgeError):
    """A storage or network failure that may clear on its own."""

    kind = "transient"
    retryable = True


class CacheWriteError(TransientError):
    """Raised when the cache cannot persist a blob or tag."""


class SourceFetchError(TransientError):
    """Raised when an external source artifact cannot be downloaded."""


# ---------------------------------------------------------------------------
# Unsupported kinds
# ---------------------------------------------------------------------------


class UnsupportedKindError(BundleforgeError):
    """A kind or type outside the supported closed set."""

    kind = "unsupported"


class UnsupportedAccessError(UnsupportedKindError):
    """Raised when an access specification cannot yield an image reference."""


class UnsupportedSourceError(UnsupportedKindError):
    """Raised when a patch source kind is not supported."""


# ---------------------------------------------------------------------------
# Everything else
# ---------------------------------------------------------------------------


class MergeTypeMismatchError(BundleforgeError):
    """Raised when a strategic merge meets incompatible value types."""

    kind = "merge"


class AuthenticationError(BundleforgeError):
    """Raised when an access context cannot be established."""

    kind = "auth"
    retryable = True


class ConfigurationError(BundleforgeError):
    """Raised when a mutation request is structurally invalid."""

    kind = "configuration"


class InvalidTransitionError(BundleforgeError):
    """Raised when a requested pipeline state transition is not valid."""

    kind = "state"


class StageFailedError(BundleforgeError):
    """Wraps an error escaping a pipeline stage with the stage label.

    ``kind`` and ``retryable`` reflect the wrapped cause so the scheduler
    can classify the failure without unwrapping it.
    """

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")

    @property
    def kind(self) -> str:  # type: ignore[override]
        return getattr(self.cause, "kind", "error")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return bool(getattr(self.cause, "retryable", False))
