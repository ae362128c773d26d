"""Mutation pipeline states: strictly forward transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MutationStage(str, Enum):
    """States of one mutation invocation, in execution order."""

    PENDING = "pending"
    RESOLVE_SOURCE = "resolve_source"
    RESOLVE_CONFIG = "resolve_config"
    TRANSFORM = "transform"
    ARCHIVE = "archive"
    CACHE_PUSH = "cache_push"
    DONE = "done"
    FAILED = "failed"


class TransformKind(str, Enum):
    CONFIGURE = "configure"
    LOCALIZE = "localize"
    PATCH = "patch"
    PASS_THROUGH = "pass_through"


# Valid state transitions: enforced structurally by StageMachine.
# RESOLVE_CONFIG is optional; every running state may fail; DONE and
# FAILED are terminal.
VALID_TRANSITIONS: dict[MutationStage, set[MutationStage]] = {
    MutationStage.PENDING: {MutationStage.RESOLVE_SOURCE, MutationStage.FAILED},
    MutationStage.RESOLVE_SOURCE: {
        MutationStage.RESOLVE_CONFIG,
        MutationStage.TRANSFORM,
        MutationStage.FAILED,
    },
    MutationStage.RESOLVE_CONFIG: {MutationStage.TRANSFORM, MutationStage.FAILED},
    MutationStage.TRANSFORM: {MutationStage.ARCHIVE, MutationStage.FAILED},
    MutationStage.ARCHIVE: {MutationStage.CACHE_PUSH, MutationStage.FAILED},
    MutationStage.CACHE_PUSH: {MutationStage.DONE, MutationStage.FAILED},
    MutationStage.DONE: set(),  # terminal
    MutationStage.FAILED: set(),  # terminal
}


class StageTransition(BaseModel):
    """Records a single state transition for the status record."""

    model_config = ConfigDict(frozen=True)

    from_stage: MutationStage
    to_stage: MutationStage
    detail: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
