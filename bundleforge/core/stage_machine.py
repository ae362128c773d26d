"""Forward-only state machine for one mutation invocation.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- No branching back; DONE and FAILED are terminal
- Every transition recorded in the mutation status
"""

from __future__ import annotations

import logging

from bundleforge.core.errors import InvalidTransitionError
from bundleforge.models.snapshot import MutationStatus
from bundleforge.models.stages import (
    VALID_TRANSITIONS,
    MutationStage,
    StageTransition,
)

logger = logging.getLogger(__name__)


class StageMachine:
    """Tracks the current stage of one invocation.

    Parameters
    ----------
    status:
        The status record transitions are appended to.
    label:
        Name used in log lines (usually ``namespace/name``).
    """

    def __init__(self, status: MutationStatus, label: str = "") -> None:
        self._status = status
        self._label = label
        self._current = MutationStage.PENDING

    @property
    def current(self) -> MutationStage:
        return self._current

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._current]

    def transition(self, target: MutationStage, detail: str = "") -> StageTransition:
        """Move to ``target``, recording the transition.

        Raises ``InvalidTransitionError`` if VALID_TRANSITIONS does not allow it.
        """
        allowed = VALID_TRANSITIONS.get(self._current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from {self._current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        record = StageTransition(
            from_stage=self._current, to_stage=target, detail=detail
        )
        self._status.transitions.append(record)
        self._current = target

        if target == MutationStage.FAILED:
            logger.info("%s failed in %s: %s", self._label, record.from_stage.value, detail)
        else:
            logger.info("%s -> %s", self._label, target.value)
        return record

    def fail(self, detail: str) -> StageTransition | None:
        """Move to FAILED unless already terminal."""
        if self.is_terminal:
            return None
        return self.transition(MutationStage.FAILED, detail)

    def get_available_transitions(self) -> set[MutationStage]:
        return set(VALID_TRANSITIONS.get(self._current, set()))
