"""Canonical state transition tables for leads and follow-up sequences."""

from __future__ import annotations

from leadflow.models.enums import LeadStatus, SequenceState


class InvalidTransitionError(ValueError):
    """Raised when a disallowed state transition is attempted."""


class StateMachine:
    """Transition table keyed by current state."""

    def __init__(self, transitions: dict[str, set[str]]) -> None:
        self._transitions = transitions

    def can_transition(self, current: str, target: str) -> bool:
        return target in self._transitions.get(current, set())

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidTransitionError(f"Transition not allowed: {current} -> {target}")

    def targets(self, current: str) -> set[str]:
        return set(self._transitions.get(current, set()))


# Forward-only; converted/lost leave only through an explicit reopen.
LEAD_STATUS_MACHINE = StateMachine(
    {
        LeadStatus.NEW.value: {LeadStatus.CONTACTED.value, LeadStatus.QUALIFIED.value, LeadStatus.CONVERTED.value, LeadStatus.LOST.value},
        LeadStatus.CONTACTED.value: {LeadStatus.QUALIFIED.value, LeadStatus.CONVERTED.value, LeadStatus.LOST.value},
        LeadStatus.QUALIFIED.value: {LeadStatus.CONVERTED.value, LeadStatus.LOST.value},
        LeadStatus.CONVERTED.value: set(),
        LeadStatus.LOST.value: set(),
    }
)

LEAD_REOPEN_MACHINE = StateMachine(
    {
        LeadStatus.CONVERTED.value: {LeadStatus.CONTACTED.value},
        LeadStatus.LOST.value: {LeadStatus.CONTACTED.value},
    }
)

SEQUENCE_STATE_MACHINE = StateMachine(
    {
        SequenceState.ACTIVE.value: {SequenceState.ACTIVE.value, SequenceState.PAUSED.value, SequenceState.COMPLETED.value},
        SequenceState.PAUSED.value: {SequenceState.ACTIVE.value, SequenceState.COMPLETED.value},
        SequenceState.COMPLETED.value: set(),
    }
)
