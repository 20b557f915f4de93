from __future__ import annotations

import pytest

from leadflow.orchestration.state_machine import (
    LEAD_REOPEN_MACHINE,
    LEAD_STATUS_MACHINE,
    SEQUENCE_STATE_MACHINE,
    InvalidTransitionError,
    StateMachine,
)


def test_state_machine_allows_valid_transition():
    sm = StateMachine({"new": {"contacted"}, "contacted": {"converted"}})
    assert sm.can_transition("new", "contacted") is True
    sm.assert_transition("new", "contacted")


def test_state_machine_rejects_invalid_transition():
    sm = StateMachine({"new": {"contacted"}})
    with pytest.raises(InvalidTransitionError):
        sm.assert_transition("new", "converted")


def test_lead_statuses_only_move_forward():
    assert LEAD_STATUS_MACHINE.can_transition("new", "qualified")
    assert LEAD_STATUS_MACHINE.can_transition("contacted", "lost")
    assert not LEAD_STATUS_MACHINE.can_transition("qualified", "contacted")
    assert LEAD_STATUS_MACHINE.targets("converted") == set()
    assert LEAD_STATUS_MACHINE.targets("lost") == set()


def test_closed_leads_reopen_to_contacted():
    assert LEAD_REOPEN_MACHINE.targets("converted") == {"contacted"}
    assert not LEAD_REOPEN_MACHINE.can_transition("new", "contacted")


def test_completed_sequence_is_terminal():
    assert SEQUENCE_STATE_MACHINE.can_transition("paused", "active")
    assert SEQUENCE_STATE_MACHINE.targets("completed") == set()
