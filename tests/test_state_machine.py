"""Tests for the transfer state machine."""

import pytest

from relay_core.result import Err, Ok
from relay_core.state_machine import StateMachine
from relay_backend.orchestrator import TRANSFER_TRANSITIONS
from relay_backend.transfer_registry import TransferStatus


def _machine(**kwargs):
    return StateMachine(TransferStatus.CREATED, TRANSFER_TRANSITIONS, **kwargs)


class TestTransferStateMachine:
    def test_happy_path(self):
        machine = _machine()
        for status in (
            TransferStatus.EXPORTING,
            TransferStatus.AWAITING_STORE,
            TransferStatus.TRANSMITTING,
            TransferStatus.IMPORTING,
            TransferStatus.AWAITING_VALIDATION,
            TransferStatus.COMPLETED,
        ):
            machine.transition(status)
        assert machine.state == TransferStatus.COMPLETED
        assert machine.is_terminal()

    def test_phases_cannot_be_skipped(self):
        machine = _machine()
        with pytest.raises(ValueError, match="CREATED -> IMPORTING"):
            machine.transition(TransferStatus.IMPORTING)
        assert machine.state == TransferStatus.CREATED

    def test_every_active_phase_may_fail(self):
        for status, targets in TRANSFER_TRANSITIONS.items():
            if targets:
                assert TransferStatus.FAILED in targets, status

    def test_cleanup_failure_only_after_validation(self):
        machine = _machine()
        assert not machine.can_transition(TransferStatus.CLEANUP_FAILED)
        machine.force_state(TransferStatus.AWAITING_VALIDATION)
        assert machine.can_transition(TransferStatus.CLEANUP_FAILED)

    def test_try_transition_returns_result(self):
        machine = _machine()
        assert machine.try_transition(TransferStatus.EXPORTING) == Ok(TransferStatus.EXPORTING)
        refused = machine.try_transition(TransferStatus.COMPLETED)
        assert isinstance(refused, Err)
        assert "EXPORTING" in refused.error

    def test_terminal_states_have_no_exits(self):
        machine = _machine()
        machine.transition(TransferStatus.FAILED)
        assert machine.is_terminal()
        assert machine.get_valid_transitions() == []

    def test_history_records_reasons(self):
        machine = _machine(track_history=True)
        machine.transition(TransferStatus.EXPORTING, reason="start")
        machine.force_state(TransferStatus.FAILED, reason="restart")

        history = machine.history
        assert [(h.from_state, h.to_state) for h in history] == [
            (TransferStatus.CREATED, TransferStatus.EXPORTING),
            (TransferStatus.EXPORTING, TransferStatus.FAILED),
        ]
        assert history[1].reason == "[FORCED] restart"

    def test_history_is_bounded(self):
        machine = _machine(track_history=True, max_history=2)
        for status in (TransferStatus.EXPORTING, TransferStatus.AWAITING_STORE, TransferStatus.TRANSMITTING):
            machine.transition(status)
        assert len(machine.history) == 2

    def test_unknown_initial_state_rejected(self):
        with pytest.raises(ValueError):
            StateMachine(TransferStatus.CREATED, {TransferStatus.FAILED: []})

    def test_elapsed_time_per_state(self):
        now = [100.0]
        machine = _machine(track_history=True, clock=lambda: now[0])
        now[0] = 102.5
        assert machine.elapsed() == 2.5

        machine.transition(TransferStatus.EXPORTING)
        now[0] = 103.0

        assert machine.history[0].seconds_in_previous == 2.5
        assert machine.elapsed() == 0.5
