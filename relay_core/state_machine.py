"""Guarded status transitions with per-state timing.

A transfer record is polled by other processes while it moves, so its
status may only follow the transitions declared for it. ``StateMachine``
holds the current status, refuses undeclared moves, and measures how long
the current status has been held, which is what phase timings report.

    machine = StateMachine(TransferStatus.CREATED, TRANSFER_TRANSITIONS)
    machine.transition(TransferStatus.EXPORTING)
    machine.transition(TransferStatus.COMPLETED)   # ValueError
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Generic, List, Sequence, TypeVar

from relay_core.result import Err, Ok, Result

S = TypeVar("S", bound=Enum)


@dataclass
class StateTransition(Generic[S]):
    from_state: S
    to_state: S
    seconds_in_previous: float
    reason: str = ""


class StateMachine(Generic[S]):
    """Current status plus the table of statuses reachable from each status."""

    def __init__(
        self,
        initial_state: S,
        valid_transitions: Dict[S, Sequence[S]],
        track_history: bool = False,
        max_history: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if initial_state not in valid_transitions:
            raise ValueError(
                f"{initial_state!r} has no entry in the transition table "
                f"({', '.join(s.name for s in valid_transitions)})"
            )
        self._state = initial_state
        self._transitions = valid_transitions
        self._clock = clock
        self._entered_at = clock()
        self._track_history = track_history
        self._max_history = max_history
        self._history: List[StateTransition[S]] = []

    @property
    def state(self) -> S:
        return self._state

    @property
    def history(self) -> List[StateTransition[S]]:
        return list(self._history)

    def elapsed(self) -> float:
        """Seconds spent in the current state so far."""
        return self._clock() - self._entered_at

    def get_valid_transitions(self) -> List[S]:
        return list(self._transitions.get(self._state, ()))

    def is_terminal(self) -> bool:
        return not self._transitions.get(self._state)

    def can_transition(self, target: S) -> bool:
        return target in self._transitions.get(self._state, ())

    def try_transition(self, target: S, reason: str = "") -> Result[S, str]:
        if not self.can_transition(target):
            allowed = ", ".join(s.name for s in self.get_valid_transitions()) or "none"
            return Err(
                f"Invalid transition: {self._state.name} -> {target.name} (allowed: {allowed})"
            )
        self._move(target, reason)
        return Ok(target)

    def transition(self, target: S, reason: str = "") -> S:
        """Move to *target*; raises ValueError if the move is not declared."""
        result = self.try_transition(target, reason)
        if result.is_err():
            raise ValueError(result.error)
        return target

    def force_state(self, state: S, reason: str = "forced") -> None:
        """Set the state without consulting the table.

        For records restored from disk and for crash recovery only.
        """
        self._move(state, f"[FORCED] {reason}")

    def _move(self, target: S, reason: str) -> None:
        now = self._clock()
        if self._track_history:
            self._history.append(
                StateTransition(self._state, target, round(now - self._entered_at, 3), reason)
            )
            del self._history[: -self._max_history]
        self._state = target
        self._entered_at = now
