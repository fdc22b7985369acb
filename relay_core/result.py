"""Result type for operations whose failure is an expected outcome.

Locking a platform that is already locked, or unlocking one that has gone
away, is not exceptional: callers branch on it. Those operations return a
Result instead of raising, so the failure path is visible at the call site.

    result = lock.lock("Alpha", "player")
    if result.is_err():
        logger.warning("Lock refused: %s", result.error)
    else:
        record = result.unwrap()

Callers that cannot proceed without the value call ``unwrap()``; on an
``Err`` carrying a ``RelayError`` that re-raises the error itself, so HTTP
handlers and the processor see the original kind and counters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    error = None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    value = None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        """Raise the carried exception, or a ValueError describing the error."""
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap on Err: {self.error}")

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[E]]
