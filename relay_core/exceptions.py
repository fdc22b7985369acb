"""Relay exception hierarchy.

Every error carries a machine-readable ``kind`` so that event and log
consumers can branch on it, a human message, and the counters that were
relevant when it was raised.
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Root of all relay domain exceptions."""

    kind = "error"
    code: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        counters: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.counters: Dict[str, Any] = dict(counters or {})
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.code:
            data["code"] = self.code
        if self.counters:
            data["counters"] = dict(self.counters)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class StructuralError(RelayError):
    """Invalid or missing platform, surface or force. Nothing was mutated."""

    kind = "structural"


class PlacementError(RelayError):
    """An individual object could not be created or restored."""

    kind = "partial_placement"


class ValidationFailure(RelayError):
    """Counts fell outside tolerance after import."""

    kind = "validation"


class TransportError(RelayError):
    """Chunk loss, checksum mismatch or an unreachable peer."""

    kind = "transport"


class LockConflictError(RelayError):
    kind = "conflict"
    code = "already_locked"


class CapacityError(RelayError):
    kind = "capacity"
    code = "capacity_exceeded"


class PhaseOrderError(RelayError):
    """An import phase ran before the phase it depends on."""

    kind = "ordering"


class JobNotFoundError(RelayError):
    kind = "not_found"


class InterruptedJobError(RelayError):
    """Work was cut short by a restart and could not be resumed."""

    kind = "interrupted"


class TimeoutFailure(RelayError):
    kind = "timeout"


class CleanupError(RelayError):
    kind = "cleanup"


def error_from_dict(data: Dict[str, Any]) -> RelayError:
    """Rebuild a RelayError (of the matching subclass) from ``to_dict`` output."""
    kind = data.get("kind", "error")
    cls = _KIND_TO_CLASS.get(kind, RelayError)
    return cls(
        data.get("message", ""),
        counters=data.get("counters"),
        code=data.get("code"),
    )


_KIND_TO_CLASS = {
    cls.kind: cls
    for cls in (
        StructuralError,
        PlacementError,
        ValidationFailure,
        TransportError,
        LockConflictError,
        CapacityError,
        PhaseOrderError,
        JobNotFoundError,
        InterruptedJobError,
        TimeoutFailure,
        CleanupError,
    )
}
