"""Job records for the batch processor.

A job's progress lives entirely in this record (phase + cursor + the
kind-specific ``state`` dict), never in a suspended coroutine, so a job can
be persisted after every tick, inspected at any time and resumed after a
restart.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class JobKind(str, Enum):
    EXPORT = "export"
    IMPORT = "import"


class JobStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportPhase(str, Enum):
    SCANNING = "scanning"
    CONVEYORS = "conveyors"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportPhase(str, Enum):
    TILES = "tiles"
    OBJECTS = "objects"
    STATE = "state"
    CONVEYORS = "conveyors"
    VALIDATION = "validation"
    AWAITING_ACTIVATION = "awaiting_activation"
    ACTIVATION = "activation"
    FLUIDS = "fluids"
    LOSS_ANALYSIS = "loss_analysis"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One export or import job.

    Attributes:
        id: ``"{sequence:03d}_{platform}"``
        phase: Current phase name (ExportPhase/ImportPhase value)
        cursor: Objects processed within the current phase
        total: Objects to process within the current phase
        state: Durable kind-specific working state
        result: Completion payload (export envelope, validation report)
        error: Structured error (``RelayError.to_dict()``) when failed
    """

    id: str
    kind: JobKind
    platform_name: str
    force_name: str
    phase: str
    status: JobStatus = JobStatus.ACTIVE
    transfer_id: Optional[str] = None
    sequence: int = 0
    created_at_tick: int = 0
    updated_at_tick: int = 0
    finished_at_tick: Optional[int] = None
    cursor: int = 0
    total: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def enter_phase(self, phase: str, total: int = 0) -> None:
        self.phase = phase
        self.cursor = 0
        self.total = total

    def progress(self) -> Dict[str, Any]:
        percent = 100.0 if self.total == 0 else round(100.0 * min(self.cursor, self.total) / self.total, 1)
        return {"phase": self.phase, "processed": self.cursor, "total": self.total, "percent": percent}

    def status_dict(self) -> Dict[str, Any]:
        """Status summary without the (possibly large) working state."""
        data = {
            "job_id": self.id,
            "kind": self.kind.value,
            "phase": self.phase,
            "status": self.status.value,
            "platform_name": self.platform_name,
            "force_name": self.force_name,
            "transfer_id": self.transfer_id,
            "created_at_tick": self.created_at_tick,
            "updated_at_tick": self.updated_at_tick,
            "finished_at_tick": self.finished_at_tick,
            "progress": self.progress(),
            "metrics": dict(self.metrics),
            "error": self.error,
        }
        if self.result is not None:
            data["result"] = {k: v for k, v in self.result.items() if k != "envelope"}
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "platform_name": self.platform_name,
            "force_name": self.force_name,
            "phase": self.phase,
            "status": self.status.value,
            "transfer_id": self.transfer_id,
            "sequence": self.sequence,
            "created_at_tick": self.created_at_tick,
            "updated_at_tick": self.updated_at_tick,
            "finished_at_tick": self.finished_at_tick,
            "cursor": self.cursor,
            "total": self.total,
            "metrics": self.metrics,
            "state": self.state,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        data = dict(data)
        data["kind"] = JobKind(data["kind"])
        data["status"] = JobStatus(data["status"])
        return cls(**data)
