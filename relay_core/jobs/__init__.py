"""Tick-budgeted export and import jobs.

The processor lives in ``relay_core.jobs.processor``; it is not re-exported
here because the import job depends on the importing package, which in turn
depends on the job record.
"""

from relay_core.jobs.job import ExportPhase, ImportPhase, Job, JobKind, JobStatus
from relay_core.jobs.store import FileJobStore, JobStore, MemoryJobStore

__all__ = [
    "ExportPhase",
    "FileJobStore",
    "ImportPhase",
    "Job",
    "JobKind",
    "JobStatus",
    "JobStore",
    "MemoryJobStore",
]
