"""Async batch processor.

Exports and imports run as jobs advanced a bounded number of objects per
engine tick, so a transfer never stalls the simulation. Requests are
rejected immediately when the processor is at capacity or the platform is
locked by someone else; nothing is queued behind a busy instance.

Usage:
------
    processor = AsyncBatchProcessor(host, QuiescenceLock(host))
    job_id = processor.queue_export("Alpha", "player")
    while processor.get_job(job_id).is_active:
        host.step()
        processor.process_tick()
    envelope = processor.get_export(job_id)
"""

import logging
from typing import Any, Dict, List, Optional

from relay_core.config.relay_config import ProcessorConfig, ReconciliationConfig
from relay_core.exceptions import (
    CapacityError,
    InterruptedJobError,
    JobNotFoundError,
    LockConflictError,
    RelayError,
    StructuralError,
)
from relay_core.host import SimulationHost
from relay_core.jobs.export_job import ExportJobRunner, initial_export_state
from relay_core.jobs.import_job import ImportJobRunner, initial_import_state
from relay_core.jobs.job import ExportPhase, ImportPhase, Job, JobKind, JobStatus
from relay_core.jobs.store import JobStore, MemoryJobStore
from relay_core.keys import sanitize_name
from relay_core.lock import QuiescenceLock
from relay_core.reconciliation import ReconciliationEngine
from relay_core.scanning.handlers import ExtractorRegistry
from relay_core.scanning.object_scanner import ordered_object_ids
from relay_core.scanning.tile_scanner import scan_tiles
from relay_core.serializer import decode_envelope
from relay_core.verification import verify_manifest

logger = logging.getLogger(__name__)

# Upper bound on phase changes a single job may make in one sync-mode tick.
MAX_SYNC_STEPS = 64


class AsyncBatchProcessor:
    """Owns the job table of one instance and advances it once per tick."""

    def __init__(
        self,
        host: SimulationHost,
        lock: QuiescenceLock,
        store: Optional[JobStore] = None,
        config: Optional[ProcessorConfig] = None,
        reconciliation: Optional[ReconciliationConfig] = None,
        registry: Optional[ExtractorRegistry] = None,
    ) -> None:
        self._host = host
        self._lock = lock
        self._store = store if store is not None else MemoryJobStore()
        self.config = config or ProcessorConfig()
        self._exports = ExportJobRunner(host, lock, registry)
        self._imports = ImportJobRunner(
            host, lock, ReconciliationEngine(reconciliation), registry
        )

    @property
    def lock(self) -> QuiescenceLock:
        return self._lock

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def _active_jobs(self) -> List[Job]:
        return [job for job in self._store.all() if job.is_active]

    def _check_capacity(self) -> None:
        active = len(self._active_jobs())
        if active >= self.config.max_concurrent_jobs:
            raise CapacityError(
                f"{active} jobs active, limit is {self.config.max_concurrent_jobs}",
                counters={"active_jobs": active, "max_concurrent_jobs": self.config.max_concurrent_jobs},
            )

    def _new_job(self, kind: JobKind, platform_name: str, force_name: str, phase: str, **kwargs) -> Job:
        sequence = self._store.next_sequence()
        return Job(
            id=f"{sequence:03d}_{sanitize_name(platform_name)}",
            kind=kind,
            platform_name=platform_name,
            force_name=force_name,
            phase=phase,
            sequence=sequence,
            created_at_tick=self._host.tick,
            updated_at_tick=self._host.tick,
            **kwargs,
        )

    def queue_export(self, platform_name: str, force_name: str, transfer_id: Optional[str] = None) -> str:
        """Lock a platform and queue its export.

        A lock already held by the same transfer is reused, so an
        orchestrator may lock first and export second.

        Raises:
            StructuralError: platform or surface missing
            CapacityError: too many active jobs
            LockConflictError: platform locked by someone else
        """
        platform = self._host.get_platform(platform_name, force_name)
        if platform is None or not platform.valid or platform.surface is None:
            raise StructuralError(f"Platform '{platform_name}' not valid")
        self._check_capacity()

        record = self._lock.get(platform_name)
        if record is not None:
            if transfer_id is None or record.owner != transfer_id:
                raise LockConflictError(
                    f"Platform '{platform_name}' already locked",
                    counters={"owner": record.owner, "locked_at_tick": record.locked_at_tick},
                )
        else:
            record = self._lock.lock(platform_name, force_name, owner=transfer_id).unwrap()

        object_ids = ordered_object_ids(platform.surface)
        job = self._new_job(
            JobKind.EXPORT,
            platform_name,
            force_name,
            ExportPhase.SCANNING.value,
            transfer_id=transfer_id,
            total=len(object_ids),
            state=initial_export_state(
                platform, object_ids, scan_tiles(platform.surface), record.frozen_map()
            ),
        )
        self._store.save(job)
        logger.info("Queued export %s (%d objects)", job.id, len(object_ids))
        return job.id

    def _unique_platform_name(self, name: str, force_name: str) -> str:
        candidate = name
        suffix = 2
        while self._host.get_platform(candidate, force_name) is not None:
            candidate = f"{name} #{suffix}"
            suffix += 1
        return candidate

    def queue_import(
        self,
        data: Dict[str, Any],
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str:
        """Decode an envelope (or bare manifest) and queue its import.

        The destination platform is created immediately, paused and hidden,
        under a name that does not collide with an existing platform.

        Raises:
            StructuralError: undecodable or self-inconsistent manifest
            CapacityError: too many active jobs
        """
        manifest = decode_envelope(data)
        consistent, mismatches = verify_manifest(manifest)
        if not consistent:
            raise StructuralError(
                "Manifest verification block does not match its objects",
                counters={"mismatches": mismatches[:50]},
            )
        self._check_capacity()

        requested = platform_name or (manifest.get("platform") or {}).get("name") or "Imported"
        name = self._unique_platform_name(requested, force_name)
        platform = self._host.create_platform(name, force_name)
        platform.paused = True
        platform.hidden = True
        if manifest.get("schedule") is not None:
            platform.schedule = manifest["schedule"]

        job = self._new_job(
            JobKind.IMPORT,
            name,
            force_name,
            ImportPhase.TILES.value,
            transfer_id=transfer_id,
            state=initial_import_state(manifest),
        )
        job.total = self._imports.phase_total(job, job.phase)
        job.metrics["objects_expected"] = len(job.state["objects"])
        self._store.save(job)
        logger.info("Queued import %s into platform %s", job.id, name)
        return job.id

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def _runner(self, job: Job):
        return self._exports if job.kind == JobKind.EXPORT else self._imports

    def _advance(self, job: Job) -> None:
        quota = self.config.effective_batch_size
        runner = self._runner(job)
        if not self.config.sync_mode:
            runner.step(job, quota)
            return
        for _ in range(MAX_SYNC_STEPS):
            if not job.is_active:
                break
            runner.step(job, quota)

    def process_tick(self) -> int:
        """Advance every active job by one batch, oldest first.

        Returns:
            Number of jobs advanced
        """
        advanced = 0
        for job in self._active_jobs():
            try:
                self._advance(job)
            except RelayError as e:
                self._fail(job, e)
            except Exception as e:
                logger.exception("Job %s crashed in phase %s", job.id, job.phase)
                self._fail(job, RelayError(f"{type(e).__name__}: {e}"))
            job.updated_at_tick = self._host.tick
            self._store.save(job)
            advanced += 1
        return advanced

    def _fail(self, job: Job, error: RelayError) -> None:
        job.metrics["failed_phase"] = job.phase
        job.enter_phase(ExportPhase.FAILED.value if job.kind == JobKind.EXPORT else ImportPhase.FAILED.value)
        job.status = JobStatus.FAILED
        job.error = error.to_dict()
        job.finished_at_tick = self._host.tick
        if job.kind == JobKind.EXPORT:
            self._exports.on_failure(job)
        logger.error("Job %s failed (%s): %s", job.id, error.kind, error.message)

    # ------------------------------------------------------------------
    # Queries and follow-up operations
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        job = self._store.load(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return job

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        return self.get_job(job_id).status_dict()

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [job.status_dict() for job in self._store.all()]

    def list_active_jobs(self) -> List[Dict[str, Any]]:
        return [job.status_dict() for job in self._active_jobs()]

    def get_export(self, job_id: str) -> Dict[str, Any]:
        """Envelope of a completed export job."""
        job = self.get_job(job_id)
        if job.kind != JobKind.EXPORT:
            raise StructuralError(f"Job '{job_id}' is not an export")
        if job.status != JobStatus.COMPLETED or not job.result:
            raise StructuralError(
                f"Export '{job_id}' is not complete", counters={"status": job.status.value}
            )
        return job.result["envelope"]

    def _stored_exports(self) -> List[Job]:
        """Completed exports, newest first."""
        exports = [
            job
            for job in self._store.all()
            if job.kind == JobKind.EXPORT and job.status == JobStatus.COMPLETED and job.result
        ]
        return sorted(exports, key=lambda j: (j.finished_at_tick or 0, j.sequence), reverse=True)

    def list_exports(self) -> List[Dict[str, Any]]:
        return [
            {
                "job_id": job.id,
                "platform_name": job.platform_name,
                "transfer_id": job.transfer_id,
                "tick": job.finished_at_tick,
                "stats": job.result.get("stats"),
            }
            for job in self._stored_exports()
        ]

    def clear_exports(self, keep: int = 10) -> List[str]:
        """Drop all but the newest *keep* completed exports.

        Exports whose transfer still holds the platform lock are kept.
        """
        removed = []
        for job in self._stored_exports()[max(keep, 0):]:
            record = self._lock.get(job.platform_name)
            if job.transfer_id is not None and record is not None and record.owner == job.transfer_id:
                continue
            self._store.delete(job.id)
            removed.append(job.id)
        if removed:
            logger.info("Cleared %d stored exports", len(removed))
        return removed

    def activate_import(self, job_id: str) -> Dict[str, Any]:
        """Bring a validated transfer import live.

        Raises:
            PhaseOrderError: the import is not awaiting activation
        """
        job = self.get_job(job_id)
        if job.kind != JobKind.IMPORT:
            raise StructuralError(f"Job '{job_id}' is not an import")
        was_awaiting = job.phase == ImportPhase.AWAITING_ACTIVATION.value
        try:
            result = self._imports.activate(job)
        except RelayError as e:
            # Only a failure part-way through activation taints the job.
            if was_awaiting:
                self._fail(job, e)
                self._store.save(job)
            raise
        job.updated_at_tick = self._host.tick
        self._store.save(job)
        return result

    def resume(self) -> Dict[str, List[str]]:
        """Re-adopt persisted active jobs after a restart.

        An export resumes only if its platform still exists and is still
        locked; an import only if its platform exists. Anything else is
        failed with an ``interrupted`` error.
        """
        resumed, failed = [], []
        for job in self._active_jobs():
            platform = self._host.get_platform(job.platform_name, job.force_name)
            reason = None
            if platform is None or not platform.valid:
                reason = "platform no longer exists"
            elif job.kind == JobKind.EXPORT and not self._lock.is_locked(job.platform_name):
                reason = "platform lock was lost"
            if reason is None:
                resumed.append(job.id)
                continue
            self._fail(job, InterruptedJobError(f"Job '{job.id}' cannot resume: {reason}"))
            self._store.save(job)
            failed.append(job.id)
        if resumed or failed:
            logger.info("Resumed jobs %s; interrupted %s", resumed, failed)
        return {"resumed": resumed, "failed": failed}

    def cleanup(self, max_age_ticks: Optional[int] = None) -> List[str]:
        """Prune finished jobs: keep the newest N, drop any older than the age bound."""
        max_age = self.config.result_max_age_ticks if max_age_ticks is None else max_age_ticks
        finished = [job for job in self._store.all() if job.is_finished]
        keep = set(j.id for j in finished[-self.config.keep_completed:]) if self.config.keep_completed else set()
        now = self._host.tick
        removed = []
        for job in finished:
            too_old = job.finished_at_tick is not None and now - job.finished_at_tick > max_age
            if job.id not in keep or too_old:
                self._store.delete(job.id)
                removed.append(job.id)
        if removed:
            logger.debug("Pruned %d finished jobs", len(removed))
        return removed
