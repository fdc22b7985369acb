"""Import job runner.

Drives an import job through the import pipeline one bounded step per
tick. Imports that belong to a transfer stop after validation in the
``awaiting_activation`` phase: the orchestrator decides whether the new
platform goes live. Standalone imports run straight through.
"""

import logging
from typing import Any, Dict, Optional

from relay_core.config.processing import SYNC_MODE_BATCH_SIZE
from relay_core.exceptions import PhaseOrderError, ValidationFailure
from relay_core.host import SimulationHost
from relay_core.importing.context import ImportContext
from relay_core.importing.pipeline import ImportPipeline, default_pipeline
from relay_core.jobs.job import ImportPhase, Job, JobStatus
from relay_core.lock import QuiescenceLock
from relay_core.reconciliation import ReconciliationEngine
from relay_core.scanning.handlers import ExtractorRegistry
from relay_core.scanning.object_scanner import sort_for_placement

logger = logging.getLogger(__name__)

POST_VALIDATION_STEPS = (ImportPhase.ACTIVATION, ImportPhase.FLUIDS, ImportPhase.LOSS_ANALYSIS)


def initial_import_state(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Durable state for a new import; objects are stored in placement order."""
    header = {k: v for k, v in manifest.items() if k != "objects"}
    return {
        "manifest": header,
        "objects": sort_for_placement(manifest.get("objects") or []),
        "id_map": [],
        "ledger": {},
        "completed": [],
        "trace": [],
    }


class ImportJobRunner:
    def __init__(
        self,
        host: SimulationHost,
        lock: QuiescenceLock,
        engine: Optional[ReconciliationEngine] = None,
        registry: Optional[ExtractorRegistry] = None,
        pipeline: Optional[ImportPipeline] = None,
    ) -> None:
        self._host = host
        self._lock = lock
        self._engine = engine or ReconciliationEngine()
        self._registry = registry
        self.pipeline = pipeline or default_pipeline()

    def _context(self, job: Job) -> ImportContext:
        return ImportContext.from_job(job, self._host, self._lock, self._engine, self._registry)

    def phase_total(self, job: Job, phase: str) -> int:
        if phase in (ImportPhase.OBJECTS.value, ImportPhase.STATE.value):
            return len(job.state["objects"])
        if phase == ImportPhase.TILES.value:
            return len(job.state["manifest"].get("tiles") or [])
        if phase == ImportPhase.CONVEYORS.value:
            return sum(1 for r in job.state["objects"] if (r.get("payload") or {}).get("belt"))
        return 1

    def step(self, job: Job, quota: int) -> None:
        if job.phase not in self.pipeline.step_names:
            return
        ctx = self._context(job)
        try:
            done = self.pipeline.run_step(ctx, job.phase, quota)
        finally:
            ctx.save()
        if done:
            self._advance(job, ctx)

    def _advance(self, job: Job, ctx: ImportContext) -> None:
        finished = job.phase
        if finished == ImportPhase.VALIDATION.value and job.transfer_id is not None:
            job.result = self._result(job, ctx, activation_pending=True)
            if not job.state.get("validation_passed"):
                # The platform stays paused, inactive and without fluids.
                raise ValidationFailure(
                    f"Import of '{job.platform_name}' failed validation",
                    counters={"mismatches": job.state["validation"]["mismatchDetails"][:20]},
                )
            job.enter_phase(ImportPhase.AWAITING_ACTIVATION.value)
            job.status = JobStatus.COMPLETED
            job.finished_at_tick = self._host.tick
            logger.info("Import %s validated; awaiting activation", job.id)
            return

        following = self.pipeline.next_step(finished)
        if following is None:
            self._complete(job, ctx)
        else:
            job.enter_phase(following, total=self.phase_total(job, following))

    def activate(self, job: Job) -> Dict[str, Any]:
        """Run activation, fluid injection and loss analysis for a validated import."""
        if job.phase != ImportPhase.AWAITING_ACTIVATION.value:
            raise PhaseOrderError(
                f"Import {job.id} is in phase '{job.phase}', not awaiting activation",
                counters={"phase": job.phase},
            )
        ctx = self._context(job)
        try:
            for phase in POST_VALIDATION_STEPS:
                job.enter_phase(phase.value, total=1)
                self.pipeline.run_step(ctx, phase.value, SYNC_MODE_BATCH_SIZE)
        finally:
            ctx.save()
        self._complete(job, ctx)
        return job.result

    def _complete(self, job: Job, ctx: ImportContext) -> None:
        job.enter_phase(ImportPhase.COMPLETED.value)
        job.status = JobStatus.COMPLETED
        job.finished_at_tick = self._host.tick
        job.result = self._result(job, ctx, activation_pending=False)
        logger.info(
            "Import %s completed on %s: %d objects placed, %d failed",
            job.id,
            job.platform_name,
            len(ctx.id_map),
            ctx.ledger.entity_count,
        )

    def _result(self, job: Job, ctx: ImportContext, activation_pending: bool) -> Dict[str, Any]:
        state = job.state
        return {
            "platform_name": job.platform_name,
            "activation_pending": activation_pending,
            "validation_passed": bool(state.get("validation_passed")),
            "validation": state.get("validation"),
            "failed_placement": ctx.ledger.summary(),
            "fluid_injection": state.get("fluid_injection"),
            "loss_analysis": state.get("loss_analysis"),
            "trace": list(ctx.trace),
            "objects_placed": len(ctx.id_map),
        }
