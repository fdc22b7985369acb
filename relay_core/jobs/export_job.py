"""Export job runner.

Phases:
    scanning   - structural scan of ``quota`` objects per tick; conveyor
                 lanes are deferred
    conveyors  - every deferred conveyor plus ground items captured in one
                 tick by ``AtomicBeltScan``
    finalizing - manifest + envelope built and self-verified

All working state lives in ``job.state`` so the job can be persisted and
resumed between ticks.
"""

import logging
from typing import Any, Dict, Optional

from relay_core.exceptions import StructuralError
from relay_core.host import SimulationHost, Surface
from relay_core.jobs.job import ExportPhase, Job, JobStatus
from relay_core.lock import QuiescenceLock
from relay_core.scanning.belt_scanner import AtomicBeltScan
from relay_core.scanning.handlers import ExtractorRegistry
from relay_core.scanning.object_scanner import scan_ground_items, scan_object
from relay_core.capabilities import is_conveyor
from relay_core.serializer import build_manifest, encode_envelope
from relay_core.verification import verify_manifest

logger = logging.getLogger(__name__)


def initial_export_state(
    platform: Any, object_ids: list, tiles: list, frozen_states: Dict[str, bool]
) -> Dict[str, Any]:
    return {
        "object_ids": list(object_ids),
        "records": [],
        "deferred": [],
        "tiles": tiles,
        "missing": [],
        "platform": {
            "name": platform.name,
            "force": platform.force,
            "index": platform.index,
            "paused": bool(platform.paused),
        },
        "schedule": platform.schedule,
        "frozen_states": frozen_states,
    }


class ExportJobRunner:
    """Advances export jobs one bounded step at a time."""

    def __init__(
        self,
        host: SimulationHost,
        lock: QuiescenceLock,
        registry: Optional[ExtractorRegistry] = None,
    ) -> None:
        self._host = host
        self._lock = lock
        self._registry = registry

    def _surface(self, job: Job) -> Surface:
        platform = self._host.get_platform(job.platform_name, job.force_name)
        if platform is None or not platform.valid or platform.surface is None:
            raise StructuralError(f"Platform '{job.platform_name}' disappeared during export")
        return platform.surface

    def step(self, job: Job, quota: int) -> None:
        """Run one tick's worth of work for *job*."""
        if job.phase == ExportPhase.SCANNING.value:
            self._scan_batch(job, quota)
        elif job.phase == ExportPhase.CONVEYORS.value:
            self._capture_conveyors(job)
        elif job.phase == ExportPhase.FINALIZING.value:
            self._finalize(job)

    def _scan_batch(self, job: Job, quota: int) -> None:
        surface = self._surface(job)
        state = job.state
        ids = state["object_ids"]
        end = min(job.cursor + quota, len(ids))
        for object_id in ids[job.cursor:end]:
            obj = surface.get_object(object_id)
            if obj is None or not obj.valid:
                state["missing"].append(object_id)
                continue
            record = scan_object(obj, defer_conveyors=True, registry=self._registry)
            if is_conveyor(obj):
                state["deferred"].append([len(state["records"]), object_id])
            state["records"].append(record)
        job.cursor = end
        job.metrics["objects_scanned"] = len(state["records"])
        if job.cursor >= len(ids):
            logger.debug(
                "Export %s: structural scan done, %d conveyors deferred",
                job.id,
                len(state["deferred"]),
            )
            job.enter_phase(ExportPhase.CONVEYORS.value, total=len(state["deferred"]))

    def _capture_conveyors(self, job: Job) -> None:
        surface = self._surface(job)
        state = job.state
        deferred = state["deferred"]
        capture = AtomicBeltScan(surface).capture([object_id for _, object_id in deferred], tick=self._host.tick)
        for index, object_id in deferred:
            lanes = capture.lanes.get(object_id)
            if lanes:
                state["records"][index].setdefault("payload", {})["belt"] = lanes
        state["records"].extend(scan_ground_items(surface))
        state["missing"].extend(capture.missing)
        job.cursor = len(deferred)
        job.metrics["conveyors_captured"] = len(capture.lanes)
        job.metrics["conveyor_items"] = capture.item_count
        job.metrics["conveyor_tick"] = capture.tick
        job.enter_phase(ExportPhase.FINALIZING.value, total=1)

    def _finalize(self, job: Job) -> None:
        state = job.state
        manifest = build_manifest(
            platform=state["platform"],
            objects=state["records"],
            tiles=state["tiles"],
            tick=self._host.tick,
            source_version=self._host.version,
            schedule=state["schedule"],
            frozen_states=state["frozen_states"],
        )
        consistent, mismatches = verify_manifest(manifest)
        if not consistent:
            raise StructuralError(
                "Export manifest failed self-verification",
                counters={"mismatches": mismatches[:50]},
            )
        envelope = encode_envelope(manifest)
        job.result = {
            "envelope": envelope,
            "stats": envelope["stats"],
            "verification": manifest["verification"],
        }
        job.metrics["missing_objects"] = len(state["missing"])
        # The working state is now redundant with the envelope.
        job.state = {"platform": state["platform"]}
        job.enter_phase(ExportPhase.COMPLETED.value)
        job.status = JobStatus.COMPLETED
        job.finished_at_tick = self._host.tick

        if job.transfer_id is None:
            released = self._lock.unlock(job.platform_name)
            if released.is_err():
                logger.warning("Export %s: unlock failed: %s", job.id, released.error)
        logger.info(
            "Export %s completed: %d objects, %d items, %.1f fluid units",
            job.id,
            envelope["stats"]["entities"],
            envelope["stats"]["items"],
            envelope["stats"]["fluids"],
        )

    def on_failure(self, job: Job) -> None:
        """Release the lock of a failed standalone export."""
        if job.transfer_id is None and self._lock.is_locked(job.platform_name):
            self._lock.unlock(job.platform_name)
