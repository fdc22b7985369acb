"""Instance service: one simulation host with its lock, processor and receiver.

All mutation of the host happens on the event loop thread, either from the
tick loop or from request handlers between ticks, so host access needs no
locking.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from relay_core.config.relay_config import RelayConfig
from relay_core.exceptions import JobNotFoundError, RelayError, StructuralError
from relay_core.host import SimulationHost
from relay_core.jobs.processor import AsyncBatchProcessor
from relay_core.jobs.store import FileJobStore, MemoryJobStore
from relay_core.keys import sanitize_name
from relay_core.lock import LockStore, QuiescenceLock
from relay_core.scanning.handlers import ExtractorRegistry
from relay_core.simhost import MemoryHost
from relay_backend.transport.chunking import Chunk, ChunkReceiver, decode_payload

logger = logging.getLogger(__name__)

DEFAULT_TICK_RATE = 60.0


class InstanceService:
    """Everything one relay instance exposes to the controller."""

    def __init__(
        self,
        instance_id: str,
        host: Optional[SimulationHost] = None,
        config: Optional[RelayConfig] = None,
        data_dir: Optional[Path] = None,
        registry: Optional[ExtractorRegistry] = None,
    ) -> None:
        self.instance_id = instance_id
        self.config = config or RelayConfig()
        self.host = host if host is not None else MemoryHost()
        data_dir = Path(data_dir) if data_dir else None
        lock_store = LockStore(data_dir / "locks.json" if data_dir else None)
        job_store = FileJobStore(data_dir / "jobs") if data_dir else MemoryJobStore()
        self.lock = QuiescenceLock(self.host, lock_store)
        self.processor = AsyncBatchProcessor(
            self.host,
            self.lock,
            job_store,
            self.config.processor,
            self.config.reconciliation,
            registry=registry,
        )
        transport = self.config.transport
        self.receiver = ChunkReceiver(
            max_sessions=transport.max_sessions,
            max_session_age=transport.max_session_age_seconds,
            max_total_chunks=transport.max_total_chunks,
        )
        self.export_dir = data_dir / "export-files" if data_dir else None
        self._clones: Dict[str, Dict[str, Any]] = {}
        self._last_reap_tick = self.host.tick

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance the host one tick, then every active job one batch."""
        self.host.step()
        self.processor.process_tick()
        self._advance_clones()
        if self.host.tick - self._last_reap_tick >= self.config.lock.reap_interval_ticks:
            self._last_reap_tick = self.host.tick
            self.housekeeping()

    def housekeeping(self) -> Dict[str, List[str]]:
        return {
            "reaped_locks": self.lock.reap_stale(self.config.lock.stale_max_age_ticks),
            "expired_sessions": self.receiver.prune(),
            "pruned_jobs": self.processor.cleanup(),
        }

    def resume(self) -> Dict[str, List[str]]:
        return self.processor.resume()

    # ------------------------------------------------------------------
    # Platforms and locks
    # ------------------------------------------------------------------

    def _platform(self, name: str, force_name: str):
        platform = self.host.get_platform(name, force_name)
        if platform is None or not platform.valid:
            raise StructuralError(f"Platform '{name}' not found")
        return platform

    def list_platforms(self, force_name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {
                "name": p.name,
                "force": p.force,
                "index": p.index,
                "paused": bool(p.paused),
                "hidden": bool(p.hidden),
                "locked": self.lock.is_locked(p.name),
                "object_count": len(p.surface.find_objects()),
            }
            for p in self.host.list_platforms(force_name)
        ]

    def lock_platform(self, name: str, force_name: str, owner: Optional[str] = None) -> Dict[str, Any]:
        return self.lock.lock(name, force_name, owner=owner).unwrap().to_dict()

    def unlock_platform(self, name: str) -> int:
        return self.lock.unlock(name).unwrap()

    def lock_status(self, name: str) -> Optional[Dict[str, Any]]:
        record = self.lock.get(name)
        return record.to_dict() if record is not None else None

    def delete_platform(self, name: str, force_name: str) -> bool:
        platform = self._platform(name, force_name)
        self.host.delete_platform(platform)
        self.lock.release(name)
        logger.info("Deleted platform %s on %s", name, self.instance_id)
        return True

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def queue_export(self, name: str, force_name: str, transfer_id: Optional[str] = None) -> str:
        return self.processor.queue_export(name, force_name, transfer_id)

    def job_status(self, job_id: str) -> Dict[str, Any]:
        return self.processor.get_job_status(job_id)

    def get_export(self, job_id: str) -> Dict[str, Any]:
        return self.processor.get_export(job_id)

    def queue_import(
        self,
        data: Dict[str, Any],
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str:
        return self.processor.queue_import(data, platform_name, force_name, transfer_id)

    def activate_import(self, job_id: str) -> Dict[str, Any]:
        return self.processor.activate_import(job_id)

    def validation_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self.processor.get_job(job_id)
        return (job.result or {}).get("validation") or job.state.get("validation")

    def list_exports(self) -> List[Dict[str, Any]]:
        return self.processor.list_exports()

    def clear_exports(self, keep: int = 10) -> List[str]:
        return self.processor.clear_exports(keep)

    def write_export_file(self, job_id: str, filename: Optional[str] = None) -> Dict[str, Any]:
        """Write a completed export's envelope under the instance's data directory."""
        if self.export_dir is None:
            raise StructuralError("Instance has no data directory for export files")
        envelope = self.get_export(job_id)
        job = self.processor.get_job(job_id)
        stem = Path(filename).stem if filename else f"{job.platform_name}_{job.finished_at_tick}"
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_dir / f"{sanitize_name(stem)}.json"
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps(envelope))
        tmp.replace(path)
        size = path.stat().st_size
        logger.info("Wrote export %s to %s (%d bytes)", job_id, path, size)
        return {"job_id": job_id, "path": str(path), "size_bytes": size}

    # ------------------------------------------------------------------
    # Clones
    # ------------------------------------------------------------------

    def clone_platform(self, source_name: str, dest_name: str, force_name: str = "player") -> Dict[str, Any]:
        """Copy a platform on this instance under a new name.

        The copy is a standalone export followed by an import, so the
        source is unlocked again as soon as its export completes. Progress
        is reported by ``clone_status``.
        """
        if not dest_name:
            raise StructuralError("Destination platform name is required")
        self._platform(source_name, force_name)
        if self.host.get_platform(dest_name, force_name) is not None:
            raise StructuralError(f"Platform '{dest_name}' already exists")
        export_id = self.queue_export(source_name, force_name)
        clone = {
            "clone_id": export_id,
            "source_platform": source_name,
            "platform_name": dest_name,
            "force_name": force_name,
            "status": "exporting",
            "export_job_id": export_id,
            "import_job_id": None,
            "error": None,
        }
        self._clones[export_id] = clone
        logger.info("Cloning %s to %s (export %s)", source_name, dest_name, export_id)
        return dict(clone)

    def clone_status(self, clone_id: str) -> Dict[str, Any]:
        clone = self._clones.get(clone_id)
        if clone is None:
            raise JobNotFoundError(f"Clone '{clone_id}' not found")
        return dict(clone)

    def _advance_clones(self) -> None:
        for clone in self._clones.values():
            if clone["status"] not in ("exporting", "importing"):
                continue
            job_id = clone["import_job_id"] or clone["export_job_id"]
            try:
                status = self.processor.get_job_status(job_id)
                if status["status"] == "failed":
                    clone["status"] = "failed"
                    clone["error"] = status["error"]
                elif status["status"] != "completed":
                    continue
                elif clone["status"] == "exporting":
                    envelope = self.processor.get_export(job_id)
                    clone["import_job_id"] = self.queue_import(
                        envelope, clone["platform_name"], clone["force_name"]
                    )
                    clone["status"] = "importing"
                else:
                    clone["platform_name"] = status["result"]["platform_name"]
                    clone["status"] = "completed"
                    logger.info("Clone of %s completed as %s", clone["source_platform"], clone["platform_name"])
            except RelayError as e:
                clone["status"] = "failed"
                clone["error"] = e.to_dict()
            if clone["status"] == "failed":
                logger.warning("Clone of %s failed: %s", clone["source_platform"], clone["error"])

    # ------------------------------------------------------------------
    # Chunked import sessions
    # ------------------------------------------------------------------

    def begin_import_session(
        self, session_id: str, total: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return self.receiver.begin_session(session_id, total, metadata)

    def receive_chunk(self, chunk: Chunk) -> Dict[str, Any]:
        return self.receiver.receive(chunk)

    def finalize_import_session(
        self,
        session_id: str,
        *,
        checksum: Optional[str] = None,
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str:
        """Assemble a complete session and queue its import."""
        envelope = decode_payload(self.receiver.assemble(session_id, checksum))
        return self.queue_import(envelope, platform_name, force_name, transfer_id)


class TickLoop:
    """Drives ``InstanceService.tick`` from a single asyncio task."""

    def __init__(self, service: InstanceService, tick_rate: float = DEFAULT_TICK_RATE) -> None:
        self._service = service
        self._interval = 1.0 / tick_rate if tick_rate > 0 else 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name=f"tick-{self._service.instance_id}")
            logger.info("Tick loop started for %s", self._service.instance_id)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Tick loop stopped for %s", self._service.instance_id)

    async def _run(self) -> None:
        while True:
            try:
                self._service.tick()
            except Exception:
                logger.exception("Tick failed on %s", self._service.instance_id)
            await asyncio.sleep(self._interval)
