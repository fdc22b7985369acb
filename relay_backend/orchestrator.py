"""Transfer orchestrator: moves one platform from a source to a destination instance.

A transfer walks a fixed sequence of phases. Each phase is a status of the
transfer record; the record only moves along the transitions declared in
``TRANSFER_TRANSITIONS`` and every move is persisted, logged to the
transaction log, timed and broadcast to WebSocket subscribers.

Nothing is rolled back on failure. The source stays locked and the
destination platform (if one was created) stays paused and hidden, so an
operator can inspect both ends.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from relay_core.config.relay_config import TransportConfig
from relay_core.exceptions import (
    CleanupError,
    JobNotFoundError,
    RelayError,
    StructuralError,
    TimeoutFailure,
    ValidationFailure,
    error_from_dict,
)
from relay_core.state_machine import StateMachine
from relay_backend.export_store import BaseExportStore
from relay_backend.gateways import InstanceGateway
from relay_backend.subscriptions import EventBroadcaster
from relay_backend.transaction_log import TransactionLog
from relay_backend.transfer_registry import (
    TransferRecord,
    TransferRegistry,
    TransferStatus,
    utc_now,
)
from relay_backend.transport.chunking import choose_chunk_size, encode_payload, split_payload
from relay_backend.transport.chunking import checksum as payload_checksum
from relay_backend.transport.sender import ChunkSender

logger = logging.getLogger(__name__)

S = TransferStatus

TRANSFER_TRANSITIONS: Dict[TransferStatus, List[TransferStatus]] = {
    S.CREATED: [S.EXPORTING, S.FAILED],
    S.EXPORTING: [S.AWAITING_STORE, S.FAILED],
    S.AWAITING_STORE: [S.TRANSMITTING, S.FAILED],
    S.TRANSMITTING: [S.IMPORTING, S.FAILED],
    S.IMPORTING: [S.AWAITING_VALIDATION, S.FAILED],
    S.AWAITING_VALIDATION: [S.COMPLETED, S.CLEANUP_FAILED, S.FAILED],
    S.COMPLETED: [],
    S.FAILED: [],
    S.CLEANUP_FAILED: [],
}


@dataclass
class TransferRequest:
    source_instance: str
    dest_instance: str
    platform_name: str
    force_name: str = "player"
    keep_source: bool = False
    dest_platform_name: Optional[str] = None


class TransferOrchestrator:
    """Drives transfers between instances reachable through gateways."""

    def __init__(
        self,
        gateways: Dict[str, InstanceGateway],
        export_store: BaseExportStore,
        registry: TransferRegistry,
        txlog: TransactionLog,
        broadcaster: Optional[EventBroadcaster] = None,
        config: Optional[TransportConfig] = None,
    ) -> None:
        self.gateways = gateways
        self.export_store = export_store
        self.registry = registry
        self.txlog = txlog
        self.broadcaster = broadcaster or EventBroadcaster()
        self.config = config or TransportConfig()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._machines: Dict[str, StateMachine[TransferStatus]] = {}

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    def _gateway(self, instance_id: str) -> InstanceGateway:
        gateway = self.gateways.get(instance_id)
        if gateway is None:
            raise StructuralError(f"Unknown instance '{instance_id}'")
        return gateway

    def create_transfer(self, request: TransferRequest) -> TransferRecord:
        """Validate *request* and persist a new record in ``created``.

        Raises:
            StructuralError: unknown instance or source equal to destination
        """
        self._gateway(request.source_instance)
        self._gateway(request.dest_instance)
        if request.source_instance == request.dest_instance:
            raise StructuralError("Source and destination instance must differ")
        if not request.platform_name:
            raise StructuralError("Platform name is required")

        record = TransferRecord(
            transfer_id=uuid.uuid4().hex[:12],
            source_instance=request.source_instance,
            dest_instance=request.dest_instance,
            platform_name=request.platform_name,
            force_name=request.force_name,
            keep_source=request.keep_source,
            dest_platform_name=request.dest_platform_name,
        )
        self._machines[record.transfer_id] = StateMachine(
            TransferStatus.CREATED, TRANSFER_TRANSITIONS, track_history=True
        )
        self.registry.save(record)
        self.txlog.record(
            record.transfer_id,
            "transfer_created",
            record.status.value,
            message=f"{record.platform_name}: {record.source_instance} -> {record.dest_instance}",
        )
        self._publish("transfer_created", record)
        logger.info(
            "Transfer %s created: %s from %s to %s",
            record.transfer_id,
            record.platform_name,
            record.source_instance,
            record.dest_instance,
        )
        return record

    def start_transfer(self, request: TransferRequest) -> str:
        """Create a transfer and run it in the background."""
        record = self.create_transfer(request)
        task = asyncio.create_task(self.run_transfer(record.transfer_id), name=f"transfer-{record.transfer_id}")
        self._tasks[record.transfer_id] = task
        task.add_done_callback(lambda _t, tid=record.transfer_id: self._tasks.pop(tid, None))
        return record.transfer_id

    async def wait(self, transfer_id: str) -> TransferRecord:
        """Wait for a background transfer to finish and return its record."""
        task = self._tasks.get(transfer_id)
        if task is not None:
            await task
        return self.get_transfer(transfer_id)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def _machine(self, record: TransferRecord) -> StateMachine[TransferStatus]:
        machine = self._machines.get(record.transfer_id)
        if machine is None:
            machine = StateMachine(TransferStatus.CREATED, TRANSFER_TRANSITIONS, track_history=True)
            machine.force_state(record.status, reason="restored from registry")
            self._machines[record.transfer_id] = machine
        return machine

    def _advance(self, record: TransferRecord, target: TransferStatus, message: str = "") -> None:
        machine = self._machine(record)
        previous = machine.state
        seconds = round(machine.elapsed(), 3)
        machine.transition(target, reason=message)
        record.phase_timings[previous.value] = seconds

        record.status = target
        record.last_phase = previous.value if target in (S.FAILED, S.CLEANUP_FAILED) else target.value
        if target == S.COMPLETED:
            record.completed_at = utc_now()
        elif target in (S.FAILED, S.CLEANUP_FAILED):
            record.failed_at = utc_now()
        self.registry.save(record)
        self.txlog.record(
            record.transfer_id,
            "state_change",
            target.value,
            phase=previous.value,
            message=message or None,
            seconds=record.phase_timings[previous.value],
        )

    def _publish(self, event: str, record: TransferRecord, **extra: Any) -> None:
        payload = {
            "type": event,
            "transfer_id": record.transfer_id,
            "status": record.status.value,
            "last_phase": record.last_phase,
            "phase_timings": dict(record.phase_timings),
            "metrics": dict(record.metrics),
            "timestamp": utc_now(),
        }
        payload.update(extra)
        self.broadcaster.publish(payload)

    def _enter(self, record: TransferRecord, target: TransferStatus, message: str = "") -> None:
        self._advance(record, target, message)
        self._publish("transfer_updated", record)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def _poll(
        self,
        fetch: Callable[[], Awaitable[Dict[str, Any]]],
        done: Callable[[Dict[str, Any]], bool],
        timeout: float,
        what: str,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            status = await fetch()
            if done(status):
                return status
            if time.monotonic() >= deadline:
                raise TimeoutFailure(
                    f"Timed out after {timeout:.1f}s waiting for {what}",
                    counters={"timeout_seconds": timeout, "last_status": status.get("status")},
                )
            await asyncio.sleep(self.config.poll_interval_seconds)

    @staticmethod
    def _job_finished(status: Dict[str, Any]) -> bool:
        return status.get("status") in ("completed", "failed")

    @staticmethod
    def _job_error(status: Dict[str, Any]) -> RelayError:
        error = status.get("error")
        if isinstance(error, dict):
            return error_from_dict(error)
        return RelayError(f"Job {status.get('job_id')} failed")

    async def run_transfer(self, transfer_id: str) -> TransferRecord:
        """Run a created transfer to a terminal status."""
        record = self.get_transfer(transfer_id)
        if record.status != S.CREATED:
            raise StructuralError(
                f"Transfer {transfer_id} already ran", counters={"status": record.status.value}
            )
        source = self._gateway(record.source_instance)
        dest = self._gateway(record.dest_instance)
        started = time.monotonic()
        try:
            await self._export(record, source)
            envelope = await self._store(record)
            session_id = await self._transmit(record, dest, envelope)
            await self._import(record, dest, session_id)
            await self._validate(record, dest)
            await self._finish(record, source, dest)
        except asyncio.CancelledError:
            logger.warning("Transfer %s cancelled during %s", transfer_id, record.status.value)
            raise
        except RelayError as e:
            self._fail(record, e)
        except Exception as e:
            logger.exception("Transfer %s crashed during %s", transfer_id, record.status.value)
            self._fail(record, RelayError(f"{type(e).__name__}: {e}"))
        record.metrics["total_seconds"] = round(time.monotonic() - started, 3)
        self.registry.save(record)
        return record

    async def _export(self, record: TransferRecord, source: InstanceGateway) -> None:
        self._enter(record, S.EXPORTING)
        lock = await source.lock_platform(record.platform_name, record.force_name, owner=record.transfer_id)
        record.metrics["frozen_count"] = lock.get("frozen_count", 0)
        record.export_job_id = await source.queue_export(
            record.platform_name, record.force_name, transfer_id=record.transfer_id
        )
        self.registry.save(record)
        status = await self._poll(
            lambda: source.job_status(record.export_job_id),
            self._job_finished,
            self.config.export_timeout_seconds,
            f"export job {record.export_job_id}",
        )
        if status["status"] == "failed":
            raise self._job_error(status)
        stats = (status.get("result") or {}).get("stats") or {}
        record.metrics["export"] = stats

    async def _store(self, record: TransferRecord) -> Dict[str, Any]:
        self._enter(record, S.AWAITING_STORE)
        source = self._gateway(record.source_instance)
        envelope = await source.get_export(record.export_job_id)
        self.export_store.put(record.transfer_id, envelope)
        return await self.export_store.wait_for(
            record.transfer_id,
            timeout=self.config.store_timeout_seconds,
            poll_interval=self.config.poll_interval_seconds,
        )

    async def _transmit(self, record: TransferRecord, dest: InstanceGateway, envelope: Dict[str, Any]) -> str:
        self._enter(record, S.TRANSMITTING)
        payload = encode_payload(envelope)
        chunk_size = choose_chunk_size(
            len(payload), self.config.chunk_size, self.config.adaptive_chunking
        )
        session_id = record.transfer_id
        chunks = split_payload(session_id, payload, chunk_size)
        await dest.begin_import_session(
            session_id,
            len(chunks),
            {"transfer_id": record.transfer_id, "platform_name": record.platform_name},
        )
        sender = ChunkSender(
            dest.send_chunk,
            max_bytes_per_second=self.config.max_bytes_per_second,
            retries=self.config.send_retries,
        )
        record.metrics["transmission"] = await sender.send_all(chunks)
        record.metrics["checksum"] = payload_checksum(payload)
        return session_id

    async def _import(self, record: TransferRecord, dest: InstanceGateway, session_id: str) -> None:
        self._enter(record, S.IMPORTING)
        record.import_job_id = await dest.finalize_import_session(
            session_id,
            checksum=record.metrics["checksum"],
            platform_name=record.dest_platform_name or record.platform_name,
            force_name=record.force_name,
            transfer_id=record.transfer_id,
        )
        self.registry.save(record)
        status = await self._poll(
            lambda: dest.job_status(record.import_job_id),
            self._job_finished,
            self.config.validation_timeout_seconds,
            f"import job {record.import_job_id}",
        )
        result = status.get("result") or {}
        if result.get("platform_name"):
            record.dest_platform_name = result["platform_name"]
        if status["status"] == "failed":
            if result.get("validation") is not None:
                # The import ran as far as validation and was rejected there.
                self._enter(record, S.AWAITING_VALIDATION)
                self._receive_validation(record, result["validation"])
            raise self._job_error(status)

    async def _validate(self, record: TransferRecord, dest: InstanceGateway) -> None:
        self._enter(record, S.AWAITING_VALIDATION)
        validation = await dest.validation_result(record.import_job_id)
        self._receive_validation(record, validation)
        if not validation or not validation.get("passed"):
            raise ValidationFailure(
                f"Import of '{record.platform_name}' failed validation",
                counters={"mismatches": (validation or {}).get("mismatchDetails", [])[:20]},
            )

    def _receive_validation(self, record: TransferRecord, validation: Optional[Dict[str, Any]]) -> None:
        record.validation = validation
        self.registry.save(record)
        self.txlog.record(
            record.transfer_id,
            "validation_received",
            record.status.value,
            phase=S.AWAITING_VALIDATION.value,
            passed=bool(validation and validation.get("passed")),
        )
        self._publish("validation_received", record, validation=validation)

    async def _finish(self, record: TransferRecord, source: InstanceGateway, dest: InstanceGateway) -> None:
        activation = await dest.activate_import(record.import_job_id)
        record.metrics["loss_analysis"] = activation.get("loss_analysis")
        try:
            if record.keep_source:
                await source.unlock_platform(record.platform_name)
            else:
                await source.delete_platform(record.platform_name, record.force_name)
        except RelayError as e:
            error = CleanupError(
                f"Source cleanup failed: {e.message}", counters={"cause": e.to_dict()}
            )
            record.error = error.to_dict()
            self._advance(record, S.CLEANUP_FAILED, error.message)
            self._publish("transfer_failed", record, error=record.error)
            logger.error("Transfer %s imported but source cleanup failed: %s", record.transfer_id, e)
            return
        self.export_store.delete(record.transfer_id)
        self._advance(record, S.COMPLETED)
        self._publish("transfer_completed", record)
        logger.info(
            "Transfer %s completed in %d phases", record.transfer_id, len(record.phase_timings)
        )

    def _fail(self, record: TransferRecord, error: RelayError) -> None:
        record.error = error.to_dict()
        self._advance(record, S.FAILED, error.message)
        self._publish("transfer_failed", record, error=record.error)
        logger.error(
            "Transfer %s failed during %s: %s", record.transfer_id, record.last_phase, error.message
        )

    # ------------------------------------------------------------------
    # Recovery and queries
    # ------------------------------------------------------------------

    def recover(self) -> List[str]:
        recovered = self.registry.recover()
        for transfer_id in recovered:
            record = self.registry.get(transfer_id)
            self.txlog.record(
                transfer_id,
                "transfer_failed",
                record.status.value,
                phase=record.last_phase,
                message="interrupted by restart",
            )
        return recovered

    def get_transfer(self, transfer_id: str) -> TransferRecord:
        record = self.registry.get(transfer_id)
        if record is None:
            raise JobNotFoundError(f"Transfer '{transfer_id}' not found")
        return record

    def list_transfers(self, status: Optional[TransferStatus] = None) -> List[TransferRecord]:
        return self.registry.list(status)

    def get_transaction_log(self, transfer_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        if transfer_id is not None:
            self.get_transfer(transfer_id)
            return self.txlog.events_for(transfer_id)
        return self.txlog.recent(limit)

    def list_stored_exports(self) -> List[Dict[str, Any]]:
        """Envelopes held in the export store, keyed by transfer id."""
        exports = []
        for key in self.export_store.keys():
            envelope = self.export_store.get(key) or {}
            record = self.registry.get(key)
            exports.append(
                {
                    "transfer_id": key,
                    "platform_name": envelope.get("platform_name"),
                    "tick": envelope.get("tick"),
                    "stats": envelope.get("stats"),
                    "status": record.status.value if record is not None else None,
                }
            )
        return exports

    def clear_stored_exports(self) -> List[str]:
        """Delete stored envelopes of every transfer that is no longer running."""
        removed = []
        for key in self.export_store.keys():
            record = self.registry.get(key)
            if record is not None and not record.is_terminal:
                continue
            self.export_store.delete(key)
            removed.append(key)
        if removed:
            logger.info("Cleared %d stored exports", len(removed))
        return removed

    def build_summary(self) -> Dict[str, Any]:
        """Counts per status plus average phase timings of completed transfers."""
        records = self.registry.list()
        by_status: Dict[str, int] = {}
        for record in records:
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1

        completed = [r for r in records if r.status == S.COMPLETED]
        totals: Dict[str, float] = {}
        for record in completed:
            for phase, seconds in record.phase_timings.items():
                totals[phase] = totals.get(phase, 0.0) + seconds
        averages = {
            phase: round(total / len(completed), 3) for phase, total in totals.items()
        } if completed else {}

        return {
            "total": len(records),
            "active": len(self.registry.active()),
            "by_status": by_status,
            "average_phase_seconds": averages,
            "recent_failures": [
                {"transfer_id": r.transfer_id, "last_phase": r.last_phase, "error": r.error}
                for r in records
                if r.status in (S.FAILED, S.CLEANUP_FAILED)
            ][:10],
        }
