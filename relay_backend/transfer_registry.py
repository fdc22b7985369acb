"""Durable transfer records.

The registry is the controller's memory of every transfer. Records are
rewritten to disk on each change; on startup ``recover`` fails any record
that was still in flight, because the coroutine driving it died with the
previous process.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from relay_core.config.transport import MAX_TRANSFER_RECORDS
from relay_core.exceptions import InterruptedJobError

logger = logging.getLogger(__name__)


class TransferStatus(str, Enum):
    CREATED = "created"
    EXPORTING = "exporting"
    AWAITING_STORE = "awaiting_store"
    TRANSMITTING = "transmitting"
    IMPORTING = "importing"
    AWAITING_VALIDATION = "awaiting_validation"
    COMPLETED = "completed"
    FAILED = "failed"
    CLEANUP_FAILED = "cleanup_failed"


TERMINAL_STATUSES = frozenset(
    {TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CLEANUP_FAILED}
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TransferRecord:
    """State of one platform transfer between two instances."""

    transfer_id: str
    source_instance: str
    dest_instance: str
    platform_name: str
    force_name: str
    status: TransferStatus = TransferStatus.CREATED
    keep_source: bool = False
    export_job_id: Optional[str] = None
    import_job_id: Optional[str] = None
    dest_platform_name: Optional[str] = None
    phase_timings: Dict[str, float] = field(default_factory=dict)
    last_phase: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    validation: Optional[Dict[str, Any]] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferRecord":
        data = dict(data)
        data["status"] = TransferStatus(data["status"])
        return cls(**data)


class TransferRegistry:
    def __init__(self, path: Optional[Path] = None, max_records: int = MAX_TRANSFER_RECORDS) -> None:
        self._path = Path(path) if path else None
        self._max_records = max_records
        self._records: Dict[str, TransferRecord] = {}
        if self._path is not None and self._path.exists():
            self._load()

    def _load(self) -> None:
        try:
            data = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.error("Failed to load transfer registry %s: %s", self._path, e)
            return
        for entry in data.get("transfers", []):
            try:
                record = TransferRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable transfer record: %s", e)
                continue
            self._records[record.transfer_id] = record
        logger.info("Loaded %d transfer records from %s", len(self._records), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps({"transfers": [r.to_dict() for r in self._records.values()]}))
        tmp.replace(self._path)

    def _trim(self) -> None:
        excess = len(self._records) - self._max_records
        if excess <= 0:
            return
        # Oldest terminal records go first; in-flight ones are never dropped.
        for record in sorted(self._records.values(), key=lambda r: r.created_at):
            if excess <= 0:
                break
            if record.is_terminal:
                del self._records[record.transfer_id]
                excess -= 1

    def save(self, record: TransferRecord) -> None:
        record.updated_at = utc_now()
        self._records[record.transfer_id] = record
        self._trim()
        self._save()

    def get(self, transfer_id: str) -> Optional[TransferRecord]:
        return self._records.get(transfer_id)

    def list(self, status: Optional[TransferStatus] = None) -> List[TransferRecord]:
        """Records newest first, optionally filtered by status."""
        records = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        if status is not None:
            records = [r for r in records if r.status == status]
        return records

    def active(self) -> List[TransferRecord]:
        return [r for r in self._records.values() if not r.is_terminal]

    def __len__(self) -> int:
        return len(self._records)

    def recover(self) -> List[str]:
        """Fail every record left in flight by a previous process."""
        recovered = []
        for record in self.active():
            phase = record.last_phase or record.status.value
            record.error = InterruptedJobError(
                f"Transfer interrupted during {phase}", counters={"last_phase": phase}
            ).to_dict()
            record.status = TransferStatus.FAILED
            record.failed_at = utc_now()
            recovered.append(record.transfer_id)
            logger.warning("Transfer %s was interrupted during %s; marked failed", record.transfer_id, phase)
        if recovered:
            self._save()
        return recovered
