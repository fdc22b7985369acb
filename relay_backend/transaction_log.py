"""Transaction log for platform transfers.

Every state change of a transfer is recorded as a timestamped event, kept
in memory for queries and appended to a JSON-lines file so the history
survives a restart.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

import orjson

logger = logging.getLogger(__name__)

MAX_EVENTS = 5000  # Keep last N events in memory


@dataclass
class TransactionEvent:
    """One timestamped event in a transfer's life."""

    transfer_id: str
    timestamp: str  # ISO format
    event: str
    status: str
    phase: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class TransactionLog:
    def __init__(self, path: Optional[Path] = None, max_events: int = MAX_EVENTS) -> None:
        self._path = Path(path) if path else None
        self._events: Deque[TransactionEvent] = deque(maxlen=max_events)
        if self._path is not None:
            self.load()

    def record(
        self,
        transfer_id: str,
        event: str,
        status: str,
        *,
        phase: Optional[str] = None,
        message: Optional[str] = None,
        **data: Any,
    ) -> TransactionEvent:
        """Log a transaction event.

        Args:
            transfer_id: Transfer the event belongs to
            event: Event name (``state_change``, ``phase_completed``...)
            status: Transfer status at the time of the event
            phase: Phase the event concerns, if any
            message: Human-readable detail
            **data: Extra JSON-compatible fields

        Returns:
            The created TransactionEvent
        """
        entry = TransactionEvent(
            transfer_id=transfer_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            status=status,
            phase=phase,
            message=message,
            data=data,
        )
        self._events.append(entry)
        self._append_to_log(entry)
        logger.debug("Transfer %s: %s (%s) %s", transfer_id, event, status, message or "")
        return entry

    def _append_to_log(self, entry: TransactionEvent) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "ab") as f:
                f.write(orjson.dumps(asdict(entry)) + b"\n")
        except OSError as e:
            logger.error("Failed to write transaction log: %s", e)

    def events_for(self, transfer_id: str) -> List[Dict[str, Any]]:
        """All events of one transfer, oldest first."""
        return [asdict(e) for e in self._events if e.transfer_id == transfer_id]

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent events first."""
        events = list(self._events)[-limit:] if limit > 0 else []
        events.reverse()
        return [asdict(e) for e in events]

    def __len__(self) -> int:
        return len(self._events)

    def load(self) -> int:
        """Load events from the log file into memory.

        Returns:
            Number of events loaded
        """
        if self._path is None or not self._path.exists():
            logger.info("No transaction log found, starting fresh")
            return 0
        loaded = 0
        with open(self._path, "rb") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    self._events.append(TransactionEvent(**orjson.loads(line)))
                    loaded += 1
                except (orjson.JSONDecodeError, TypeError) as e:
                    logger.warning("Failed to parse transaction log line: %s", e)
        logger.info("Loaded %d transaction events from %s", loaded, self._path)
        return loaded

    def clear(self) -> None:
        """Clear all events (memory and file)."""
        self._events.clear()
        if self._path is not None and self._path.exists():
            self._path.unlink()
        logger.warning("Transaction log cleared")
