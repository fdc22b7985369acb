"""Durable store for exported envelopes awaiting transmission.

The orchestrator publishes an export here and waits until it reads back
intact before any chunk is sent, so a controller restart mid-transfer
still has the exported state on disk.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from relay_core.config.transport import POLL_INTERVAL_SECONDS, STORE_TIMEOUT_SECONDS
from relay_core.exceptions import TimeoutFailure
from relay_core.keys import sanitize_name

logger = logging.getLogger(__name__)


class BaseExportStore:
    def put(self, key: str, envelope: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    async def wait_for(
        self,
        key: str,
        timeout: float = STORE_TIMEOUT_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> Dict[str, Any]:
        """Poll until *key* is readable.

        Raises:
            TimeoutFailure: not readable within *timeout* seconds
        """
        deadline = time.monotonic() + timeout
        while True:
            envelope = self.get(key)
            if envelope is not None:
                return envelope
            if time.monotonic() >= deadline:
                raise TimeoutFailure(
                    f"Export '{key}' not readable after {timeout:.1f}s",
                    counters={"timeout_seconds": timeout},
                )
            await asyncio.sleep(poll_interval)


class MemoryExportStore(BaseExportStore):
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def put(self, key: str, envelope: Dict[str, Any]) -> None:
        self._data[key] = envelope

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class FileExportStore(BaseExportStore):
    """One orjson file per export under *directory*."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._dir / f"{sanitize_name(key)}.json"

    def put(self, key: str, envelope: Dict[str, Any]) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps(envelope))
        tmp.replace(path)
        logger.debug("Stored export %s (%d bytes)", key, path.stat().st_size)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("Export %s unreadable: %s", key, e)
            return None

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))
