"""Outbound chunk pushing with throughput pacing and retries."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from relay_core.config.transport import MAX_BYTES_PER_SECOND, SEND_RETRIES, SEND_RETRY_DELAY
from relay_core.exceptions import TransportError
from relay_backend.transport.chunking import Chunk

logger = logging.getLogger(__name__)

SendFn = Callable[[Chunk], Awaitable[Any]]


class ChunkSender:
    """Push chunks through an async *send* callable.

    Each chunk is retried with exponential backoff when *send* raises
    ``TransportError``. With ``max_bytes_per_second`` set, sending is paced
    so the running average never exceeds it.
    """

    def __init__(
        self,
        send: SendFn,
        max_bytes_per_second: int = MAX_BYTES_PER_SECOND,
        retries: int = SEND_RETRIES,
        retry_delay: float = SEND_RETRY_DELAY,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._send = send
        self._max_bps = max_bytes_per_second
        self._retries = retries
        self._retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep

    async def _send_one(self, chunk: Chunk) -> int:
        attempt = 0
        while True:
            try:
                await self._send(chunk)
                return attempt
            except TransportError as e:
                if attempt >= self._retries:
                    raise TransportError(
                        f"Chunk {chunk.index}/{chunk.total} of {chunk.session_id} failed after "
                        f"{attempt + 1} attempts: {e.message}",
                        counters={"index": chunk.index, "attempts": attempt + 1},
                    ) from e
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    "Chunk %d/%d send failed (%s), retrying in %.1fs... (attempt %d/%d)",
                    chunk.index,
                    chunk.total,
                    e.message,
                    delay,
                    attempt + 1,
                    self._retries,
                )
                await self._sleep(delay)
                attempt += 1

    async def send_all(self, chunks: Iterable[Chunk]) -> Dict[str, Any]:
        """Send every chunk in order; returns throughput metrics."""
        started = time.monotonic()
        sent_bytes = 0
        sent = 0
        retries = 0
        for chunk in chunks:
            retries += await self._send_one(chunk)
            sent += 1
            sent_bytes += len(chunk.data)
            if self._max_bps > 0:
                due = sent_bytes / self._max_bps
                elapsed = time.monotonic() - started
                if due > elapsed:
                    await self._sleep(due - elapsed)
        seconds = time.monotonic() - started
        return {
            "chunks": sent,
            "bytes": sent_bytes,
            "retries": retries,
            "seconds": round(seconds, 3),
            "bytes_per_second": round(sent_bytes / seconds, 1) if seconds > 0 else None,
        }
