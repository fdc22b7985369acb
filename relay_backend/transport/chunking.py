"""Chunked transport of manifest envelopes.

Large envelopes are encoded (orjson -> deflate -> base64), split into
numbered chunks and reassembled on the receiving instance. The receiver
never assumes order: chunks may arrive shuffled or more than once, and a
session completes when every index from 1 to ``total`` is present.
"""

import base64
import hashlib
import logging
import time
import zlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import orjson

from relay_core.config.processing import (
    MAX_IMPORT_SESSION_AGE_SECONDS,
    MAX_IMPORT_SESSIONS,
    MAX_TOTAL_CHUNKS,
)
from relay_core.config.transport import (
    DEFAULT_CHUNK_SIZE,
    LARGE_CHUNK_SIZE,
    MEDIUM_CHUNK_SIZE,
    MEDIUM_PAYLOAD_LIMIT,
    SMALL_PAYLOAD_LIMIT,
)
from relay_core.exceptions import CapacityError, JobNotFoundError, TransportError

logger = logging.getLogger(__name__)


def encode_payload(obj: Any) -> str:
    return base64.b64encode(zlib.compress(orjson.dumps(obj), 9)).decode("ascii")


def decode_payload(text: str) -> Any:
    try:
        return orjson.loads(zlib.decompress(base64.b64decode(text)))
    except (ValueError, zlib.error, orjson.JSONDecodeError) as e:
        raise TransportError(f"Payload could not be decoded: {e}") from e


def checksum(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Chunk:
    session_id: str
    index: int  # 1-based
    total: int
    data: str

    def to_dict(self) -> Dict[str, Any]:
        return {"session_id": self.session_id, "index": self.index, "total": self.total, "data": self.data}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            session_id=str(data["session_id"]),
            index=int(data["index"]),
            total=int(data["total"]),
            data=data["data"],
        )


def choose_chunk_size(size: int, default: int = DEFAULT_CHUNK_SIZE, adaptive: bool = True) -> int:
    """Chunk size for a payload of *size* bytes.

    Small payloads travel whole, medium ones in 50 KB chunks and large ones
    in 100 KB chunks. With adaptive sizing off, *default* is used as is.
    """
    if not adaptive:
        return max(1, default)
    if size <= SMALL_PAYLOAD_LIMIT:
        return max(1, size)
    if size <= MEDIUM_PAYLOAD_LIMIT:
        return MEDIUM_CHUNK_SIZE
    return LARGE_CHUNK_SIZE


def split_payload(session_id: str, data: str, chunk_size: int) -> List[Chunk]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    pieces = [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)] or [""]
    total = len(pieces)
    return [Chunk(session_id, index, total, piece) for index, piece in enumerate(pieces, start=1)]


@dataclass
class _Session:
    session_id: str
    total: int
    created_at: float
    updated_at: float
    chunks: Dict[int, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    duplicates: int = 0

    @property
    def complete(self) -> bool:
        return len(self.chunks) == self.total

    def missing(self) -> List[int]:
        return [i for i in range(1, self.total + 1) if i not in self.chunks]


class ChunkReceiver:
    """Reassembles chunked payloads under session, age and size limits."""

    def __init__(
        self,
        max_sessions: int = MAX_IMPORT_SESSIONS,
        max_session_age: float = MAX_IMPORT_SESSION_AGE_SECONDS,
        max_total_chunks: int = MAX_TOTAL_CHUNKS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_sessions = max_sessions
        self.max_session_age = max_session_age
        self.max_total_chunks = max_total_chunks
        self._clock = clock
        self._sessions: Dict[str, _Session] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise JobNotFoundError(f"Import session '{session_id}' not found")
        return session

    def begin_session(
        self, session_id: str, total: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Open (or re-open) a session expecting *total* chunks."""
        if total < 1 or total > self.max_total_chunks:
            raise TransportError(
                f"Session '{session_id}' declares {total} chunks (limit {self.max_total_chunks})",
                counters={"total": total, "max_total_chunks": self.max_total_chunks},
            )
        self.prune()
        session = self._sessions.get(session_id)
        if session is None:
            if len(self._sessions) >= self.max_sessions:
                raise CapacityError(
                    f"{len(self._sessions)} import sessions open (limit {self.max_sessions})",
                    counters={"sessions": len(self._sessions)},
                )
            now = self._clock()
            session = _Session(session_id, total, now, now)
            self._sessions[session_id] = session
            logger.debug("Opened import session %s (%d chunks)", session_id, total)
        elif session.total != total:
            raise TransportError(
                f"Session '{session_id}' expects {session.total} chunks, not {total}"
            )
        if metadata:
            session.metadata.update(metadata)
        return self.status(session_id)

    def receive(self, chunk: Chunk) -> Dict[str, Any]:
        """Store one chunk; the session is opened on first contact."""
        if chunk.index < 1 or chunk.index > chunk.total:
            raise TransportError(
                f"Chunk index {chunk.index} outside 1..{chunk.total}",
                counters={"index": chunk.index, "total": chunk.total},
            )
        if chunk.session_id not in self._sessions:
            self.begin_session(chunk.session_id, chunk.total)
        session = self._sessions[chunk.session_id]
        if session.total != chunk.total:
            raise TransportError(
                f"Chunk declares {chunk.total} chunks, session expects {session.total}"
            )
        if chunk.index in session.chunks:
            session.duplicates += 1
        session.chunks[chunk.index] = chunk.data
        session.updated_at = self._clock()
        return self.status(chunk.session_id)

    def is_complete(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.complete

    def metadata(self, session_id: str) -> Dict[str, Any]:
        return dict(self._get(session_id).metadata)

    def assemble(self, session_id: str, expected_checksum: Optional[str] = None) -> str:
        """Join a complete session's chunks in index order and close it.

        Raises:
            TransportError: chunks missing or checksum mismatch
        """
        session = self._get(session_id)
        if not session.complete:
            missing = session.missing()
            raise TransportError(
                f"Session '{session_id}' incomplete: {len(missing)} of {session.total} chunks missing",
                counters={"missing": missing[:50]},
            )
        data = "".join(session.chunks[i] for i in range(1, session.total + 1))
        del self._sessions[session_id]
        if expected_checksum is not None and checksum(data) != expected_checksum:
            raise TransportError(f"Checksum mismatch for session '{session_id}'")
        logger.debug("Assembled session %s: %d chunks, %d bytes", session_id, session.total, len(data))
        return data

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def prune(self) -> List[str]:
        """Drop sessions idle for longer than the age limit."""
        now = self._clock()
        expired = [
            sid for sid, s in self._sessions.items() if now - s.updated_at > self.max_session_age
        ]
        for sid in expired:
            session = self._sessions.pop(sid)
            logger.warning(
                "Import session %s expired with %d of %d chunks", sid, len(session.chunks), session.total
            )
        return expired

    def status(self, session_id: str) -> Dict[str, Any]:
        session = self._get(session_id)
        return {
            "session_id": session_id,
            "received": len(session.chunks),
            "total": session.total,
            "complete": session.complete,
            "missing": session.missing(),
            "duplicates": session.duplicates,
            "age_seconds": round(self._clock() - session.created_at, 3),
        }
