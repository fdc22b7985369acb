"""Durable job storage.

``FileJobStore`` keeps one JSON file per job and replaces it atomically on
every save, so a crash leaves either the previous or the new version of a
job on disk, never a torn file.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import orjson

from relay_core.jobs.job import Job

logger = logging.getLogger(__name__)

SEQUENCE_FILE = "_sequence.json"


class JobStore(Protocol):
    def save(self, job: Job) -> None: ...

    def load(self, job_id: str) -> Optional[Job]: ...

    def delete(self, job_id: str) -> None: ...

    def all(self) -> List[Job]: ...

    def next_sequence(self) -> int: ...


class MemoryJobStore:
    """Process-local store, used by tests and ephemeral instances."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._sequence = 0

    def save(self, job: Job) -> None:
        self._jobs[job.id] = job

    def load(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def all(self) -> List[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.sequence)

    def next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence


class FileJobStore:
    """One orjson file per job under *directory*."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._cache: Dict[str, Job] = {}
        self._sequence = self._read_sequence()
        self._load_all()

    def _path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def _write_atomic(self, path: Path, data: bytes) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    def _read_sequence(self) -> int:
        path = self._dir / SEQUENCE_FILE
        if not path.exists():
            return 0
        try:
            return int(orjson.loads(path.read_bytes()).get("sequence", 0))
        except (OSError, ValueError, orjson.JSONDecodeError) as e:
            logger.error("Unreadable job sequence file %s: %s", path, e)
            return 0

    def _load_all(self) -> None:
        loaded = 0
        for path in sorted(self._dir.glob("*.json")):
            if path.name == SEQUENCE_FILE:
                continue
            try:
                job = Job.from_dict(orjson.loads(path.read_bytes()))
            except (OSError, ValueError, TypeError, KeyError, orjson.JSONDecodeError) as e:
                logger.warning("Skipping unreadable job file %s: %s", path, e)
                continue
            self._cache[job.id] = job
            self._sequence = max(self._sequence, job.sequence)
            loaded += 1
        if loaded:
            logger.info("Loaded %d jobs from %s", loaded, self._dir)

    def save(self, job: Job) -> None:
        self._cache[job.id] = job
        self._write_atomic(self._path(job.id), orjson.dumps(job.to_dict()))

    def load(self, job_id: str) -> Optional[Job]:
        return self._cache.get(job_id)

    def delete(self, job_id: str) -> None:
        self._cache.pop(job_id, None)
        path = self._path(job_id)
        if path.exists():
            path.unlink()

    def all(self) -> List[Job]:
        return sorted(self._cache.values(), key=lambda j: j.sequence)

    def next_sequence(self) -> int:
        self._sequence += 1
        self._write_atomic(self._dir / SEQUENCE_FILE, orjson.dumps({"sequence": self._sequence}))
        return self._sequence
