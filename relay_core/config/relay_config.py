"""Grouped relay configuration with environment overrides."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from relay_core.config.locking import REAP_INTERVAL_TICKS, STALE_LOCK_MAX_AGE_TICKS
from relay_core.config.processing import (
    BATCH_SIZE,
    JOB_RESULT_MAX_AGE_TICKS,
    KEEP_COMPLETED_JOBS,
    MAX_CONCURRENT_JOBS,
    MAX_IMPORT_SESSION_AGE_SECONDS,
    MAX_IMPORT_SESSIONS,
    MAX_TOTAL_CHUNKS,
    SYNC_MODE_BATCH_SIZE,
)
from relay_core.config.transport import (
    DEFAULT_CHUNK_SIZE,
    EXPORT_TIMEOUT_SECONDS,
    MAX_BYTES_PER_SECOND,
    MAX_TRANSFER_RECORDS,
    POLL_INTERVAL_SECONDS,
    SEND_RETRIES,
    STORE_TIMEOUT_SECONDS,
    VALIDATION_TIMEOUT_SECONDS,
)
from relay_core.config.validation import (
    ACCEPTED_LOSS_FRACTION,
    FLUID_EPSILON,
    HIGH_TEMP_THRESHOLD,
    HIGH_TEMP_TOLERANCE,
)


@dataclass
class ProcessorConfig:
    """Async batch processor settings.

    Attributes:
        batch_size: Objects advanced per job per tick.
        max_concurrent_jobs: Active job cap; requests beyond it fail fast.
        sync_mode: Process each job to completion within one tick.
        keep_completed: Finished jobs retained for status queries.
    """

    batch_size: int = BATCH_SIZE
    max_concurrent_jobs: int = MAX_CONCURRENT_JOBS
    sync_mode: bool = False
    keep_completed: int = KEEP_COMPLETED_JOBS
    result_max_age_ticks: int = JOB_RESULT_MAX_AGE_TICKS

    @property
    def effective_batch_size(self) -> int:
        return SYNC_MODE_BATCH_SIZE if self.sync_mode else max(1, self.batch_size)


@dataclass
class ReconciliationConfig:
    """Tolerance rules applied when comparing expected and actual counts."""

    fluid_epsilon: float = FLUID_EPSILON
    high_temp_threshold: float = HIGH_TEMP_THRESHOLD
    high_temp_tolerance: float = HIGH_TEMP_TOLERANCE
    accepted_loss_fraction: float = ACCEPTED_LOSS_FRACTION


@dataclass
class LockConfig:
    stale_max_age_ticks: int = STALE_LOCK_MAX_AGE_TICKS
    reap_interval_ticks: int = REAP_INTERVAL_TICKS


@dataclass
class TransportConfig:
    """Chunk sizing, session limits and orchestrator timeouts."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    adaptive_chunking: bool = True
    max_bytes_per_second: int = MAX_BYTES_PER_SECOND
    send_retries: int = SEND_RETRIES
    max_sessions: int = MAX_IMPORT_SESSIONS
    max_session_age_seconds: float = MAX_IMPORT_SESSION_AGE_SECONDS
    max_total_chunks: int = MAX_TOTAL_CHUNKS
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    export_timeout_seconds: float = EXPORT_TIMEOUT_SECONDS
    store_timeout_seconds: float = STORE_TIMEOUT_SECONDS
    validation_timeout_seconds: float = VALIDATION_TIMEOUT_SECONDS
    max_transfer_records: int = MAX_TRANSFER_RECORDS


@dataclass
class RelayConfig:
    processor: ProcessorConfig = field(default_factory=ProcessorConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """Build a config, applying ``RELAY_*`` overrides from *environ*.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            A RelayConfig with any recognised overrides applied
        """
        env = os.environ if environ is None else environ
        config = cls()

        def _get(name: str, cast, current):
            raw = env.get(name)
            if raw is None or raw == "":
                return current
            if cast is bool:
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return cast(raw)

        p = config.processor
        p.batch_size = _get("RELAY_BATCH_SIZE", int, p.batch_size)
        p.max_concurrent_jobs = _get("RELAY_MAX_CONCURRENT_JOBS", int, p.max_concurrent_jobs)
        p.sync_mode = _get("RELAY_SYNC_MODE", bool, p.sync_mode)

        r = config.reconciliation
        r.fluid_epsilon = _get("RELAY_FLUID_EPSILON", float, r.fluid_epsilon)
        r.high_temp_threshold = _get("RELAY_HIGH_TEMP_THRESHOLD", float, r.high_temp_threshold)
        r.high_temp_tolerance = _get("RELAY_HIGH_TEMP_TOLERANCE", float, r.high_temp_tolerance)
        r.accepted_loss_fraction = _get(
            "RELAY_ACCEPTED_LOSS_FRACTION", float, r.accepted_loss_fraction
        )

        config.lock.stale_max_age_ticks = _get(
            "RELAY_STALE_LOCK_TICKS", int, config.lock.stale_max_age_ticks
        )

        t = config.transport
        t.chunk_size = _get("RELAY_CHUNK_SIZE", int, t.chunk_size)
        t.adaptive_chunking = _get("RELAY_ADAPTIVE_CHUNKING", bool, t.adaptive_chunking)
        t.max_bytes_per_second = _get("RELAY_MAX_BYTES_PER_SECOND", int, t.max_bytes_per_second)
        t.validation_timeout_seconds = _get(
            "RELAY_VALIDATION_TIMEOUT", float, t.validation_timeout_seconds
        )
        return config
