"""Pytest configuration and fixtures for relay tests."""

import pytest

from relay_core.config.relay_config import ProcessorConfig, RelayConfig
from relay_core.jobs.processor import AsyncBatchProcessor
from relay_core.lock import QuiescenceLock
from relay_core.simhost import MemoryHost, build_demo_platform


@pytest.fixture
def host():
    """An empty in-memory host."""
    return MemoryHost()


@pytest.fixture
def demo_host():
    """A host holding the demo platform 'Alpha' (no cargo pods)."""
    host = MemoryHost()
    build_demo_platform(host)
    return host


@pytest.fixture
def demo_platform(demo_host):
    return demo_host.get_platform("Alpha", "player")


@pytest.fixture
def lock(demo_host):
    return QuiescenceLock(demo_host)


@pytest.fixture
def processor(demo_host, lock):
    """A processor that finishes each job within one tick."""
    return AsyncBatchProcessor(demo_host, lock, config=ProcessorConfig(sync_mode=True))


@pytest.fixture
def sync_config():
    config = RelayConfig()
    config.processor.sync_mode = True
    config.transport.poll_interval_seconds = 0.001
    config.transport.export_timeout_seconds = 10.0
    config.transport.validation_timeout_seconds = 10.0
    config.transport.store_timeout_seconds = 2.0
    return config


@pytest.fixture
def run_job():
    """Tick a host and processor until a job leaves the active state."""

    def _run(host, processor, job_id, max_ticks=500):
        for _ in range(max_ticks):
            job = processor.get_job(job_id)
            if not job.is_active:
                return job
            host.step()
            processor.process_tick()
        raise AssertionError(f"Job {job_id} still active after {max_ticks} ticks")

    return _run
