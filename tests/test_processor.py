"""Tests for the async batch processor: export and import jobs."""

import pytest

from relay_core.config.relay_config import ProcessorConfig
from relay_core.exceptions import (
    CapacityError,
    JobNotFoundError,
    LockConflictError,
    PhaseOrderError,
    StructuralError,
)
from relay_core.jobs.job import ImportPhase, JobStatus
from relay_core.jobs.processor import AsyncBatchProcessor
from relay_core.jobs.store import FileJobStore
from relay_core.serializer import decode_envelope
from relay_core.simhost import build_demo_platform


def _export(demo_host, processor, run_job, **kwargs):
    job_id = processor.queue_export("Alpha", "player", **kwargs)
    return run_job(demo_host, processor, job_id)


class TestExport:
    def test_standalone_export_completes_and_unlocks(self, demo_host, processor, run_job):
        job = _export(demo_host, processor, run_job)

        assert job.id == "001_Alpha"
        assert job.status == JobStatus.COMPLETED
        assert job.phase == "completed"
        assert job.metrics["conveyor_items"] == 16
        assert job.result["verification"]["item_counts"]["iron-gear-wheel"] == 125
        assert not processor.lock.is_locked("Alpha")

        envelope = processor.get_export(job.id)
        manifest = decode_envelope(envelope)
        assert manifest["platform"]["name"] == "Alpha"
        assert manifest["frozen_states"]

    def test_transfer_export_keeps_lock(self, demo_host, processor, run_job):
        _export(demo_host, processor, run_job, transfer_id="t1")
        assert processor.lock.get("Alpha").owner == "t1"

    def test_export_reuses_lock_of_same_transfer(self, demo_host, lock, processor, run_job):
        lock.lock("Alpha", "player", owner="t1").unwrap()

        job = _export(demo_host, processor, run_job, transfer_id="t1")

        assert job.status == JobStatus.COMPLETED
        assert lock.get("Alpha").owner == "t1"

    def test_foreign_lock_conflicts(self, lock, processor):
        lock.lock("Alpha", "player", owner="t1").unwrap()

        with pytest.raises(LockConflictError):
            processor.queue_export("Alpha", "player")
        with pytest.raises(LockConflictError):
            processor.queue_export("Alpha", "player", transfer_id="t2")
        assert processor.list_jobs() == []

    def test_missing_platform(self, processor):
        with pytest.raises(StructuralError):
            processor.queue_export("Nowhere", "player")

    def test_capacity_is_enforced_before_locking(self, demo_host, lock):
        build_demo_platform(demo_host, "Beta")
        processor = AsyncBatchProcessor(demo_host, lock, config=ProcessorConfig(max_concurrent_jobs=1))
        processor.queue_export("Alpha", "player")

        with pytest.raises(CapacityError) as excinfo:
            processor.queue_export("Beta", "player")

        assert excinfo.value.code == "capacity_exceeded"
        assert not lock.is_locked("Beta")

    def test_batched_export_spans_ticks(self, demo_host, lock, run_job):
        processor = AsyncBatchProcessor(demo_host, lock, config=ProcessorConfig(batch_size=5))
        job_id = processor.queue_export("Alpha", "player")

        demo_host.step()
        processor.process_tick()
        status = processor.get_job_status(job_id)
        assert status["phase"] == "scanning"
        assert status["progress"]["processed"] == 5

        job = run_job(demo_host, processor, job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.metrics["conveyor_items"] == 16

    def test_platform_deleted_mid_export_fails_and_releases(self, demo_host, lock, demo_platform):
        processor = AsyncBatchProcessor(demo_host, lock, config=ProcessorConfig(batch_size=5))
        job_id = processor.queue_export("Alpha", "player")
        demo_host.delete_platform(demo_platform)

        processor.process_tick()

        job = processor.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error["kind"] == "structural"
        assert job.metrics["failed_phase"] == "scanning"
        assert not lock.is_locked("Alpha")


class TestExportQueries:
    def test_unknown_job(self, processor):
        with pytest.raises(JobNotFoundError):
            processor.get_job("404_Nothing")

    def test_incomplete_export_has_no_envelope(self, processor):
        job_id = processor.queue_export("Alpha", "player")
        with pytest.raises(StructuralError):
            processor.get_export(job_id)

    def test_status_omits_envelope(self, demo_host, processor, run_job):
        job = _export(demo_host, processor, run_job)
        status = processor.get_job_status(job.id)
        assert "envelope" not in status["result"]
        assert status["progress"]["percent"] == 100.0


class TestImport:
    def _envelope(self, demo_host, processor, run_job):
        return processor.get_export(_export(demo_host, processor, run_job).id)

    def test_standalone_import_runs_to_completion(self, demo_host, processor, run_job):
        envelope = self._envelope(demo_host, processor, run_job)

        job_id = processor.queue_import(envelope)
        job = run_job(demo_host, processor, job_id)

        assert job_id == "002_Alpha_2"
        assert job.status == JobStatus.COMPLETED
        assert job.phase == ImportPhase.COMPLETED.value
        assert job.result["validation_passed"] is True
        assert job.result["activation_pending"] is False
        assert job.result["loss_analysis"] is not None
        assert [entry["step"] for entry in job.result["trace"]] == [
            "tiles",
            "objects",
            "state",
            "conveyors",
            "validation",
            "activation",
            "fluids",
            "loss_analysis",
        ]
        platform = demo_host.get_platform("Alpha #2", "player")
        assert platform is not None
        assert not platform.paused
        assert not platform.hidden

    def test_transfer_import_waits_for_activation(self, demo_host, processor, run_job):
        envelope = self._envelope(demo_host, processor, run_job)

        job_id = processor.queue_import(envelope, platform_name="Copy", transfer_id="t1")
        job = run_job(demo_host, processor, job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.phase == ImportPhase.AWAITING_ACTIVATION.value
        assert job.result["activation_pending"] is True
        assert job.result["validation"]["passed"] is True
        platform = demo_host.get_platform("Copy", "player")
        assert platform.paused and platform.hidden

        result = processor.activate_import(job_id)

        assert result["activation_pending"] is False
        assert result["fluid_injection"]["injected"] > 0
        assert processor.get_job(job_id).phase == ImportPhase.COMPLETED.value
        assert not platform.paused

    def test_activation_out_of_order(self, demo_host, processor, run_job):
        envelope = self._envelope(demo_host, processor, run_job)
        job_id = processor.queue_import(envelope)
        run_job(demo_host, processor, job_id)

        with pytest.raises(PhaseOrderError):
            processor.activate_import(job_id)
        assert processor.get_job(job_id).status == JobStatus.COMPLETED

    def test_activate_rejects_export_jobs(self, demo_host, processor, run_job):
        job = _export(demo_host, processor, run_job)
        with pytest.raises(StructuralError):
            processor.activate_import(job.id)

    def test_drifted_manifest_is_rejected(self, demo_host, processor, run_job):
        manifest = decode_envelope(self._envelope(demo_host, processor, run_job))
        manifest["verification"]["item_counts"]["iron-plate"] += 1

        with pytest.raises(StructuralError) as excinfo:
            processor.queue_import(manifest)

        assert excinfo.value.counters["mismatches"] == ["item:iron-plate"]
        assert demo_host.get_platform("Alpha #2", "player") is None

    def test_import_names_never_collide(self, demo_host, processor, run_job):
        envelope = self._envelope(demo_host, processor, run_job)
        first = processor.get_job(processor.queue_import(envelope))
        second = processor.get_job(processor.queue_import(envelope))
        assert first.platform_name == "Alpha #2"
        assert second.platform_name == "Alpha #3"


class TestPersistenceAndCleanup:
    def test_jobs_resume_from_file_store(self, tmp_path, demo_host, lock):
        store_dir = tmp_path / "jobs"
        config = ProcessorConfig(batch_size=5)
        first = AsyncBatchProcessor(demo_host, lock, FileJobStore(store_dir), config)
        job_id = first.queue_export("Alpha", "player")

        restarted = AsyncBatchProcessor(demo_host, lock, FileJobStore(store_dir), config)

        assert restarted.resume() == {"resumed": [job_id], "failed": []}
        restored = restarted.get_job(job_id)
        assert restored.phase == "scanning"
        assert restored.state["object_ids"] == first.get_job(job_id).state["object_ids"]

        restarted.process_tick()
        assert restarted.get_job(job_id).cursor == 5

    def test_export_without_lock_is_interrupted(self, tmp_path, demo_host, lock):
        store_dir = tmp_path / "jobs"
        first = AsyncBatchProcessor(demo_host, lock, FileJobStore(store_dir))
        job_id = first.queue_export("Alpha", "player")
        lock.unlock("Alpha")

        restarted = AsyncBatchProcessor(demo_host, lock, FileJobStore(store_dir))
        outcome = restarted.resume()

        assert outcome == {"resumed": [], "failed": [job_id]}
        job = restarted.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error["kind"] == "interrupted"

    def test_cleanup_keeps_newest(self, demo_host, lock, run_job):
        processor = AsyncBatchProcessor(
            demo_host, lock, config=ProcessorConfig(sync_mode=True, keep_completed=1)
        )
        first = _export(demo_host, processor, run_job)
        second = _export(demo_host, processor, run_job)

        assert processor.cleanup() == [first.id]
        assert [j["job_id"] for j in processor.list_jobs()] == [second.id]

    def test_cleanup_drops_old_results(self, demo_host, processor, run_job):
        job = _export(demo_host, processor, run_job)
        demo_host.step(3)

        assert processor.cleanup(max_age_ticks=1) == [job.id]

    def test_active_jobs_are_never_pruned(self, processor):
        processor.queue_export("Alpha", "player")
        assert processor.cleanup(max_age_ticks=0) == []
        assert len(processor.list_active_jobs()) == 1
