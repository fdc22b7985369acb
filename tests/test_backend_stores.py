"""Tests for the controller's durable stores and small helpers."""

import pytest

from relay_core.config.relay_config import RelayConfig
from relay_core.exceptions import (
    CapacityError,
    InterruptedJobError,
    LockConflictError,
    StructuralError,
    TimeoutFailure,
    error_from_dict,
)
from relay_backend.app_factory import parse_instance_map
from relay_backend.errors import status_for
from relay_backend.export_store import FileExportStore, MemoryExportStore
from relay_backend.logging_config import parse_level_overrides
from relay_backend.subscriptions import EventBroadcaster
from relay_backend.transaction_log import TransactionLog
from relay_backend.transfer_registry import TransferRecord, TransferRegistry, TransferStatus


def _record(transfer_id, status=TransferStatus.CREATED, created_at="2026-01-01T00:00:00+00:00"):
    return TransferRecord(
        transfer_id=transfer_id,
        source_instance="alpha",
        dest_instance="beta",
        platform_name="Alpha",
        force_name="player",
        status=status,
        created_at=created_at,
    )


class TestExportStores:
    def test_file_store_round_trip(self, tmp_path):
        store = FileExportStore(tmp_path / "exports")
        store.put("abc123", {"platform_name": "Alpha", "payload": "xyz"})

        assert FileExportStore(tmp_path / "exports").get("abc123")["payload"] == "xyz"
        assert store.keys() == ["abc123"]
        store.delete("abc123")
        assert store.get("abc123") is None

    def test_corrupt_file_reads_as_missing(self, tmp_path):
        store = FileExportStore(tmp_path)
        (tmp_path / "bad.json").write_bytes(b"{not json")
        assert store.get("bad") is None

    @pytest.mark.asyncio
    async def test_wait_for_returns_stored_envelope(self):
        store = MemoryExportStore()
        store.put("t1", {"ok": True})
        assert await store.wait_for("t1", timeout=0.1, poll_interval=0.01) == {"ok": True}

    @pytest.mark.asyncio
    async def test_wait_for_times_out(self):
        store = MemoryExportStore()
        with pytest.raises(TimeoutFailure):
            await store.wait_for("missing", timeout=0.05, poll_interval=0.01)


class TestTransactionLog:
    def test_events_survive_reload(self, tmp_path):
        path = tmp_path / "transactions.jsonl"
        log = TransactionLog(path)
        log.record("t1", "transfer_created", "created", message="Alpha: alpha -> beta")
        log.record("t1", "state_change", "exporting", phase="created", seconds=0.01)
        log.record("t2", "transfer_created", "created")

        reloaded = TransactionLog(path)

        assert len(reloaded) == 3
        events = reloaded.events_for("t1")
        assert [e["event"] for e in events] == ["transfer_created", "state_change"]
        assert events[1]["data"] == {"seconds": 0.01}

    def test_recent_is_newest_first(self):
        log = TransactionLog(max_events=3)
        for i in range(5):
            log.record(f"t{i}", "transfer_created", "created")
        assert [e["transfer_id"] for e in log.recent(2)] == ["t4", "t3"]
        assert len(log) == 3
        assert log.recent(0) == []

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "transactions.jsonl"
        log = TransactionLog(path)
        log.record("t1", "transfer_created", "created")
        log.clear()
        assert not path.exists()
        assert len(log) == 0


class TestTransferRegistry:
    def test_records_survive_reload(self, tmp_path):
        path = tmp_path / "transfers.json"
        registry = TransferRegistry(path)
        record = _record("t1")
        record.phase_timings["created"] = 0.5
        registry.save(record)

        loaded = TransferRegistry(path).get("t1")

        assert loaded.status == TransferStatus.CREATED
        assert loaded.phase_timings == {"created": 0.5}

    def test_list_newest_first_and_filter(self):
        registry = TransferRegistry()
        registry.save(_record("old", TransferStatus.COMPLETED, "2026-01-01T00:00:00+00:00"))
        registry.save(_record("new", TransferStatus.FAILED, "2026-01-02T00:00:00+00:00"))

        assert [r.transfer_id for r in registry.list()] == ["new", "old"]
        assert [r.transfer_id for r in registry.list(TransferStatus.COMPLETED)] == ["old"]

    def test_trim_never_drops_in_flight_records(self):
        registry = TransferRegistry(max_records=2)
        registry.save(_record("running", TransferStatus.TRANSMITTING, "2026-01-01T00:00:00+00:00"))
        registry.save(_record("done-1", TransferStatus.COMPLETED, "2026-01-02T00:00:00+00:00"))
        registry.save(_record("done-2", TransferStatus.COMPLETED, "2026-01-03T00:00:00+00:00"))

        assert registry.get("running") is not None
        assert registry.get("done-1") is None
        assert len(registry) == 2

    def test_recover_fails_in_flight_records(self):
        registry = TransferRegistry()
        stuck = _record("stuck", TransferStatus.TRANSMITTING)
        stuck.last_phase = "transmitting"
        registry.save(stuck)
        registry.save(_record("done", TransferStatus.COMPLETED))

        assert registry.recover() == ["stuck"]

        record = registry.get("stuck")
        assert record.status == TransferStatus.FAILED
        assert record.error["kind"] == "interrupted"
        assert record.error["counters"] == {"last_phase": "transmitting"}
        assert registry.active() == []


class TestHelpers:
    def test_parse_instance_map(self):
        assert parse_instance_map("alpha=http://a:8000, beta=http://b:8000") == {
            "alpha": "http://a:8000",
            "beta": "http://b:8000",
        }
        assert parse_instance_map(None) == {}
        with pytest.raises(ValueError):
            parse_instance_map("alpha")

    def test_log_level_overrides(self):
        assert parse_level_overrides("relay_core.jobs=debug, httpx=INFO,bogus") == {
            "relay_core.jobs": "DEBUG",
            "httpx": "INFO",
        }
        assert parse_level_overrides(None) == {}

    def test_error_status_codes(self):
        assert status_for(StructuralError("x")) == 400
        assert status_for(LockConflictError("x")) == 409
        assert status_for(CapacityError("x")) == 409
        assert status_for(TimeoutFailure("x")) == 504
        assert status_for(InterruptedJobError("x")) == 500

    def test_error_dict_conversion(self):
        original = LockConflictError("locked", counters={"owner": "t1"})
        rebuilt = error_from_dict(original.to_dict())
        assert isinstance(rebuilt, LockConflictError)
        assert rebuilt.code == "already_locked"
        assert rebuilt.counters == {"owner": "t1"}

    def test_config_from_env(self):
        config = RelayConfig.from_env(
            {"RELAY_SYNC_MODE": "yes", "RELAY_BATCH_SIZE": "10", "RELAY_FLUID_EPSILON": "0.5"}
        )
        assert config.processor.sync_mode is True
        assert config.processor.batch_size == 10
        assert config.reconciliation.fluid_epsilon == 0.5
        assert RelayConfig.from_env({}).processor.sync_mode is False


class TestBroadcaster:
    @pytest.mark.asyncio
    async def test_slow_subscriber_loses_oldest(self):
        broadcaster = EventBroadcaster(queue_size=2)
        queue = broadcaster.subscribe()
        for i in range(3):
            broadcaster.publish({"n": i})

        assert [queue.get_nowait()["n"] for _ in range(2)] == [1, 2]
        broadcaster.unsubscribe(queue)
        assert broadcaster.subscriber_count == 0
