"""Tests for the HTTP API and the HTTP instance gateway."""

import httpx
import orjson
import pytest
from fastapi.testclient import TestClient

from relay_core.exceptions import LockConflictError, TransportError
from relay_backend.app_factory import AppContext, create_app
from relay_backend.instance_client import HttpInstanceGateway
from relay_backend.transport.chunking import checksum, encode_payload, split_payload


class UnreachablePeer:
    """A peer whose import endpoint always fails."""

    instance_id = "beta"

    async def begin_import_session(self, session_id, total, metadata=None):
        raise TransportError("beta is unreachable")


def _context(config, data_dir=None, **kwargs):
    return AppContext(
        instance_id="alpha",
        data_dir=data_dir,
        peers={},
        tick_rate=0,
        seed_demo=True,
        config=config,
        **kwargs,
    )


@pytest.fixture
def context(sync_config):
    return _context(sync_config)


@pytest.fixture
def client(context):
    # No lifespan: the tests tick the instance by hand.
    return TestClient(create_app(context=context))


class TestInstanceEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["instance_id"] == "alpha"

    def test_info(self, client):
        info = client.get("/api/instance/info").json()
        assert info["platform_count"] == 1
        assert info["version"] == "0.4.0"
        assert "memory_mb" in info
        assert info["locked_platforms"] == []

    def test_list_platforms(self, client):
        platforms = client.get("/api/instance/platforms").json()["platforms"]
        assert [p["name"] for p in platforms] == ["Alpha"]
        assert platforms[0]["locked"] is False

    def test_lock_conflict_and_unlock(self, client):
        first = client.post("/api/instance/platforms/Alpha/lock", json={"owner": "t1"})
        assert first.status_code == 200
        assert first.json()["lock"]["frozen_count"] == 5

        second = client.post("/api/instance/platforms/Alpha/lock", json={})
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "already_locked"

        assert client.get("/api/instance/platforms/Alpha/lock").json()["lock"]["owner"] == "t1"
        assert client.post("/api/instance/platforms/Alpha/unlock").json() == {"restored": 5}
        assert client.get("/api/instance/platforms/Alpha/lock").json() == {"lock": None}

    def test_lock_unknown_platform(self, client):
        response = client.post("/api/instance/platforms/Nowhere/lock", json={})
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "structural"

    def test_unknown_job(self, client):
        response = client.get("/api/instance/jobs/999_Nothing")
        assert response.status_code == 404

    def test_export_then_import(self, client, context):
        job_id = client.post("/api/instance/exports", json={"platform_name": "Alpha"}).json()["job_id"]
        assert client.get(f"/api/instance/exports/{job_id}").status_code == 400
        context.service.tick()

        status = client.get(f"/api/instance/jobs/{job_id}").json()
        assert status["status"] == "completed"
        envelope = client.get(f"/api/instance/exports/{job_id}").json()
        assert envelope["platform_name"] == "Alpha"

        response = client.post("/api/instance/imports", json={"data": envelope, "platform_name": "Copy"})
        assert response.status_code == 202
        import_id = response.json()["job_id"]
        context.service.tick()

        validation = client.get(f"/api/instance/imports/{import_id}/validation").json()["validation"]
        assert validation["passed"] is True
        names = [p["name"] for p in client.get("/api/instance/platforms").json()["platforms"]]
        assert names == ["Alpha", "Copy"]
        assert client.get("/api/instance/jobs", params={"active": True}).json()["count"] == 0

    def test_chunked_import_session(self, client, context):
        job_id = client.post("/api/instance/exports", json={"platform_name": "Alpha"}).json()["job_id"]
        context.service.tick()
        envelope = client.get(f"/api/instance/exports/{job_id}").json()
        payload = encode_payload(envelope)
        chunks = split_payload("s1", payload, max(1, len(payload) // 3))

        opened = client.post("/api/instance/import-sessions", json={"session_id": "s1", "total": len(chunks)})
        assert opened.status_code == 201
        for chunk in reversed(chunks):
            client.post(
                "/api/instance/import-sessions/s1/chunks",
                json={"index": chunk.index, "total": chunk.total, "data": chunk.data},
            )
        assert client.get("/api/instance/import-sessions/s1").json()["complete"] is True

        response = client.post(
            "/api/instance/import-sessions/s1/finalize",
            json={"checksum": checksum(payload), "platform_name": "Chunked"},
        )
        assert response.status_code == 202
        context.service.tick()
        status = client.get(f"/api/instance/jobs/{response.json()['job_id']}").json()
        assert status["status"] == "completed"
        assert status["result"]["validation_passed"] is True

    def test_finalize_with_bad_checksum(self, client):
        client.post("/api/instance/import-sessions/s1/chunks", json={"index": 1, "total": 1, "data": "xx"})
        response = client.post("/api/instance/import-sessions/s1/finalize", json={"checksum": "0" * 64})
        assert response.status_code == 502
        assert response.json()["error"]["kind"] == "transport"

    def test_clone_platform(self, client, context):
        response = client.post("/api/instance/platforms/Alpha/clone", json={"dest_name": "Alpha Copy"})
        assert response.status_code == 202
        clone_id = response.json()["clone_id"]
        assert response.json()["status"] == "exporting"

        context.service.tick()
        assert client.get("/api/instance/platforms/Alpha/lock").json() == {"lock": None}
        assert client.get(f"/api/instance/clones/{clone_id}").json()["status"] == "importing"

        context.service.tick()
        clone = client.get(f"/api/instance/clones/{clone_id}").json()
        assert clone["status"] == "completed", clone["error"]
        assert clone["platform_name"] == "Alpha Copy"
        platforms = client.get("/api/instance/platforms").json()["platforms"]
        assert [p["name"] for p in platforms] == ["Alpha", "Alpha Copy"]
        assert not any(p["hidden"] or p["locked"] for p in platforms)

    def test_clone_rejects_taken_name(self, client):
        response = client.post("/api/instance/platforms/Alpha/clone", json={"dest_name": "Alpha"})
        assert response.status_code == 400
        assert client.post("/api/instance/platforms/Nowhere/clone", json={"dest_name": "B"}).status_code == 400
        assert client.get("/api/instance/clones/nope").status_code == 404
        assert client.get("/api/instance/platforms/Alpha/lock").json() == {"lock": None}

    def test_list_and_clear_exports(self, client, context):
        job_ids = []
        for _ in range(3):
            job_ids.append(client.post("/api/instance/exports", json={"platform_name": "Alpha"}).json()["job_id"])
            context.service.tick()

        listed = client.get("/api/instance/exports").json()
        assert listed["count"] == 3
        assert [e["job_id"] for e in listed["exports"]] == list(reversed(job_ids))
        assert listed["exports"][0]["stats"]["entities"] > 0

        cleared = client.delete("/api/instance/exports", params={"keep": 1}).json()
        assert sorted(cleared["removed"]) == sorted(job_ids[:2])
        assert [e["job_id"] for e in client.get("/api/instance/exports").json()["exports"]] == [job_ids[2]]
        assert client.get(f"/api/instance/exports/{job_ids[0]}").status_code == 404

    def test_export_to_file(self, sync_config, tmp_path):
        context = _context(sync_config, data_dir=tmp_path)
        client = TestClient(create_app(context=context))
        job_id = client.post("/api/instance/exports", json={"platform_name": "Alpha"}).json()["job_id"]
        context.service.tick()

        named = client.post(f"/api/instance/exports/{job_id}/file", json={"filename": "alpha backup.json"})
        assert named.status_code == 200
        path = named.json()["path"]
        assert path.endswith("alpha_backup.json")
        with open(path, "rb") as f:
            assert orjson.loads(f.read())["platform_name"] == "Alpha"

        default = client.post(f"/api/instance/exports/{job_id}/file", json={}).json()
        assert default["path"].endswith(".json")
        assert "Alpha_" in default["path"]
        assert default["size_bytes"] > 0

    def test_export_to_file_needs_data_dir(self, client, context):
        job_id = client.post("/api/instance/exports", json={"platform_name": "Alpha"}).json()["job_id"]
        context.service.tick()
        response = client.post(f"/api/instance/exports/{job_id}/file", json={})
        assert response.status_code == 400

    def test_request_validation(self, client):
        response = client.post("/api/instance/import-sessions", json={"session_id": "s1", "total": 0})
        assert response.status_code == 422


class TestTransferEndpoints:
    def test_unknown_destination(self, client):
        response = client.post(
            "/api/transfers",
            json={"source_instance": "alpha", "dest_instance": "gamma", "platform_name": "Alpha"},
        )
        assert response.status_code == 400

    def test_unknown_transfer(self, client):
        assert client.get("/api/transfers/nope").status_code == 404
        assert client.get("/api/transfers/nope/log").status_code == 404

    def test_unknown_status_filter(self, client):
        assert client.get("/api/transfers", params={"status": "sideways"}).status_code == 400

    def test_empty_summary(self, client):
        summary = client.get("/api/transfers/summary").json()
        assert summary["total"] == 0
        assert summary["by_status"] == {}
        assert client.get("/api/transfers").json() == {"transfers": [], "count": 0}

    def test_stored_exports(self, client, context):
        context.orchestrator.export_store.put("orphan", {"platform_name": "Alpha", "tick": 7, "stats": {}})

        listed = client.get("/api/transfers/exports").json()
        assert listed["count"] == 1
        assert listed["exports"][0] == {
            "transfer_id": "orphan",
            "platform_name": "Alpha",
            "tick": 7,
            "stats": {},
            "status": None,
        }
        assert client.delete("/api/transfers/exports").json() == {"removed": ["orphan"], "count": 1}
        assert client.get("/api/transfers/exports").json() == {"exports": [], "count": 0}

    def test_failed_transfer_streams_events(self, sync_config):
        context = _context(sync_config, gateways={"beta": UnreachablePeer()})
        app = create_app(context=context)

        with TestClient(app) as client:
            with client.websocket_connect("/ws/transfers") as websocket:
                assert websocket.receive_json() == {"type": "subscribed", "active": 0}
                response = client.post(
                    "/api/transfers",
                    json={"source_instance": "alpha", "dest_instance": "beta", "platform_name": "Alpha"},
                )
                assert response.status_code == 202
                transfer_id = response.json()["transfer_id"]

                events = []
                while not events or events[-1]["type"] != "transfer_failed":
                    events.append(websocket.receive_json())

            record = client.get(f"/api/transfers/{transfer_id}").json()

        assert events[0]["type"] == "transfer_created"
        assert events[-1]["error"]["kind"] == "transport"
        assert record["status"] == "failed"
        assert record["last_phase"] == "transmitting"
        # No rollback: the source stays locked for inspection.
        assert context.service.lock.get("Alpha").owner == transfer_id


class TestHttpGateway:
    @pytest.mark.asyncio
    async def test_gateway_drives_instance_api(self, context):
        app = create_app(context=context)
        service = context.service
        gateway = HttpInstanceGateway(
            "alpha", "http://alpha.test", transport=httpx.ASGITransport(app=app)
        )
        async with gateway:
            platforms = await gateway.list_platforms()
            assert platforms[0]["name"] == "Alpha"

            lock = await gateway.lock_platform("Alpha", "player", owner="t1")
            assert lock["owner"] == "t1"
            with pytest.raises(LockConflictError):
                await gateway.lock_platform("Alpha", "player", owner="t2")

            export_id = await gateway.queue_export("Alpha", "player", transfer_id="t1")
            service.tick()
            assert (await gateway.job_status(export_id))["status"] == "completed"
            envelope = await gateway.get_export(export_id)

            payload = encode_payload(envelope)
            chunks = split_payload("t1", payload, 4096)
            await gateway.begin_import_session("t1", len(chunks), {"transfer_id": "t1"})
            for chunk in chunks:
                await gateway.send_chunk(chunk)
            import_id = await gateway.finalize_import_session(
                "t1", checksum=checksum(payload), platform_name="Moved", transfer_id="t1"
            )
            service.tick()

            assert (await gateway.job_status(import_id))["phase"] == "awaiting_activation"
            assert (await gateway.validation_result(import_id))["passed"] is True
            activation = await gateway.activate_import(import_id)
            assert activation["activation_pending"] is False
            assert await gateway.delete_platform("Alpha", "player") is True

        assert [p.name for p in service.host.list_platforms()] == ["Moved"]
        assert not service.lock.is_locked("Alpha")
