"""Instance API endpoints.

These are the operations the controller performs against one instance:
platform listing and locking, export and import jobs, chunked import
sessions, activation and source deletion. Clones, stored exports and
export files are for operators working on a single instance.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from relay_core.exceptions import RelayError
from relay_backend.errors import error_response
from relay_backend.instance_service import InstanceService
from relay_backend.models import (
    ChunkPayload,
    CloneRequest,
    ExportFileRequest,
    ExportRequest,
    FinalizeRequest,
    ImportRequest,
    ImportSessionRequest,
    LockRequest,
)
from relay_backend.transport.chunking import Chunk

logger = logging.getLogger(__name__)


def setup_router(
    service: InstanceService,
    get_info_callback: Optional[Callable[[], Dict[str, Any]]] = None,
) -> APIRouter:
    """Setup the instance router.

    Args:
        service: The instance service the endpoints operate on
        get_info_callback: Returns host and process information for /info

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/api/instance", tags=["instance"])

    @router.get("/info")
    async def instance_info():
        info = get_info_callback() if get_info_callback else {}
        info.update(
            {
                "instance_id": service.instance_id,
                "tick": service.host.tick,
                "platform_count": len(service.host.list_platforms()),
                "locked_platforms": [r.platform_name for r in service.lock.list_locks()],
                "active_jobs": len(service.processor.list_active_jobs()),
                "import_sessions": service.receiver.session_count,
            }
        )
        return JSONResponse(info)

    # ------------------------------------------------------------------
    # Platforms
    # ------------------------------------------------------------------

    @router.get("/platforms")
    async def list_platforms(force: Optional[str] = None):
        return JSONResponse({"platforms": service.list_platforms(force)})

    @router.post("/platforms/{name}/lock")
    async def lock_platform(name: str, request: LockRequest):
        try:
            lock = service.lock_platform(name, request.force, request.owner)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"lock": lock})

    @router.post("/platforms/{name}/unlock")
    async def unlock_platform(name: str):
        try:
            restored = service.unlock_platform(name)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"restored": restored})

    @router.get("/platforms/{name}/lock")
    async def lock_status(name: str):
        return JSONResponse({"lock": service.lock_status(name)})

    @router.delete("/platforms/{name}")
    async def delete_platform(name: str, force: str = "player"):
        try:
            deleted = service.delete_platform(name, force)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"deleted": deleted})

    @router.post("/platforms/{name}/clone")
    async def clone_platform(name: str, request: CloneRequest):
        try:
            clone = service.clone_platform(name, request.dest_name, request.force)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(clone, status_code=202)

    @router.get("/clones/{clone_id}")
    async def clone_status(clone_id: str):
        try:
            clone = service.clone_status(clone_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(clone)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @router.post("/exports")
    async def queue_export(request: ExportRequest):
        try:
            job_id = service.queue_export(request.platform_name, request.force, request.transfer_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"job_id": job_id}, status_code=202)

    @router.get("/exports/{job_id}")
    async def get_export(job_id: str):
        try:
            envelope = service.get_export(job_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(envelope)

    @router.get("/exports")
    async def list_exports():
        exports = service.list_exports()
        return JSONResponse({"exports": exports, "count": len(exports)})

    @router.delete("/exports")
    async def clear_exports(keep: int = 10):
        removed = service.clear_exports(keep)
        return JSONResponse({"removed": removed, "count": len(removed)})

    @router.post("/exports/{job_id}/file")
    async def write_export_file(job_id: str, request: ExportFileRequest):
        try:
            written = service.write_export_file(job_id, request.filename)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(written)

    @router.get("/jobs")
    async def list_jobs(active: bool = False):
        processor = service.processor
        jobs = processor.list_active_jobs() if active else processor.list_jobs()
        return JSONResponse({"jobs": jobs, "count": len(jobs)})

    @router.get("/jobs/{job_id}")
    async def job_status(job_id: str):
        try:
            status = service.job_status(job_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(status)

    @router.post("/imports")
    async def queue_import(request: ImportRequest):
        try:
            job_id = service.queue_import(
                request.data, request.platform_name, request.force, request.transfer_id
            )
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"job_id": job_id}, status_code=202)

    @router.post("/imports/{job_id}/activate")
    async def activate_import(job_id: str):
        try:
            result = service.activate_import(job_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(result)

    @router.get("/imports/{job_id}/validation")
    async def validation_result(job_id: str):
        try:
            validation = service.validation_result(job_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"validation": validation})

    # ------------------------------------------------------------------
    # Chunked import sessions
    # ------------------------------------------------------------------

    @router.post("/import-sessions")
    async def begin_import_session(request: ImportSessionRequest):
        try:
            status = service.begin_import_session(request.session_id, request.total, request.metadata)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(status, status_code=201)

    @router.post("/import-sessions/{session_id}/chunks")
    async def receive_chunk(session_id: str, payload: ChunkPayload):
        chunk = Chunk(session_id, payload.index, payload.total, payload.data)
        try:
            status = service.receive_chunk(chunk)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(status)

    @router.get("/import-sessions/{session_id}")
    async def session_status(session_id: str):
        try:
            status = service.receiver.status(session_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(status)

    @router.post("/import-sessions/{session_id}/finalize")
    async def finalize_import_session(session_id: str, request: FinalizeRequest):
        try:
            job_id = service.finalize_import_session(
                session_id,
                checksum=request.checksum,
                platform_name=request.platform_name,
                force_name=request.force,
                transfer_id=request.transfer_id,
            )
        except RelayError as e:
            return error_response(e)
        logger.info("Import session %s finalized as job %s", session_id, job_id)
        return JSONResponse({"job_id": job_id}, status_code=202)

    @router.post("/housekeeping")
    async def housekeeping():
        return JSONResponse(service.housekeeping())

    return router
