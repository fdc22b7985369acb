"""Controller API: platform transfers and their event stream."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from relay_core.exceptions import RelayError, StructuralError
from relay_backend.errors import error_response
from relay_backend.models import TransferCreateRequest
from relay_backend.orchestrator import TransferOrchestrator, TransferRequest
from relay_backend.transfer_registry import TransferStatus

logger = logging.getLogger(__name__)


def setup_router(orchestrator: TransferOrchestrator) -> APIRouter:
    """Setup the transfers router.

    Endpoints:
        POST /api/transfers - Start a transfer
        GET /api/transfers - List transfers (optionally by status)
        GET /api/transfers/summary - Counts and average phase timings
        GET /api/transfers/exports - Envelopes held for transfers
        DELETE /api/transfers/exports - Drop envelopes of finished transfers
        GET /api/transfers/log - Recent transaction events
        GET /api/transfers/{transfer_id} - One transfer record
        GET /api/transfers/{transfer_id}/log - Events of one transfer
        WS /ws/transfers - Live transfer events
    """
    router = APIRouter(tags=["transfers"])

    @router.post("/api/transfers")
    async def create_transfer(request: TransferCreateRequest):
        try:
            transfer_id = orchestrator.start_transfer(
                TransferRequest(
                    source_instance=request.source_instance,
                    dest_instance=request.dest_instance,
                    platform_name=request.platform_name,
                    force_name=request.force,
                    keep_source=request.keep_source,
                    dest_platform_name=request.dest_platform_name,
                )
            )
        except RelayError as e:
            return error_response(e)
        record = orchestrator.get_transfer(transfer_id)
        return JSONResponse(record.to_dict(), status_code=202)

    @router.get("/api/transfers")
    async def list_transfers(status: Optional[str] = None, limit: int = 50):
        try:
            wanted = TransferStatus(status) if status else None
        except ValueError:
            return error_response(StructuralError(f"Unknown transfer status '{status}'"))
        records = orchestrator.list_transfers(wanted)[: max(0, limit)]
        return JSONResponse(
            {"transfers": [r.to_dict() for r in records], "count": len(records)}
        )

    @router.get("/api/transfers/summary")
    async def transfer_summary():
        return JSONResponse(orchestrator.build_summary())

    @router.get("/api/transfers/exports")
    async def list_stored_exports():
        exports = orchestrator.list_stored_exports()
        return JSONResponse({"exports": exports, "count": len(exports)})

    @router.delete("/api/transfers/exports")
    async def clear_stored_exports():
        removed = orchestrator.clear_stored_exports()
        return JSONResponse({"removed": removed, "count": len(removed)})

    @router.get("/api/transfers/log")
    async def transaction_log(limit: int = 50):
        return JSONResponse({"events": orchestrator.get_transaction_log(limit=limit)})

    @router.get("/api/transfers/{transfer_id}")
    async def get_transfer(transfer_id: str):
        try:
            record = orchestrator.get_transfer(transfer_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse(record.to_dict())

    @router.get("/api/transfers/{transfer_id}/log")
    async def transfer_log(transfer_id: str):
        try:
            events = orchestrator.get_transaction_log(transfer_id)
        except RelayError as e:
            return error_response(e)
        return JSONResponse({"transfer_id": transfer_id, "events": events})

    @router.websocket("/ws/transfers")
    async def transfer_events(websocket: WebSocket):
        await websocket.accept()
        broadcaster = orchestrator.broadcaster
        queue = broadcaster.subscribe()

        async def forward_events():
            while True:
                event = await queue.get()
                await websocket.send_json(event)

        sender = None
        try:
            await websocket.send_json({"type": "subscribed", "active": len(orchestrator.registry.active())})
            sender = asyncio.create_task(forward_events())
            # Clients only listen; receiving here detects the disconnect.
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            logger.debug("Transfer event subscriber disconnected")
        finally:
            if sender is not None:
                sender.cancel()
            broadcaster.unsubscribe(queue)

    return router
