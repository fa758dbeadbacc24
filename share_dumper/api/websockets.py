import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from share_dumper.dependencies import get_job_queue_service, get_websocket_manager
from share_dumper.domains.presentation.event_handlers import build_job_snapshot
from share_dumper.domains.presentation.websocket_manager import WebSocketManager
from share_dumper.services.job_queue import JobQueueService

router = APIRouter(prefix="/api/ws", tags=["websockets"])


@router.websocket("/live")
async def websocket_endpoint(
        websocket: WebSocket,
        ws_manager: WebSocketManager = Depends(get_websocket_manager),
        job_queue: JobQueueService = Depends(get_job_queue_service),
):
    """
    Live job and connection updates.

    The client gets a full job snapshot on connect. It may send ``ping``
    (answered with ``pong``) or ``snapshot`` to ask for a fresh snapshot.
    """
    await ws_manager.connect(websocket, initial_message=build_job_snapshot(job_queue.get_jobs()))

    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
            elif message == "snapshot":
                await ws_manager.send_personal_message(websocket, build_job_snapshot(job_queue.get_jobs()))
            else:
                logging.debug(f"Ignoring WebSocket message: {message[:50]}")
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket)
