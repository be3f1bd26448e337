import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from proctorwatch.api.deps import get_container
from proctorwatch.core.errors import NotFoundError, ValidationError
from proctorwatch.services.monitor import SessionMonitor


router = APIRouter()
logger = logging.getLogger(__name__)


async def _forward_events(websocket: WebSocket, monitor: SessionMonitor) -> None:
    queue = monitor.subscribe()
    try:
        while True:
            event = await queue.get()
            await websocket.send_json({"type": "event", "event": event.model_dump(mode="json")})
    finally:
        monitor.unsubscribe(queue)


@router.websocket("/ws/proctoring/{session_id}")
async def proctoring_ws(websocket: WebSocket, session_id: str) -> None:
    container = get_container(websocket)
    try:
        session = await container.lifecycle.get_session(session_id)
    except NotFoundError:
        await websocket.close(code=1008)
        return
    if session.is_closed:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    # A monitor opened here for pushed samples is closed with the socket
    owned = container.monitors.get(session_id) is None
    monitor = await container.monitors.ensure(session_id)
    forwarder = asyncio.create_task(_forward_events(websocket, monitor))
    logger.info("Websocket connected", extra={"session_id": session_id})
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"error": "invalid_json"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"error": "invalid_json"})
                continue
            kind = message.get("type")
            try:
                if kind == "face_gaze":
                    await monitor.submit_face_gaze(message)
                elif kind == "objects":
                    await monitor.submit_objects(message)
                else:
                    await websocket.send_json({"error": "unsupported_type"})
                    continue
            except ValidationError:
                await websocket.send_json({"error": "invalid_sample"})
                continue
            if monitor.stopped:
                await websocket.send_json({"error": "monitoring_stopped"})
                await websocket.close(code=1000)
                return
    except WebSocketDisconnect:
        logger.info("Websocket disconnected", extra={"session_id": session_id})
    finally:
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        if owned:
            await container.monitors.release(session_id, monitor)
