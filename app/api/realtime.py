import json
import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from app.utils.presence_service import PresenceService

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to the presence layer's Connection protocol.

    Frames in both directions are JSON objects ``{"event": ..., "data": {...}}``.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.id = uuid.uuid4().hex

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": jsonable_encoder(data)})


async def _dispatch(presence: PresenceService, connection: WebSocketConnection, frame: Dict[str, Any]) -> None:
    event = frame.get("event")
    data = frame.get("data")
    if not isinstance(data, dict):
        data = {}
    if event == "authenticate":
        await presence.authenticate(connection, data.get("userId"), data.get("userType"))
    elif event == "join_conversation":
        await presence.join_conversation(connection, data.get("conversationId"))
    elif event == "leave_conversation":
        presence.leave_conversation(connection, data.get("conversationId"))
    else:
        await connection.send("error", {"message": f"Unknown event: {event}"})


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    presence: PresenceService = websocket.app.state.presence
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    presence.connect(connection)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await connection.send("error", {"message": "Frames must be JSON objects"})
                continue
            if not isinstance(frame, dict):
                await connection.send("error", {"message": "Frames must be JSON objects"})
                continue
            await _dispatch(presence, connection, frame)
    except WebSocketDisconnect:
        logger.info(f"WebSocket {connection.id} disconnected")
    finally:
        presence.disconnect(connection)
