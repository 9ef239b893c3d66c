"""
WebSocket endpoint.

Client frames:  {"op": "subscribe" | "unsubscribe", "topic": "match:42"}
                {"op": "ping"}
Server frames:  {"type": "subscribed" | "unsubscribed", "topic": ...}
                {"type": "pong"}
                {"type": "error", "error": {"kind", "message"}}
                notifications: {"type", "topic", "data", "timestamp"}
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.errors import ValidationFailed
from app.ops.audit import get_client_origin
from app.realtime.admission import AdmissionQuota
from app.realtime.registry import ConnectionRegistry
from app.realtime.topics import parse_topic
from app.telemetry.metrics import record_admission_rejected

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _error(kind: str, message: str) -> dict:
    return {"type": "error", "error": {"kind": kind, "message": message}}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    registry: ConnectionRegistry = websocket.app.state.registry
    admission: AdmissionQuota = websocket.app.state.admission
    origin = get_client_origin(websocket)

    if not admission.admit(origin):
        record_admission_rejected("handshake")
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()
    connection = await registry.add(websocket, origin)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await connection.send(_error("ValidationFailed", "Frames must be JSON objects"))
                continue

            if not admission.admit(origin):
                record_admission_rejected("operation")
                await connection.send(_error("RateLimited", "Too many requests, slow down"))
                continue

            op = message.get("op") if isinstance(message, dict) else None

            if op == "ping":
                await connection.send({"type": "pong"})
                continue

            if op in ("subscribe", "unsubscribe"):
                topic = message.get("topic")
                try:
                    parse_topic(topic)
                except ValidationFailed as e:
                    await connection.send(_error(e.kind, e.message))
                    continue

                if op == "subscribe":
                    if await registry.subscribe(connection.id, topic):
                        await connection.send({"type": "subscribed", "topic": topic})
                elif await registry.unsubscribe(connection.id, topic):
                    await connection.send({"type": "unsubscribed", "topic": topic})
                continue

            await connection.send(_error("ValidationFailed", f"Unknown op: {op}"))

    except WebSocketDisconnect:
        pass
    finally:
        await registry.remove(connection.id)
