"""WebSocket endpoint for per-user live updates.

Each browser tab opens /ws/status with its session cookie. The connection
is registered with the BroadcastHub under the token's user id and receives
every download event for that user. Client requests carry a request_id and
get a reply with the same id; everything else the client sees is a
broadcast.
"""

import time
from typing import Any, Awaitable, Callable, Dict

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.container import container
from core.exceptions import AppError
from core.logging import get_logger
from services.broadcast_hub import ConnectionClosed, QueuedConnection

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])

MessageHandler = Callable[[Dict[str, Any], str], Awaitable[Dict[str, Any]]]


async def handle_ping(data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    return {"type": "pong", "timestamp": time.time()}


async def handle_refresh_downloads(data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """Run a reconciliation pass now. Changes also go out as broadcasts."""
    result = await container.download_service().list_downloads(user_id)
    return {"type": "downloads", "data": result}


async def handle_get_stats(data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    hub = container.hub()
    return {"type": "stats", "data": {"connections": hub.connection_count(user_id)}}


MESSAGE_HANDLERS: Dict[str, MessageHandler] = {
    "ping": handle_ping,
    "refresh_downloads": handle_refresh_downloads,
    "get_stats": handle_get_stats,
}


async def _dispatch(data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    msg_type = data.get("type", "")
    handler = MESSAGE_HANDLERS.get(msg_type)
    if handler is None:
        return {"type": "error", "code": "UNKNOWN_MESSAGE_TYPE", "message": f"Unknown message type: {msg_type}"}
    try:
        return await handler(data, user_id)
    except AppError as e:
        return {"type": "error", "code": e.code, "message": e.message}


@router.websocket("/ws/status")
async def websocket_status_endpoint(websocket: WebSocket):
    settings = container.settings()

    token = websocket.cookies.get(settings.jwt_cookie_name) or websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Not authenticated")
        return

    payload = container.user_auth_service().verify_token(token)
    if not payload or not payload.get("sub"):
        await websocket.close(code=4001, reason="Invalid or expired session")
        return
    user_id = str(payload["sub"])

    await websocket.accept()
    hub = container.hub()
    connection = QueuedConnection(
        websocket,
        user_id,
        queue_size=settings.ws_queue_size,
        send_timeout=settings.ws_send_timeout,
    )
    connection.start()
    await hub.register(user_id, connection)

    try:
        await connection.send(orjson.dumps({"type": "system", "event": "connected",
                                            "data": {"user_id": user_id}}).decode())
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            reply = await _dispatch(data, user_id)
            if data.get("request_id"):
                reply["request_id"] = data["request_id"]
            await connection.send(orjson.dumps(reply, default=str).decode())
    except WebSocketDisconnect:
        pass
    except ConnectionClosed:
        logger.info("Dropping slow WebSocket client", user_id=user_id)
    except ValueError as e:
        logger.warning("Malformed WebSocket message", user_id=user_id, error=str(e))
    finally:
        await hub.unregister(connection)
        await connection.close()
