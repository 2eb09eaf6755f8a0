from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from chorechamp.dependencies.auth import resolve_token
from chorechamp.services.websocket_service import websocket_manager
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = ""):
    """Live chore and household updates for the caller's household"""
    user = resolve_token(token) if token else None
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket_manager.connect(websocket, user.id)
    logger.info("WebSocket connected for %s", user.username)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket_manager.send_personal_message(
                    json.dumps({"type": "pong"}),
                    websocket
                )

    except WebSocketDisconnect:
        websocket_manager.disconnect(websocket)
