"""
Realtime WebSocket endpoint.

Clients connect to /ws and send JSON actions:
    {"action": "subscribe", "challenge_id": "..."}
    {"action": "unsubscribe", "challenge_id": "..."}
    {"action": "subscribe_all"}            (administrators only)

Events arrive as {"kind", "challenge_id", "payload"}. Nothing is replayed on
reconnect; clients re-read the leaderboard and chat after subscribing.
"""

import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from shapeup.api.deps import Services, get_services
from shapeup.core.auth import user_from_headers
from shapeup.services.logger import logger

router = APIRouter()


async def _handle_action(
    websocket: WebSocket,
    data: Any,
    user: Dict[str, Any],
    services: Services,
) -> Dict[str, Any]:
    registry = services.broadcaster.registry
    if not isinstance(data, dict):
        return {"type": "error", "detail": "Message must be a JSON object"}

    action = data.get("action")
    challenge_id = data.get("challenge_id")

    if action == "subscribe_all":
        if not user["is_admin"]:
            return {"type": "error", "detail": "Only administrators can observe all challenges"}
        registry.subscribe_all(websocket)
        return {"type": "subscribed", "challenge_id": "*"}

    if action not in ("subscribe", "unsubscribe"):
        return {"type": "error", "detail": f"Unknown action: {action}"}
    if not challenge_id:
        return {"type": "error", "detail": "challenge_id is required"}

    if action == "unsubscribe":
        registry.unsubscribe(websocket, challenge_id)
        return {"type": "unsubscribed", "challenge_id": challenge_id}

    if await services.repository.get_challenge(challenge_id) is None:
        return {"type": "error", "detail": "Challenge not found"}
    registry.subscribe(websocket, challenge_id)
    return {"type": "subscribed", "challenge_id": challenge_id}


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket, services: Services = Depends(get_services)
):
    try:
        user = user_from_headers(websocket.headers)
    except HTTPException:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    registry = services.broadcaster.registry
    logger.info(f"[Realtime] Connection opened for user {user['id']}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                reply = {"type": "error", "detail": "Message must be valid JSON"}
            else:
                reply = await _handle_action(websocket, data, user, services)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove(websocket)
        logger.info(f"[Realtime] Connection closed for user {user['id']}")
