"""WebSocket API endpoints for live task and relationship snapshots."""

import json
from collections import Counter

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from ..auth.dependencies import get_current_user_id, get_websocket_user_id
from ..core.errors import NotFoundError, PermissionDeniedError
from ..events.subscriptions import SubscriptionHub
from ..events.websocket_manager import WebSocketConnection, websocket_manager
from ..services import ServiceRegistry
from ..utils.logging_config import get_logger
from .dependencies import get_services

logger = get_logger("websocket")

router = APIRouter(prefix="/v1/ws", tags=["websockets"])


async def _serve(connection: WebSocketConnection) -> None:
    """Answer client heartbeats until the client goes away."""
    websocket = connection.websocket
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON message from user {connection.user_id}")
                continue
            if not isinstance(message, dict):
                continue

            message_type = message.get("type")
            if message_type == "pong":
                websocket_manager.record_pong(connection)
            elif message_type == "ping":
                websocket_manager.record_pong(connection)
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        logger.info(f"WebSocket client {connection.user_id} disconnected from {connection.topic}")
    finally:
        websocket_manager.disconnect(websocket, connection.topic, connection.key)
        # Unsubscribing twice is a no-op; covers a send failure during the first snapshot
        if connection.unsubscribe is not None:
            connection.unsubscribe()


@router.websocket("/relationships/{relationship_id}/tasks")
async def task_updates(
    websocket: WebSocket,
    relationship_id: str,
    token: str = Query(..., description="Bearer token of a relationship participant"),
    services: ServiceRegistry = Depends(get_services),
):
    """
    Live task snapshots for one relationship.

    The full task list is sent right after connecting and again after every
    change, each message carrying an increasing ``sequence_number``. Clients
    should answer ``ping`` messages with ``{"type": "pong"}``.

    Close codes: 4001 invalid token, 4003 not a participant, 4004 unknown
    relationship.
    """
    try:
        user_id = get_websocket_user_id(websocket, token)
    except HTTPException:
        await websocket.close(code=4001, reason="Invalid authentication token")
        return

    try:
        await services.permissions.require_participant(relationship_id, user_id)
    except NotFoundError:
        await websocket.close(code=4004, reason="Relationship not found")
        return
    except PermissionDeniedError:
        await websocket.close(code=4003, reason="Not a participant in this relationship")
        return

    connection = await websocket_manager.connect(
        websocket, SubscriptionHub.TASKS, relationship_id, user_id
    )
    connection.unsubscribe = await services.tasks.subscribe_to_tasks(
        relationship_id, lambda snapshot: websocket_manager.send_snapshot(connection, snapshot)
    )
    await _serve(connection)


@router.websocket("/relationships")
async def relationship_updates(
    websocket: WebSocket,
    token: str = Query(..., description="Bearer token"),
    services: ServiceRegistry = Depends(get_services),
):
    """Live snapshots of the caller's relationship list."""
    try:
        user_id = get_websocket_user_id(websocket, token)
    except HTTPException:
        await websocket.close(code=4001, reason="Invalid authentication token")
        return

    connection = await websocket_manager.connect(
        websocket, SubscriptionHub.RELATIONSHIPS, user_id, user_id
    )
    connection.unsubscribe = await services.relationships.subscribe_to_user_relationships(
        user_id, lambda snapshot: websocket_manager.send_snapshot(connection, snapshot)
    )
    await _serve(connection)


@router.get("/stats")
async def get_websocket_stats(user_id: str = Depends(get_current_user_id)):
    """Connection counts per topic, without the per-channel keys."""
    by_topic = Counter()
    for (topic, _), connections in websocket_manager.active_connections.items():
        by_topic[topic] += len(connections)
    return {
        "total_connections": websocket_manager.get_total_connections(),
        "connections_by_topic": dict(by_topic),
    }
