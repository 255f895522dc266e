"""
Room WebSocket endpoint
Viewers join a streamer's room and receive only that streamer's events
"""
import asyncio
import logging
from typing import Any, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from relay.core.relay import RelayService
from relay.models.events import ControlEvent, control_message, now_ms
from relay.models.tenant import InvalidTenantId, normalize_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def handle_join(websocket: WebSocket, relay: RelayService, data: Any):
    """Join a room and report the upstream outcome to the requesting socket only"""
    try:
        tenant_id = normalize_tenant_id(data)
    except InvalidTenantId as e:
        await websocket.send_json(control_message(ControlEvent.ERROR, message=str(e)))
        return

    try:
        connected = await relay.join(websocket, tenant_id)
    except Exception as e:
        logger.error("Error connecting to TikTok for %s: %s", tenant_id, e)
        await websocket.send_json(control_message(ControlEvent.CONNECTION_ERROR, message=str(e)))
        return

    if connected:
        await websocket.send_json(
            control_message(ControlEvent.ROOM_JOINED, room=tenant_id, message=f"Joined room: {tenant_id}")
        )
    else:
        await websocket.send_json(
            control_message(
                ControlEvent.CONNECTION_ERROR,
                message=f"Cannot connect to {tenant_id}'s live. Make sure they are currently streaming!",
            )
        )


def _join_done(joins: Set[asyncio.Task], task: asyncio.Task):
    joins.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Join reply not delivered: %s", task.exception())


@router.websocket("/ws")
async def room_socket(websocket: WebSocket):
    """
    WebSocket endpoint for room subscriptions.
    Inbound messages: {"event": "join-room" | "leave-room" | "ping", "data": <username>}
    """
    relay: RelayService = websocket.app.state.relay
    # Joins wait on the upstream handshake; run them beside the receive loop
    joins: Set[asyncio.Task] = set()
    await websocket.accept()
    logger.info("Client connected: %s", id(websocket))
    
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(control_message(ControlEvent.ERROR, message="Malformed message"))
                continue

            if not isinstance(message, dict):
                await websocket.send_json(control_message(ControlEvent.ERROR, message="Malformed message"))
                continue

            event = message.get("event")
            data = message.get("data")

            if event == "join-room":
                task = asyncio.create_task(handle_join(websocket, relay, data))
                joins.add(task)
                task.add_done_callback(lambda t: _join_done(joins, t))
            elif event == "leave-room":
                relay.leave(websocket, data)
            elif event == "ping":
                await websocket.send_json(control_message(ControlEvent.PONG, timestamp=now_ms()))
            else:
                await websocket.send_json(control_message(ControlEvent.ERROR, message=f"Unknown event: {event}"))
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", id(websocket))
    finally:
        for task in list(joins):
            task.cancel()
        relay.drop(websocket)
