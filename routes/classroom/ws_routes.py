import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from config import VERIFY_ROOM_MEMBERSHIP
from dependencies import (
    ClassroomStoreDep,
    MessagePipelineDep,
    RoomManagerDep,
    SessionAuthenticatorDep,
)
from models.classroom.chat_schemas import ChatMessageIn
from services.classroom_store import ClassroomStore
from services.errors import ClassroomError
from services.message_pipeline import MessagePipeline
from services.ws_manager import Connection, RoomChannelManager

logger = logging.getLogger(__name__)

router = APIRouter()

# close code sent when the handshake carries no usable session
WS_CLOSE_UNAUTHENTICATED = 4001


@router.websocket("/ws/chat")
async def classroom_ws(
    websocket: WebSocket,
    authenticator: SessionAuthenticatorDep,
    manager: RoomManagerDep,
    store: ClassroomStoreDep,
    pipeline: MessagePipelineDep,
):
    """Realtime channel for classroom chat.

    Frames are JSON envelopes ``{"event": ..., "data": ...}``. Clients send
    ``joinRoom`` and ``chatMessage``; the server pushes ``message`` (and
    ``fileAdded`` when enabled). Failed client events are logged and dropped,
    nothing is sent back to the client.
    """
    identity = await authenticator.authenticate(websocket)
    if identity is None:
        logger.info("Refusing realtime connection without a session from %s", websocket.client)
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    await websocket.accept()
    conn = manager.register(websocket, identity)
    logger.info("User %s (%s) connected to the realtime channel", identity.username, identity.role)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning("Ignoring binary frame from user %s", identity.user_id)
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON frame from user %s", identity.user_id)
                continue
            if not isinstance(frame, dict):
                logger.warning("Ignoring malformed frame from user %s", identity.user_id)
                continue

            event = frame.get("event")
            data = frame.get("data")
            if event == "joinRoom":
                await _handle_join(conn, data, manager, store)
            elif event == "chatMessage":
                await _handle_chat_message(conn, data, pipeline)
            else:
                logger.warning("Ignoring unknown event %r from user %s", event, identity.user_id)
    except WebSocketDisconnect:
        pass
    finally:
        manager.leave(conn)
        logger.info("User %s disconnected from the realtime channel", identity.username)


def _room_id(data: Any):
    if isinstance(data, dict):
        data = data.get("classroomId")
    if isinstance(data, str):
        return data.strip() or None
    return None


async def _handle_join(conn: Connection, data: Any, manager: RoomChannelManager, store: ClassroomStore):
    class_id = _room_id(data)
    if not class_id:
        logger.warning("joinRoom without a classroom id from user %s", conn.user_id)
        return
    if class_id in manager.rooms_of(conn):
        return
    if VERIFY_ROOM_MEMBERSHIP:
        try:
            allowed = await store.is_member(class_id, conn.user_id)
        except ClassroomError as exc:
            logger.error("joinRoom %s by user %s dropped: %s", class_id, conn.user_id, exc.message)
            return
        if not allowed:
            logger.warning("User %s is not a member of classroom %s, joinRoom ignored", conn.user_id, class_id)
            return
    manager.join(conn, class_id)
    logger.info("%s joined room %s", conn.identity.username, class_id)


async def _handle_chat_message(conn: Connection, data: Any, pipeline: MessagePipeline):
    try:
        incoming = ChatMessageIn.model_validate(data)
    except ValidationError as exc:
        logger.warning("Malformed chatMessage from user %s: %s", conn.user_id, exc.errors())
        return
    try:
        await pipeline.submit_message(
            conn.identity,
            incoming.classroom_id,
            content=incoming.content,
            message_type=incoming.type,
            attachment_url=incoming.resolved_attachment_url(),
        )
    except ClassroomError as exc:
        logger.warning(
            "Dropped chatMessage from user %s in classroom %s: %s (%s)",
            conn.user_id, incoming.classroom_id, exc.message, type(exc).__name__,
        )
