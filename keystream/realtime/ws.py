"""
WebSocket Connection Handler
============================

Provides the live-typing WebSocket endpoint and orchestrates one
connection's lifecycle.

Connection:
    - /ws?room=<room>   (room defaults to DEFAULT_ROOM, "global")

Client Frames:
    - {"type": "join", "username": "...", "sessionId": "...", "browserFingerprint": "..."}
    - {"type": "keystroke", "username": "...", "content": "...", "isTyping": true, "yPosition": 40}
    - {"type": "newMessage", "username": "...", "content": "...", "yPosition": 40}
    - {"type": "leave", "username": "..."}

Server Events:
    - keystroke / newMessage / join / leave, broadcast to the rest of the room
    - {"type": "nameError", "username": "...", "room": "...", "error": "..."}  (unicast)

Per-frame pipeline:
    rate guard -> JSON/schema validation -> content guard -> username
    ownership -> session refresh -> persist and/or broadcast

Protocol errors and abuse are dropped without closing the connection.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..dependencies import (
    get_app_settings,
    get_fanout,
    get_guard,
    get_registry,
    get_store,
)
from ..models import InboundFrame, MessageCreate, OutboundFrame
from ..sessions import DEFAULT_FINGERPRINT, SessionRegistry, generate_session_id
from ..storage import MessageStore
from .guard import FrameGuard
from .manager import RoomFanout
from .state import ConnectionState

logger = logging.getLogger("keystream.realtime.ws")

# Router instance
realtime_router = APIRouter()


class ConnectionHandler:
    """
    Runs the frame pipeline for a single connection.

    The handler owns the ConnectionState and threads it into the guard,
    the session registry and the fanout.
    """

    def __init__(
        self,
        state: ConnectionState,
        registry: SessionRegistry,
        guard: FrameGuard,
        store: MessageStore,
        fanout: RoomFanout,
    ):
        self.state = state
        self.registry = registry
        self.guard = guard
        self.store = store
        self.fanout = fanout

    async def handle_text(self, raw: str) -> bool:
        """
        Process one inbound text frame.

        Returns:
            True if the frame was accepted and acted upon, False if dropped
        """
        state = self.state

        if not self.guard.admit(state):
            return False

        frame = self._parse(raw)
        if frame is None:
            return False

        reason = self.guard.inspect_content(frame.content)
        if reason:
            logger.info(
                f"Dropped frame from user {frame.username}: {reason}",
                extra={"connection_id": state.connection_id, "reason": reason},
            )
            return False

        if not await self._check_identity(frame):
            return False

        await self.registry.touch(state.session_id)

        state.username = frame.username
        if frame.room != state.room:
            await self.fanout.assign_room(state.connection_id, frame.room)
            state.room = frame.room

        self.guard.mark_accepted(state)
        await self._dispatch(frame)
        return True

    def _parse(self, raw: str) -> Optional[InboundFrame]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Invalid JSON frame",
                extra={"connection_id": self.state.connection_id},
            )
            return None

        if not isinstance(data, dict):
            logger.warning(
                "Frame is not a JSON object",
                extra={"connection_id": self.state.connection_id},
            )
            return None

        if not data.get("room"):
            data["room"] = self.state.room

        try:
            return InboundFrame.model_validate(data)
        except ValidationError as e:
            logger.warning(
                f"Invalid frame: {e.error_count()} validation errors",
                extra={"connection_id": self.state.connection_id, "errors": e.errors(include_url=False)},
            )
            return None

    async def _check_identity(self, frame: InboundFrame) -> bool:
        state = self.state

        if frame.type == "join":
            session_id = frame.sessionId or generate_session_id()
            fingerprint = frame.browserFingerprint or DEFAULT_FINGERPRINT
            already_counted = state.joined and state.session_id == session_id

            decision, _ = await self.registry.validate_and_claim(
                frame.username,
                frame.room,
                session_id,
                fingerprint,
                new_connection=not already_counted,
            )
            if not decision.allowed:
                await self._send_name_error(frame, decision.reason)
                return False

            if state.joined and state.session_id != session_id:
                await self.registry.release_connection(state.session_id)

            state.session_id = session_id
            state.browser_fingerprint = fingerprint
            state.joined = True
            return True

        decision = await self.registry.validate_ownership(
            frame.username, frame.room, state.session_id, state.browser_fingerprint
        )
        if not decision.allowed:
            await self._send_name_error(frame, decision.reason)
            return False

        return True

    async def _send_name_error(self, frame: InboundFrame, reason: Optional[str]) -> None:
        event = OutboundFrame(
            type="nameError",
            username=frame.username,
            room=frame.room,
            error=reason,
        ).to_event()
        await self.fanout.send_to(self.state.connection_id, event)

    async def _dispatch(self, frame: InboundFrame) -> None:
        sender = self.state.connection_id

        if frame.type == "keystroke":
            await self.fanout.broadcast(frame.room, _relay_fields(frame, "keystroke"), exclude=sender)

        elif frame.type == "newMessage":
            event = _relay_fields(frame, "newMessage")

            if frame.content and frame.yPosition is not None:
                message = await self.store.append(
                    MessageCreate(
                        username=frame.username,
                        content=frame.content,
                        room=frame.room,
                        isTyping=False,
                        xPosition=0,
                        yPosition=frame.yPosition,
                        userColor=frame.userColor,
                        fontSize=frame.fontSize,
                        sourceUrl=frame.sourceUrl,
                        sourceLabel=frame.sourceLabel,
                        storyUrl=frame.storyUrl,
                        storyLabel=frame.storyLabel,
                    )
                )
                event["id"] = message.id
                event["timestamp"] = message.timestamp.isoformat()

            await self.fanout.broadcast(frame.room, event, exclude=sender)

        else:
            event = OutboundFrame(type=frame.type, username=frame.username, room=frame.room).to_event()
            await self.fanout.broadcast(frame.room, event, exclude=sender)

    async def close(self) -> None:
        """
        Tear down the connection.

        The connection leaves the fanout first; `leave` is announced only when
        no other connection of the same session is still live.
        """
        state = self.state
        await self.fanout.unregister(state.connection_id)

        remaining = await self.fanout.session_connection_count(state.session_id)
        if state.joined:
            await self.registry.release_connection(state.session_id)

        if remaining == 0 and state.username:
            event = OutboundFrame(type="leave", username=state.username, room=state.room).to_event()
            await self.fanout.broadcast(state.room, event)


def _relay_fields(frame: InboundFrame, event_type: str) -> Dict[str, Any]:
    return OutboundFrame(
        type=event_type,
        username=frame.username,
        room=frame.room,
        content=frame.content,
        isTyping=frame.isTyping,
        yPosition=frame.yPosition,
        userColor=frame.userColor,
        fontSize=frame.fontSize,
        sourceUrl=frame.sourceUrl,
        sourceLabel=frame.sourceLabel,
        storyUrl=frame.storyUrl,
        storyLabel=frame.storyLabel,
        serverPrepared=frame.serverPrepared,
    ).to_event()


@realtime_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    room: Optional[str] = Query(None),
):
    """
    WebSocket endpoint for live typing.

    Args:
        websocket: WebSocket connection
        room: Room to join (defaults to DEFAULT_ROOM)
    """
    settings = get_app_settings(websocket)
    guard = get_guard(websocket)
    fanout = get_fanout(websocket)

    await websocket.accept()

    state = ConnectionState(room=room or settings.DEFAULT_ROOM)
    guard.start(state)
    await fanout.register(websocket, state)

    handler = ConnectionHandler(
        state=state,
        registry=get_registry(websocket),
        guard=guard,
        store=get_store(websocket),
        fanout=fanout,
    )

    try:
        while True:
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket disconnected by client")
                break

            text = message.get("text")
            if text is None:
                logger.warning(
                    "Binary frame ignored",
                    extra={"connection_id": state.connection_id},
                )
                continue

            try:
                await handler.handle_text(text)
            except Exception as e:
                logger.error(f"Error handling WebSocket message: {str(e)}", exc_info=True)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")

    except Exception as e:
        logger.error(f"WebSocket error: {str(e)}", exc_info=True)

    finally:
        await handler.close()


__all__ = ["ConnectionHandler", "realtime_router"]
