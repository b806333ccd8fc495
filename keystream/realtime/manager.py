"""
Room Fanout
===========

Maintains the live WebSocket connection set and delivers events to the
members of a room.

Features:
    - Room index (room -> connection ids) kept in sync with each connection's room
    - Non-blocking delivery: every connection has a bounded outbound queue
      drained by its own writer task, so one slow socket never stalls a broadcast
    - Connections whose queue overflows or whose send fails are pruned and
      closed in the background, never retried; the caller never waits on a close
    - Per-connection FIFO: events enqueued for one connection are written in order

Event kinds delivered: keystroke, newMessage, join, leave (broadcast) and
nameError (unicast via send_to).
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, status

from .state import ConnectionState

logger = logging.getLogger("keystream.realtime.manager")


@dataclass
class _Peer:
    websocket: WebSocket
    state: ConnectionState
    queue: asyncio.Queue
    writer: Optional[asyncio.Task] = None


class RoomFanout:
    """
    Manages WebSocket connections grouped by room.

    Attributes:
        queue_size: Outbound frames buffered per connection before it is pruned
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size

        # connection_id -> peer
        self._peers: Dict[str, _Peer] = {}

        # room -> Set[connection_id]
        self._rooms: Dict[str, Set[str]] = defaultdict(set)

        # close handshakes of pruned connections still in flight
        self._closers: Set[asyncio.Task] = set()

        self._lock = asyncio.Lock()

        logger.info("RoomFanout initialized")

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(self, websocket: WebSocket, state: ConnectionState) -> None:
        """
        Register an accepted WebSocket and start its writer task.

        Args:
            websocket: Accepted WebSocket connection
            state: Connection state owned by the handler
        """
        peer = _Peer(websocket=websocket, state=state, queue=asyncio.Queue(maxsize=self.queue_size))
        peer.writer = asyncio.create_task(
            self._write_loop(peer), name=f"ws-writer-{state.connection_id}"
        )

        async with self._lock:
            self._peers[state.connection_id] = peer
            self._rooms[state.room].add(state.connection_id)

        logger.info(
            "WebSocket connected",
            extra={
                "connection_id": state.connection_id,
                "room": state.room,
                "total_connections": len(self._peers),
            },
        )

    async def unregister(self, connection_id: str) -> Optional[ConnectionState]:
        """
        Remove a connection and stop its writer.

        Returns:
            The connection's state, or None if it was already pruned
        """
        async with self._lock:
            peer = self._detach(connection_id)

        if peer is None:
            return None

        await self._stop_writer(peer)

        logger.info(
            "WebSocket disconnected",
            extra={
                "connection_id": connection_id,
                "room": peer.state.room,
                "total_connections": len(self._peers),
            },
        )
        return peer.state

    async def assign_room(self, connection_id: str, room: str) -> bool:
        """Move a connection to another room."""
        async with self._lock:
            peer = self._peers.get(connection_id)
            if peer is None:
                return False

            if peer.state.room != room:
                self._leave_room(peer.state.room, connection_id)
                peer.state.room = room
                self._rooms[room].add(connection_id)

            return True

    def _detach(self, connection_id: str) -> Optional[_Peer]:
        peer = self._peers.pop(connection_id, None)
        if peer is not None:
            self._leave_room(peer.state.room, connection_id)
        return peer

    def _leave_room(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    # =========================================================================
    # Delivery
    # =========================================================================

    async def broadcast(
        self,
        room: str,
        event: Dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        """
        Deliver an event to every connection in a room.

        Args:
            room: Target room
            event: JSON-serializable event
            exclude: Connection id to skip (normally the sender's own socket)

        Returns:
            int: Number of connections the event was queued for
        """
        async with self._lock:
            recipients = [
                self._peers[cid]
                for cid in self._rooms.get(room, ())
                if cid != exclude and cid in self._peers
            ]

        if not recipients:
            return 0

        message = json.dumps(event)
        sent_count = 0
        failed: List[_Peer] = []

        for peer in recipients:
            if self._enqueue(peer, message):
                sent_count += 1
            else:
                failed.append(peer)

        for peer in failed:
            await self._prune(peer, "outbound queue full")

        logger.debug(
            "Broadcast event",
            extra={
                "room": room,
                "event_type": event.get("type"),
                "recipients": sent_count,
                "failed": len(failed),
            },
        )
        return sent_count

    async def send_to(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """Deliver an event to a single connection."""
        async with self._lock:
            peer = self._peers.get(connection_id)

        if peer is None:
            return False

        if self._enqueue(peer, json.dumps(event)):
            return True

        await self._prune(peer, "outbound queue full")
        return False

    def _enqueue(self, peer: _Peer, message: str) -> bool:
        try:
            peer.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    async def _write_loop(self, peer: _Peer) -> None:
        while True:
            message = await peer.queue.get()
            try:
                await peer.websocket.send_text(message)
            except Exception as e:
                logger.warning(
                    f"Failed to send to WebSocket: {str(e)}",
                    extra={"connection_id": peer.state.connection_id},
                )
                async with self._lock:
                    self._detach(peer.state.connection_id)
                return

    async def _prune(self, peer: _Peer, reason: str) -> None:
        """
        Drop a connection without waiting on its transport.

        The writer is cancelled and the close frame is sent from a tracked
        background task, so the caller returns as soon as the peer is detached.
        """
        async with self._lock:
            detached = self._detach(peer.state.connection_id)

        if detached is None:
            return

        logger.warning(
            f"Pruned WebSocket: {reason}",
            extra={"connection_id": peer.state.connection_id, "room": peer.state.room},
        )

        if peer.writer is not None and peer.writer is not asyncio.current_task():
            peer.writer.cancel()

        closer = asyncio.create_task(
            self._close_pruned(peer), name=f"ws-close-{peer.state.connection_id}"
        )
        self._closers.add(closer)
        closer.add_done_callback(self._closers.discard)

    async def _close_pruned(self, peer: _Peer) -> None:
        await self._stop_writer(peer)
        try:
            await peer.websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Connection too slow")
        except Exception as e:
            logger.debug(f"Error closing pruned WebSocket: {str(e)}")

    async def _stop_writer(self, peer: _Peer) -> None:
        writer = peer.writer
        if writer is None or writer is asyncio.current_task():
            return

        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    # =========================================================================
    # Queries / shutdown
    # =========================================================================

    async def session_connection_count(self, session_id: str) -> int:
        """Number of live connections belonging to a session."""
        async with self._lock:
            return sum(1 for peer in self._peers.values() if peer.state.session_id == session_id)

    def stats(self) -> Dict[str, int]:
        return {
            "active_connections": len(self._peers),
            "active_rooms": len(self._rooms),
        }

    async def close_all(self) -> None:
        """
        Disconnect all active WebSocket connections gracefully.

        Used during application shutdown.
        """
        async with self._lock:
            peers = list(self._peers.values())
            self._peers.clear()
            self._rooms.clear()

        for peer in peers:
            await self._stop_writer(peer)
            try:
                await peer.websocket.close(code=status.WS_1001_GOING_AWAY, reason="Server shutdown")
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {str(e)}")

        closers = list(self._closers)
        for closer in closers:
            closer.cancel()
        if closers:
            await asyncio.gather(*closers, return_exceptions=True)

        logger.info("All WebSocket connections closed")
