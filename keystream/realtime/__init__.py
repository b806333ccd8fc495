"""
Realtime Package

This package contains WebSocket connection management, room fanout and the
anti-abuse guard for the keystream service.

Modules:
- state: Per-connection state struct
- guard: Rate limiting and content heuristics
- manager: RoomFanout with per-connection outbound queues
- ws: WebSocket endpoint and per-connection frame pipeline
- events: Room history and status endpoints
"""

from .events import history_router, status_router
from .ws import realtime_router

__all__ = [
    "history_router",
    "realtime_router",
    "status_router",
]
