"""
Realtime Query Endpoints

This module exposes the HTTP side of the realtime service.

Key responsibilities:
- Return recent room history so a client can render what it missed
- Report live connection, session and relay statistics
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from ..dependencies import (
    get_app_settings,
    get_fanout,
    get_registry,
    get_scheduler,
    get_store,
)
from ..models import Message

logger = logging.getLogger("keystream.realtime.events")

# Router for room history
history_router = APIRouter(prefix="/api", tags=["messages"])

# Router for service status
status_router = APIRouter(prefix="/realtime", tags=["realtime"])


@history_router.get("/messages/{room}", response_model=List[Message])
async def get_recent_messages(
    request: Request,
    room: str,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum messages to return"),
) -> List[Message]:
    """
    Return the most recent messages of a room in chronological order.

    Args:
        request: FastAPI request object
        room: Room name
        limit: Maximum number of messages (defaults to HISTORY_LIMIT)

    Raises:
        HTTPException: 500 if the store fails
    """
    settings = get_app_settings(request)
    store = get_store(request)

    try:
        return await store.recent(room, limit or settings.HISTORY_LIMIT)
    except Exception as e:
        logger.error(
            f"Failed to fetch messages: {e}",
            extra={"room": room},
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch messages",
        )


@status_router.get("/status")
async def realtime_status(request: Request) -> Dict[str, Any]:
    """
    Get real-time service status and statistics.

    Returns:
        dict: Connection, session and relay statistics
    """
    registry = get_registry(request)
    scheduler = get_scheduler(request)

    return {
        "status": "ok",
        **get_fanout(request).stats(),
        "active_sessions": registry.session_count,
        "claimed_usernames": registry.ownership_count,
        "pending_relay_jobs": scheduler.pending_count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


__all__ = ["history_router", "status_router"]
