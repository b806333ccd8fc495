"""
FastAPI dependencies resolving the per-application components.

Components are created by the application factory and stored on
`app.state`; routes and the WebSocket handler reach them only through these
helpers.
"""

import hmac
import logging
from typing import TYPE_CHECKING, Optional

from fastapi import Header, HTTPException, Request, status
from fastapi.requests import HTTPConnection

from .config import Settings

if TYPE_CHECKING:
    from .realtime.guard import FrameGuard
    from .realtime.manager import RoomFanout
    from .relay.scheduler import RelayScheduler
    from .sessions import SessionRegistry
    from .storage import MessageStore

logger = logging.getLogger("keystream.dependencies")


def get_app_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings


def get_store(conn: HTTPConnection) -> "MessageStore":
    return conn.app.state.store


def get_registry(conn: HTTPConnection) -> "SessionRegistry":
    return conn.app.state.registry


def get_fanout(conn: HTTPConnection) -> "RoomFanout":
    return conn.app.state.fanout


def get_guard(conn: HTTPConnection) -> "FrameGuard":
    return conn.app.state.guard


def get_scheduler(conn: HTTPConnection) -> "RelayScheduler":
    return conn.app.state.scheduler


def verify_relay_secret(
    request: Request,
    x_relay_secret: Optional[str] = Header(None, alias="X-Relay-Secret"),
) -> None:
    """
    Dependency that enforces the relay shared secret when one is configured.

    Raises:
        HTTPException: 401 if the secret is missing or wrong
    """
    expected = get_app_settings(request).RELAY_SHARED_SECRET
    if not expected:
        return

    if not x_relay_secret or not hmac.compare_digest(x_relay_secret, expected):
        logger.warning(
            "Relay ingestion rejected: invalid or missing X-Relay-Secret header",
            extra={"path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing X-Relay-Secret header",
        )
