"""
Per-connection state owned by the WebSocket handler.

The handler threads this struct into the guard, the registry and the fanout
instead of hanging attributes off the socket object.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..sessions import DEFAULT_FINGERPRINT, generate_session_id


@dataclass
class ConnectionState:
    room: str
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    username: Optional[str] = None
    session_id: str = field(default_factory=generate_session_id)
    browser_fingerprint: str = DEFAULT_FINGERPRINT
    joined: bool = False

    # Rate limiting counters
    message_count: int = 0
    window_start: float = 0.0
    last_message_time: Optional[float] = None
