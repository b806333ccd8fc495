"""
Session Registry
================

Owns session lifecycle and username ownership for every room.

A session is a logical user that may span several connections (tabs).
Ownership maps (room, username) to the one session allowed to speak under
that name. A different browser fingerprint can never take a name that a live
session holds; the same fingerprint may take it over (handoff after a
reconnect with a fresh session id).

Concurrency:
    All maps are guarded by one asyncio.Lock. validate_and_claim() runs both
    steps under that lock, so two joins racing for the same free name are
    serialized: the first one wins and the second is validated against it.
"""

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from ..periodic import PeriodicTask

logger = logging.getLogger("keystream.sessions")

DEFAULT_FINGERPRINT = "unknown"

_SESSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id(clock: Callable[[], float] = time.time) -> str:
    """Server-side session id for clients that do not bring their own."""
    suffix = "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"session_{int(clock() * 1000)}_{suffix}"


@dataclass
class Session:
    session_id: str
    username: str
    room: str
    browser_fingerprint: str
    last_seen: float
    connection_count: int = 0


@dataclass(frozen=True)
class OwnershipDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = OwnershipDecision(allowed=True)


class SessionRegistry:
    """
    In-memory registry of sessions and username ownership.

    Attributes:
        timeout: Seconds of inactivity after which a session expires
    """

    def __init__(
        self,
        timeout: float = 30 * 60,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout = timeout
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._owners: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()
        self._sweeper = PeriodicTask("session-expiry-sweep", sweep_interval, self.expire_stale)

    # =========================================================================
    # Ownership
    # =========================================================================

    async def validate_ownership(
        self,
        username: str,
        room: str,
        session_id: str,
        fingerprint: str,
    ) -> OwnershipDecision:
        """
        Check whether a session may use a username in a room.

        Args:
            username: Requested display name
            room: Room the name is used in
            session_id: Session of the requesting connection
            fingerprint: Browser fingerprint of the requesting connection

        Returns:
            OwnershipDecision; denied only when another fingerprint holds the name
        """
        async with self._lock:
            return self._validate(username, room, session_id, fingerprint)

    async def claim(
        self,
        username: str,
        room: str,
        session_id: str,
        fingerprint: str,
        new_connection: bool = True,
    ) -> Session:
        """Create or refresh a session and make it the owner of the name."""
        async with self._lock:
            return self._claim(username, room, session_id, fingerprint, new_connection)

    async def validate_and_claim(
        self,
        username: str,
        room: str,
        session_id: str,
        fingerprint: str,
        new_connection: bool = True,
    ) -> Tuple[OwnershipDecision, Optional[Session]]:
        """
        Atomically validate and, when allowed, claim a username.

        Args:
            new_connection: False when the claiming connection is already
                counted against this session (a repeated join)

        Returns:
            (decision, session) where session is None if the claim was denied
        """
        async with self._lock:
            decision = self._validate(username, room, session_id, fingerprint)
            if not decision.allowed:
                return decision, None
            return decision, self._claim(username, room, session_id, fingerprint, new_connection)

    def _validate(
        self,
        username: str,
        room: str,
        session_id: str,
        fingerprint: str,
    ) -> OwnershipDecision:
        key = (room, username)
        owner_id = self._owners.get(key)

        if owner_id is None:
            return ALLOWED

        owner = self._sessions.get(owner_id)
        if owner is None:
            # Owner vanished without releasing the name
            del self._owners[key]
            return ALLOWED

        if self._is_stale(owner, self._clock()):
            self._expire(owner)
            return ALLOWED

        if owner_id == session_id:
            return ALLOWED

        if owner.browser_fingerprint == fingerprint:
            return ALLOWED

        logger.info(
            f"Denied username {username!r} in room {room!r}",
            extra={"room": room, "username": username, "owner_session": owner_id},
        )
        return OwnershipDecision(
            allowed=False,
            reason=f'Username "{username}" is already taken by another user in this room.',
        )

    def _claim(
        self,
        username: str,
        room: str,
        session_id: str,
        fingerprint: str,
        new_connection: bool = True,
    ) -> Session:
        now = self._clock()
        key = (room, username)
        previous = self._sessions.get(session_id)
        connection_count = 1

        if previous is not None:
            old_key = (previous.room, previous.username)
            if old_key != key and self._owners.get(old_key) == session_id:
                del self._owners[old_key]
            # a re-join from an already counted connection keeps the count
            connection_count = previous.connection_count + (1 if new_connection else 0)

        session = Session(
            session_id=session_id,
            username=username,
            room=room,
            browser_fingerprint=fingerprint,
            last_seen=now,
            connection_count=connection_count,
        )
        self._sessions[session_id] = session

        handed_off_from = self._owners.get(key)
        self._owners[key] = session_id

        if handed_off_from is not None and handed_off_from != session_id:
            logger.info(
                f"Username {username!r} handed off in room {room!r}",
                extra={"room": room, "from_session": handed_off_from, "to_session": session_id},
            )

        return replace(session)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def touch(self, session_id: str) -> bool:
        """Refresh last_seen; returns False for unknown sessions."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.last_seen = self._clock()
            return True

    async def release_connection(self, session_id: str) -> Optional[Session]:
        """Record that one connection of the session went away."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.connection_count = max(0, session.connection_count - 1)
            session.last_seen = self._clock()
            return replace(session)

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    async def owner_of(self, room: str, username: str) -> Optional[str]:
        async with self._lock:
            return self._owners.get((room, username))

    async def expire_stale(self) -> List[Session]:
        """
        Expire every session idle for longer than the timeout.

        Returns:
            The expired sessions
        """
        now = self._clock()
        async with self._lock:
            stale = [s for s in self._sessions.values() if self._is_stale(s, now)]
            for session in stale:
                self._expire(session)

        if stale:
            logger.info(
                f"Expired {len(stale)} idle sessions",
                extra={"expired": len(stale), "remaining": len(self._sessions)},
            )
        return stale

    def _is_stale(self, session: Session, now: float) -> bool:
        return now - session.last_seen > self.timeout

    def _expire(self, session: Session) -> None:
        key = (session.room, session.username)
        if self._owners.get(key) == session.session_id:
            del self._owners[key]
        self._sessions.pop(session.session_id, None)
        logger.debug(f"Session {session.session_id} expired")

    # =========================================================================
    # Lifecycle / stats
    # =========================================================================

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def ownership_count(self) -> int:
        return len(self._owners)

    async def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()
