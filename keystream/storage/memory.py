"""
Message Store
=============

Append-only, TTL-bounded log of completed chat messages per room.

MessageStore is the contract any backend must satisfy (an external
relational store could implement it); InMemoryMessageStore is the
process-memory implementation used by the service. Retention is a
memory-management concern only: nothing here survives a restart.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ..models import Message, MessageCreate
from ..periodic import PeriodicTask

logger = logging.getLogger("keystream.storage")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStore(ABC):
    """Storage contract for completed messages."""

    @abstractmethod
    async def append(self, message: MessageCreate) -> Message:
        """Store a message, assigning its id and creation timestamp."""

    @abstractmethod
    async def recent(self, room: str, limit: int = 50) -> List[Message]:
        """Return the newest `limit` messages of a room, oldest first."""

    @abstractmethod
    async def update(self, message_id: int, **changes: Any) -> Optional[Message]:
        """Apply field changes to a stored message; None if it is gone."""

    @abstractmethod
    async def delete_older_than(self, minutes: int = 30) -> int:
        """Drop messages created more than `minutes` ago; returns how many."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class InMemoryMessageStore(MessageStore):
    """
    Process-memory message store.

    Thread-safe for a single event loop using asyncio.Lock. A periodic sweep
    (started by start()) evicts messages older than the retention window.
    """

    def __init__(
        self,
        ttl_minutes: int = 30,
        sweep_interval: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            ttl_minutes: Retention window for messages
            sweep_interval: Seconds between retention sweeps
            clock: Source of creation timestamps (UTC datetimes)
        """
        self._messages: Dict[int, Message] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        self._ttl_minutes = ttl_minutes
        self._clock = clock
        self._sweeper = PeriodicTask("message-ttl-sweep", sweep_interval, self.sweep)

    async def append(self, message: MessageCreate) -> Message:
        async with self._lock:
            stored = Message(
                **message.model_dump(),
                id=self._next_id,
                timestamp=self._clock(),
            )
            self._messages[stored.id] = stored
            self._next_id += 1

        logger.debug(
            f"Stored message {stored.id} in room {stored.room}",
            extra={"message_id": stored.id, "room": stored.room},
        )
        return stored

    async def recent(self, room: str, limit: int = 50) -> List[Message]:
        if limit <= 0:
            return []

        async with self._lock:
            room_messages = [m for m in self._messages.values() if m.room == room]

        room_messages.sort(key=lambda m: (m.timestamp, m.id))
        return room_messages[-limit:]

    async def update(self, message_id: int, **changes: Any) -> Optional[Message]:
        changes.pop("id", None)

        async with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None

            updated = message.model_copy(update=changes)
            self._messages[message_id] = updated
            return updated

    async def delete_older_than(self, minutes: int = 30) -> int:
        cutoff = self._clock() - timedelta(minutes=minutes)

        async with self._lock:
            expired = [mid for mid, m in self._messages.items() if m.timestamp < cutoff]
            for mid in expired:
                del self._messages[mid]

        if expired:
            logger.info(
                f"Deleted {len(expired)} messages older than {minutes} minutes",
                extra={"deleted": len(expired)},
            )
        return len(expired)

    async def sweep(self) -> int:
        return await self.delete_older_than(self._ttl_minutes)

    async def count(self) -> int:
        async with self._lock:
            return len(self._messages)

    async def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()
