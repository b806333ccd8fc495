"""
Shared test fixtures: controllable clocks and recording fakes.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest


class FakeClock:
    """Monotonic/epoch clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """UTC datetime clock advanced by hand."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingFanout:
    """Stands in for RoomFanout and remembers every broadcast."""

    def __init__(self):
        self.broadcasts: List[Tuple[str, Dict[str, Any], Optional[str]]] = []

    async def broadcast(self, room: str, event: Dict[str, Any], exclude: Optional[str] = None) -> int:
        self.broadcasts.append((room, event, exclude))
        return 1

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for _, e, _ in self.broadcasts if event_type is None or e["type"] == event_type]


class FakeWebSocket:
    """Minimal WebSocket double recording what is sent to it."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[int] = None

    async def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = code


class StuckWebSocket(FakeWebSocket):
    """WebSocket whose sends never complete."""

    def __init__(self):
        super().__init__()
        self._never = asyncio.Event()

    async def send_text(self, text: str) -> None:
        await self._never.wait()


class BrokenWebSocket(FakeWebSocket):
    """WebSocket whose sends always fail."""

    async def send_text(self, text: str) -> None:
        raise RuntimeError("connection reset")


async def drain(rounds: int = 10) -> None:
    """Let writer tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def datetime_clock():
    return FakeDatetimeClock()


@pytest.fixture
def recording_fanout():
    return RecordingFanout()


class HangingWebSocket(FakeWebSocket):
    """WebSocket whose sends and close handshake never complete."""

    def __init__(self):
        super().__init__()
        self.close_started = False
        self._never = asyncio.Event()

    async def send_text(self, text: str) -> None:
        await self._never.wait()

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_started = True
        self.closed_with = code
        await self._never.wait()
