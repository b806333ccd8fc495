"""
Rate/Content Guard
==================

Per-connection gate applied before any frame reaches business logic.

Two independent checks:
    - Rate: a minimum gap between accepted frames plus a fixed-window cap
    - Content: length cap, long runs of one character, symbol-heavy text

A failed check is a silent drop. Nothing is sent back to the client so a
spammer gets no feedback about which rule tripped.
"""

import logging
import re
import time
from typing import Callable, Optional

from .state import ConnectionState

logger = logging.getLogger("keystream.realtime.guard")

_SYMBOL_PATTERN = re.compile(r"[^a-zA-Z0-9\s]")


class FrameGuard:
    """
    Stateless policy over ConnectionState counters.

    Args:
        min_interval_ms: Frames closer than this to the last accepted frame are dropped
        window_seconds: Length of the fixed rate window
        max_messages: Frames allowed per window
        max_length: Longest accepted content
        max_repeat: Longest accepted run of one character
        max_symbol_ratio: Highest accepted share of symbol characters
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        min_interval_ms: int = 50,
        window_seconds: float = 60.0,
        max_messages: int = 50,
        max_length: int = 200,
        max_repeat: int = 10,
        max_symbol_ratio: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval_ms / 1000.0
        self.window_seconds = window_seconds
        self.max_messages = max_messages
        self.max_length = max_length
        self.max_symbol_ratio = max_symbol_ratio
        self._repeat_pattern = re.compile(r"(.)\1{%d,}" % max_repeat, re.DOTALL)
        self._clock = clock

    # =========================================================================
    # Rate limiting
    # =========================================================================

    def start(self, state: ConnectionState) -> None:
        """Open the first rate window for a new connection."""
        state.message_count = 0
        state.window_start = self._clock()
        state.last_message_time = None

    def admit(self, state: ConnectionState) -> bool:
        """
        Count a frame attempt against the connection's rate limits.

        Returns:
            True if the frame may proceed, False if it must be dropped
        """
        now = self._clock()

        if state.last_message_time is not None and now - state.last_message_time < self.min_interval:
            logger.debug(
                "Frame dropped: below minimum interval",
                extra={"connection_id": state.connection_id},
            )
            return False

        if now - state.window_start > self.window_seconds:
            state.message_count = 0
            state.window_start = now

        state.message_count += 1

        if state.message_count > self.max_messages:
            logger.info(
                f"Rate limit exceeded for user {state.username}",
                extra={"connection_id": state.connection_id, "count": state.message_count},
            )
            return False

        return True

    def mark_accepted(self, state: ConnectionState) -> None:
        """Start the minimum-interval clock from a fully accepted frame."""
        state.last_message_time = self._clock()

    # =========================================================================
    # Content heuristics
    # =========================================================================

    def inspect_content(self, content: Optional[str]) -> Optional[str]:
        """
        Apply the content heuristics.

        Returns:
            None if the content is acceptable, otherwise a short reason
        """
        if not content:
            return None

        if len(content) > self.max_length:
            return "too_long"

        if self._repeat_pattern.search(content):
            return "repeated_characters"

        symbols = len(_SYMBOL_PATTERN.findall(content))
        if symbols > len(content) * self.max_symbol_ratio:
            return "excessive_symbols"

        return None
