"""
Periodic background tasks owned by service components.

Each component that needs a timer (session sweep, message retention sweep,
relay tick) owns one PeriodicTask, starts it from the application lifespan
and stops it at shutdown.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("keystream.periodic")


class PeriodicTask:
    """
    Run an async callback every `interval` seconds until stopped.

    A failing callback is logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
    ):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug(f"Started periodic task {self.name} every {self.interval}s")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"Stopped periodic task {self.name}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Periodic task {self.name} failed: {e}",
                    extra={"task": self.name},
                    exc_info=True,
                )
