"""
Relay Scheduler
===============

Plays externally-sourced content into a room as if a user were typing it.

Flow:
    1. ingest() fingerprints the item, rejects unchanged re-pushes, and turns
       the item into a RelayJob holding one frame per character
    2. A single tick loop (every few milliseconds) emits ready frames as
       `keystroke` broadcasts and advances each job's cursor by the frame delay
    3. When a job runs out of frames it is removed, its content is stored as a
       message and one final `newMessage` (serverPrepared) is broadcast

Fairness:
    Each tick hands out frames round-robin, one per job per round, with a cap
    per job and a cap for the whole tick. After a stall, a long job catches up
    over several ticks instead of flooding the fanout or starving other jobs.
"""

import asyncio
import html
import logging
import random
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..errors import DuplicateItemError, EmptyItemError
from ..models import MessageCreate, OutboundFrame, RelayItem
from ..periodic import PeriodicTask
from ..realtime.manager import RoomFanout
from ..storage import MessageStore
from .cadence import Frame, build_frames
from .dedup import DedupLedger, item_fingerprint

logger = logging.getLogger("keystream.relay.scheduler")

Y_POSITION_MIN = 8.0
Y_POSITION_MAX = 88.0
MAX_USERNAME_LENGTH = 64

_TAG_PATTERN = re.compile(r"<[^>]+>")
_SPACE_PATTERN = re.compile(r"\s+")


# ============================================================================
# Relay Job
# ============================================================================

@dataclass
class RelayJob:
    id: str
    external_id: str
    username: str
    room: str
    y_position: float
    final_content: str
    frames: List[Frame]
    next_fire_at: float
    frame_index: int = 0
    source_url: Optional[str] = None
    source_label: Optional[str] = None
    story_url: Optional[str] = None
    story_label: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def done(self) -> bool:
        return self.frame_index >= len(self.frames)

    def frame_event(self, frame: Frame) -> dict:
        return OutboundFrame(
            type="keystroke",
            username=self.username,
            room=self.room,
            content=frame.content,
            isTyping=True,
            yPosition=self.y_position,
            sourceUrl=self.source_url,
            sourceLabel=self.source_label,
            storyUrl=self.story_url,
            storyLabel=self.story_label,
        ).to_event()


# ============================================================================
# Item helpers
# ============================================================================

def _clean(raw: Optional[str]) -> str:
    if not raw:
        return ""
    text = html.unescape(_TAG_PATTERN.sub(" ", raw))
    return _SPACE_PATTERN.sub(" ", text).strip()


def relay_content(item: RelayItem, max_length: int = 200) -> str:
    """
    Text to type for an item: its title, else its body with markup removed.

    Content longer than max_length is cut and marked with "...".
    """
    text = _clean(item.title) or _clean(item.text)
    if len(text) > max_length:
        text = text[: max_length - 3].rstrip() + "..."
    return text


def relay_username(author: Optional[str], default: str) -> str:
    """Author name cut to MAX_USERNAME_LENGTH, or the default when blank."""
    name = (author or "").strip()[:MAX_USERNAME_LENGTH].rstrip()
    return name or default


def url_label(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    host = urlparse(url).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def _default_rng(job_id: str) -> random.Random:
    return random.Random(job_id)


# ============================================================================
# Scheduler
# ============================================================================

class RelayScheduler:
    """
    Owns the pending relay jobs, the dedup ledger and the tick loop.

    Args:
        store: Message store receiving completed relay messages
        fanout: Room fanout receiving keystroke and newMessage events
        tick_interval: Seconds between ticks
        max_frames_per_tick: Frames emitted across all jobs in one tick
        max_frames_per_job: Frames a single job may emit in one tick
        dedup_capacity: External items remembered for duplicate suppression
        default_username: Username for items without an author
        max_content_length: Longest relayed content before truncation
        clock: Monotonic clock in seconds
        rng_factory: Builds the per-job random generator from the job id
    """

    def __init__(
        self,
        store: MessageStore,
        fanout: RoomFanout,
        tick_interval: float = 0.012,
        max_frames_per_tick: int = 64,
        max_frames_per_job: int = 4,
        dedup_capacity: int = 5000,
        default_username: str = "relay",
        max_content_length: int = 200,
        clock: Callable[[], float] = time.monotonic,
        rng_factory: Callable[[str], random.Random] = _default_rng,
    ):
        self._store = store
        self._fanout = fanout
        self.max_frames_per_tick = max_frames_per_tick
        self.max_frames_per_job = max_frames_per_job
        self.default_username = default_username
        self.max_content_length = max_content_length
        self._clock = clock
        self._rng_factory = rng_factory

        self._jobs: Dict[str, RelayJob] = {}
        self._ledger = DedupLedger(capacity=dedup_capacity)
        self._rotation = 0
        self._lock = asyncio.Lock()
        self._ticker = PeriodicTask("relay-tick", tick_interval, self.tick)

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest(self, item: RelayItem, room: str) -> RelayJob:
        """
        Schedule an external item for typing playback.

        Args:
            item: External item
            room: Room to type it into

        Returns:
            The new RelayJob

        Raises:
            DuplicateItemError: The item is unchanged since it was last ingested
            EmptyItemError: The item has nothing to type
        """
        key = item.key
        fingerprint = item_fingerprint(item)
        content = relay_content(item, self.max_content_length)

        async with self._lock:
            if self._ledger.is_unchanged(key, fingerprint):
                raise DuplicateItemError(key)

            if not content:
                raise EmptyItemError(key)

            self._ledger.record(key, fingerprint)
            job = self._build_job(item, room, content)
            self._jobs[job.id] = job

        logger.info(
            f"Scheduled relay job {job.id} for item {key}",
            extra={"room": room, "external_id": key, "frames": len(job.frames)},
        )
        return job

    def _build_job(self, item: RelayItem, room: str, content: str) -> RelayJob:
        job_id = uuid.uuid4().hex
        rng = self._rng_factory(job_id)

        y_position = round(rng.uniform(Y_POSITION_MIN, Y_POSITION_MAX), 1)
        frames = build_frames(content, rng)

        source_url = item.url or item.sourceUrl
        story_url = item.sourceUrl if item.sourceUrl and item.sourceUrl != source_url else None

        return RelayJob(
            id=job_id,
            external_id=item.key,
            username=relay_username(item.author, self.default_username),
            room=room,
            y_position=y_position,
            final_content=content,
            frames=frames,
            next_fire_at=self._clock(),
            source_url=source_url,
            source_label=url_label(source_url),
            story_url=story_url,
            story_label=url_label(story_url),
        )

    # =========================================================================
    # Tick loop
    # =========================================================================

    async def tick(self) -> int:
        """
        Emit every frame that is due, within the fairness caps.

        Returns:
            Number of keystroke frames emitted
        """
        now = self._clock()
        emitted: List[Tuple[RelayJob, Frame]] = []
        completed: List[RelayJob] = []

        async with self._lock:
            ready = [job for job in self._jobs.values() if job.next_fire_at <= now]
            if ready:
                offset = self._rotation % len(ready)
                ready = ready[offset:] + ready[:offset]
                self._rotation += 1

            for _ in range(self.max_frames_per_job):
                progressed = False
                for job in ready:
                    if len(emitted) >= self.max_frames_per_tick:
                        break
                    if job.done or job.next_fire_at > now:
                        continue

                    frame = job.frames[job.frame_index]
                    job.frame_index += 1
                    job.next_fire_at += frame.delay_ms / 1000.0
                    emitted.append((job, frame))
                    progressed = True

                    if job.done:
                        del self._jobs[job.id]
                        completed.append(job)

                if not progressed or len(emitted) >= self.max_frames_per_tick:
                    break

        for job, frame in emitted:
            await self._fanout.broadcast(job.room, job.frame_event(frame))

        for job in completed:
            await self._complete(job)

        return len(emitted)

    async def _complete(self, job: RelayJob) -> None:
        try:
            message = await self._store.append(
                MessageCreate(
                    username=job.username,
                    content=job.final_content,
                    room=job.room,
                    xPosition=0,
                    yPosition=job.y_position,
                    sourceUrl=job.source_url,
                    sourceLabel=job.source_label,
                    storyUrl=job.story_url,
                    storyLabel=job.story_label,
                )
            )
        except Exception as e:
            logger.error(f"Failed to store relay job {job.id}: {e}", exc_info=True)
            return

        event = OutboundFrame(
            type="newMessage",
            username=message.username,
            room=message.room,
            content=message.content,
            yPosition=message.yPosition,
            sourceUrl=message.sourceUrl,
            sourceLabel=message.sourceLabel,
            storyUrl=message.storyUrl,
            storyLabel=message.storyLabel,
            serverPrepared=True,
            id=message.id,
            timestamp=message.timestamp,
        ).to_event()
        recipients = await self._fanout.broadcast(job.room, event)

        logger.info(
            f"Completed relay job {job.id}",
            extra={"room": job.room, "message_id": message.id, "recipients": recipients},
        )

    # =========================================================================
    # Queries / lifecycle
    # =========================================================================

    @property
    def pending_count(self) -> int:
        return len(self._jobs)

    @property
    def ledger_size(self) -> int:
        return len(self._ledger)

    async def start(self) -> None:
        self._ticker.start()

    async def stop(self) -> None:
        await self._ticker.stop()
