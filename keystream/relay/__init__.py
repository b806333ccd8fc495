"""
Relay Package

Relay typing: external items played into rooms keystroke by keystroke.

Modules:
- cadence: Pure typing-delay model and frame synthesis
- dedup: Bounded ledger of ingested item versions
- scheduler: RelayScheduler with ingestion, tick loop and completion
- routes: HTTP ingestion endpoint
"""

from .routes import relay_router
from .scheduler import RelayJob, RelayScheduler

__all__ = [
    "RelayJob",
    "RelayScheduler",
    "relay_router",
]
