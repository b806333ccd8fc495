"""
Storage Package

Completed-message storage for the keystream service.

Modules:
- memory: MessageStore contract and the in-memory, TTL-bounded implementation
"""

from .memory import InMemoryMessageStore, MessageStore

__all__ = [
    "InMemoryMessageStore",
    "MessageStore",
]
