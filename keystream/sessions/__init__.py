"""
Sessions Package

Session lifecycle and username ownership for the keystream service.

Modules:
- registry: SessionRegistry with ownership validation, handoff and idle expiry
"""

from .registry import (
    DEFAULT_FINGERPRINT,
    OwnershipDecision,
    Session,
    SessionRegistry,
    generate_session_id,
)

__all__ = [
    "DEFAULT_FINGERPRINT",
    "OwnershipDecision",
    "Session",
    "SessionRegistry",
    "generate_session_id",
]
