"""
keystream: real-time live-typing chat service.

Rooms of WebSocket clients see each other type keystroke by keystroke;
external items can be relayed into a room as synthetic typing.
"""

__version__ = "1.0.0"
