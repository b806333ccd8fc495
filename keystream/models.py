"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the keystream service.

Models are organized by functional area:
- WebSocket frame models (inbound and outbound live-typing frames)
- Message models (persisted chat messages)
- Relay ingestion models (external item payloads and acknowledgements)
- Health/error models
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


InboundFrameType = Literal["keystroke", "newMessage", "join", "leave"]
OutboundFrameType = Literal["keystroke", "newMessage", "join", "leave", "nameError"]


# ============================================================================
# WebSocket Frame Models
# ============================================================================

class InboundFrame(BaseModel):
    """Frame sent by a client over the live-typing WebSocket."""

    model_config = ConfigDict(extra="ignore")

    type: InboundFrameType = Field(..., description="Frame discriminant")
    username: str = Field(..., description="Display name the frame is sent as", min_length=1)
    room: str = Field(default="global", description="Target room", min_length=1, max_length=128)
    content: Optional[str] = Field(None, description="Typed content so far, or the completed message")
    isTyping: Optional[bool] = Field(None, description="Whether the sender is still typing")
    yPosition: Optional[float] = Field(None, description="Vertical lane of the message")
    userColor: Optional[str] = Field(None, description="Display color chosen by the sender")
    fontSize: Optional[str] = Field(None, description="Display font size chosen by the sender")
    sessionId: Optional[str] = Field(None, description="Client session identifier (join only)")
    browserFingerprint: Optional[str] = Field(None, description="Opaque browser identifier (join only)")
    sourceUrl: Optional[str] = Field(None, description="Link to the content's origin")
    sourceLabel: Optional[str] = Field(None, description="Label shown for sourceUrl")
    storyUrl: Optional[str] = Field(None, description="Link to the parent story")
    storyLabel: Optional[str] = Field(None, description="Label shown for storyUrl")
    serverPrepared: Optional[bool] = Field(None, description="Content was produced server side")


class OutboundFrame(BaseModel):
    """Frame delivered to clients; nameError frames are only ever unicast."""

    type: OutboundFrameType
    username: str
    room: str
    content: Optional[str] = None
    isTyping: Optional[bool] = None
    yPosition: Optional[float] = None
    userColor: Optional[str] = None
    fontSize: Optional[str] = None
    sourceUrl: Optional[str] = None
    sourceLabel: Optional[str] = None
    storyUrl: Optional[str] = None
    storyLabel: Optional[str] = None
    serverPrepared: Optional[bool] = None
    error: Optional[str] = None
    id: Optional[Union[int, str]] = None
    timestamp: Optional[datetime] = None

    def to_event(self) -> Dict[str, Any]:
        """Serialize for the wire, dropping unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# Message Models
# ============================================================================

class MessageCreate(BaseModel):
    """Completed message before the store assigns id and timestamp."""

    username: str = Field(..., description="Author display name")
    content: str = Field(..., description="Completed message text")
    room: str = Field(default="global", description="Room the message belongs to")
    isTyping: bool = Field(default=False, description="Always false for stored messages")
    xPosition: float = Field(default=0, description="Horizontal start position")
    yPosition: float = Field(..., description="Vertical lane of the message")
    userColor: Optional[str] = Field(None, description="Author display color")
    fontSize: Optional[str] = Field(None, description="Author font size")
    sourceUrl: Optional[str] = Field(None, description="Link to the content's origin")
    sourceLabel: Optional[str] = Field(None, description="Label shown for sourceUrl")
    storyUrl: Optional[str] = Field(None, description="Link to the parent story")
    storyLabel: Optional[str] = Field(None, description="Label shown for storyUrl")


class Message(MessageCreate):
    """Stored chat message."""

    id: int = Field(..., description="Monotonically increasing message identifier")
    timestamp: datetime = Field(..., description="Creation time (UTC)")


# ============================================================================
# Relay Ingestion Models
# ============================================================================

class RelayItem(BaseModel):
    """External item to be typed out in a room."""

    model_config = ConfigDict(extra="ignore")

    externalId: Union[int, str] = Field(..., description="Stable identifier of the item at its source")
    type: Optional[str] = Field(None, description="Item kind at the source (story, comment, ...)")
    author: Optional[str] = Field(None, description="Author shown as the typing user")
    title: Optional[str] = Field(None, description="Item title")
    text: Optional[str] = Field(None, description="Item body, may contain HTML")
    url: Optional[str] = Field(None, description="Link to the item itself")
    sourceUrl: Optional[str] = Field(None, description="Link to the item's parent story or feed")

    @property
    def key(self) -> str:
        return str(self.externalId)


class RelayIngestRequest(BaseModel):
    """Body of POST /api/relay/ingest."""

    item: RelayItem
    room: Optional[str] = Field(None, description="Target room (defaults to RELAY_DEFAULT_ROOM)", min_length=1, max_length=128)


class RelayIngestResponse(BaseModel):
    """Acknowledgement of an accepted item."""

    status: str = Field(default="accepted")
    id: str = Field(..., description="Relay job identifier")
    externalId: str = Field(..., description="Identifier of the ingested item")
    room: str = Field(..., description="Room the item will be typed into")
    frames: int = Field(..., description="Number of keystroke frames scheduled")


# ============================================================================
# Health / Error Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details")
