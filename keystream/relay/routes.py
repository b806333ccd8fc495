"""
Relay ingestion endpoint.

External feeds push items here; each accepted item becomes a relay job that
types itself into the target room.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..dependencies import get_app_settings, get_scheduler, verify_relay_secret
from ..errors import DuplicateItemError, EmptyItemError
from ..models import RelayIngestRequest, RelayIngestResponse

logger = logging.getLogger("keystream.relay.routes")

relay_router = APIRouter(prefix="/api/relay", tags=["relay"])


@relay_router.post(
    "/ingest",
    response_model=RelayIngestResponse,
    dependencies=[Depends(verify_relay_secret)],
)
async def ingest_item(request: Request, payload: RelayIngestRequest) -> RelayIngestResponse:
    """
    Accept an external item for relay typing.

    Args:
        request: FastAPI request object
        payload: Item and optional target room

    Returns:
        Acknowledgement with the relay job id and room

    Raises:
        HTTPException: 409 if the item is unchanged, 422 if it has no content
    """
    settings = get_app_settings(request)
    scheduler = get_scheduler(request)
    room = payload.room or settings.RELAY_DEFAULT_ROOM

    try:
        job = await scheduler.ingest(payload.item, room)
    except DuplicateItemError as e:
        logger.info(
            f"Ignored unchanged item {e.external_id}",
            extra={"external_id": e.external_id, "room": room},
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except EmptyItemError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return RelayIngestResponse(
        id=job.id,
        externalId=job.external_id,
        room=job.room,
        frames=len(job.frames),
    )
