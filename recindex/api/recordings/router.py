"""Recording search endpoints (read-only, store-backed)."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from recindex.api.recordings.schemas import RecordingResponse
from recindex.config.logger import app_logger
from recindex.config.settings import settings
from recindex.db.db import get_session
from recindex.services.errors import InvalidCursorError
from recindex.services.recording_query import RecordingQuery, get_recording, search_recordings
from recindex.utils.responses import (
    PaginatedResponse,
    SuccessResponse,
    paginated_response,
    success_response,
)

router = APIRouter(prefix="/v1/recordings", tags=["recordings"])


@router.get("", response_model=PaginatedResponse[RecordingResponse])
async def list_recordings(
    agent_id: str = Query(..., min_length=1, description="Agent whose recordings to search"),
    date_from: Optional[date] = Query(default=None, description="First day, inclusive"),
    date_to: Optional[date] = Query(default=None, description="Last day, inclusive"),
    participant: Optional[str] = Query(default=None, description="Other party (case-insensitive)"),
    service_group: Optional[str] = Query(default=None),
    call_id: Optional[str] = Query(default=None),
    limit: int = Query(default=settings.QUERY_DEFAULT_LIMIT, ge=1, le=settings.QUERY_MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
    cursor: Optional[str] = Query(default=None, description="Continue after this cursor (overrides offset)"),
    session: AsyncSession = Depends(get_session),
):
    """Search an agent's recordings, newest first."""
    if date_from and date_to and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date_from must not be after date_to",
        )

    query = RecordingQuery(
        agent_id=agent_id,
        date_from=date_from,
        date_to=date_to,
        participant=participant,
        service_group=service_group,
        call_id=call_id,
        limit=limit,
        offset=offset,
        cursor=cursor,
    )
    try:
        page = await search_recordings(session, query)
    except InvalidCursorError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except Exception as exc:
        app_logger.error(f"Recording search failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Recording search failed: {str(exc)}",
        )

    return paginated_response(
        data=[RecordingResponse.model_validate(item) for item in page.items],
        limit=limit,
        offset=0 if cursor else offset,
        total=page.total,
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@router.get("/{recording_id}", response_model=SuccessResponse[RecordingResponse])
async def read_recording(
    recording_id: UUID,
    session: AsyncSession = Depends(get_session),
):
    """Fetch one live recording (e.g. to resolve its file for playback)."""
    view = await get_recording(session, recording_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording not found")
    return success_response(data=RecordingResponse.model_validate(view), message="Recording retrieved")
