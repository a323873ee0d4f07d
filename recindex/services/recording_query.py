"""Read-side query service over the recordings store.

Reads only the structured store, never the filesystem. Results are live
(non-deleted) recordings ordered newest first, ties broken by id so that
pagination is stable.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from recindex.config.settings import settings
from recindex.db.db import ensure_utc
from recindex.models.recording import Recording
from recindex.services.errors import InvalidCursorError


@dataclass
class RecordingQuery:
    agent_id: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    participant: Optional[str] = None
    service_group: Optional[str] = None
    call_id: Optional[str] = None
    limit: int = 50
    offset: int = 0
    cursor: Optional[str] = None
    include_total: bool = True


@dataclass
class RecordingView:
    """Projection of a recording returned to callers."""

    id: UUID
    agent_id: str
    service_group: Optional[str]
    other_party: Optional[str]
    description: Optional[str]
    call_id: str
    recorded_at: datetime
    duration_seconds: Optional[float]
    path: str
    playback_segments: List[str]
    playback_url: str


@dataclass
class RecordingPage:
    items: List[RecordingView] = field(default_factory=list)
    total: Optional[int] = None
    has_more: bool = False
    next_cursor: Optional[str] = None


def encode_cursor(recorded_at: datetime, recording_id: UUID) -> str:
    payload = json.dumps({"r": ensure_utc(recorded_at).isoformat(), "i": recording_id.hex})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Tuple[datetime, UUID]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return ensure_utc(datetime.fromisoformat(payload["r"])), UUID(hex=payload["i"])
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise InvalidCursorError(f"Invalid cursor: {cursor!r}") from exc


def _day_start_utc(day: date, zone_name: str) -> datetime:
    zone = timezone.utc if zone_name.upper() == "UTC" else ZoneInfo(zone_name)
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)


def build_playback_url(segments: List[str]) -> str:
    prefix = settings.PLAYBACK_URL_PREFIX.rstrip("/")
    return prefix + "/" + "/".join(quote(segment, safe="") for segment in segments)


def to_view(row: Recording) -> RecordingView:
    return RecordingView(
        id=row.id,
        agent_id=row.agent_id,
        service_group=row.service_group,
        other_party=row.other_party,
        description=row.description,
        call_id=row.call_id,
        recorded_at=ensure_utc(row.recorded_at),
        duration_seconds=row.duration_seconds,
        path=row.path,
        playback_segments=list(row.playback_segments or []),
        playback_url=build_playback_url(list(row.playback_segments or [])),
    )


def _filters(query: RecordingQuery) -> list:
    conditions = [
        Recording.agent_id == query.agent_id,
        col(Recording.deleted_at).is_(None),
    ]
    if query.date_from is not None:
        conditions.append(col(Recording.recorded_at) >= _day_start_utc(query.date_from, settings.RECORDING_TIMEZONE))
    if query.date_to is not None:
        end = _day_start_utc(query.date_to + timedelta(days=1), settings.RECORDING_TIMEZONE)
        conditions.append(col(Recording.recorded_at) < end)
    if query.participant:
        conditions.append(func.lower(Recording.other_party) == query.participant.strip().lower())
    if query.service_group:
        conditions.append(Recording.service_group == query.service_group)
    if query.call_id:
        conditions.append(Recording.call_id == query.call_id)
    return conditions


async def search_recordings(session: AsyncSession, query: RecordingQuery) -> RecordingPage:
    """Filtered, paginated read of live recordings for one agent.

    Filters are combined with AND; an absent filter matches everything. With
    a ``cursor`` the page continues after the cursor position (keyset) and
    ``offset`` is ignored.
    """
    limit = max(1, min(query.limit, settings.QUERY_MAX_LIMIT))
    conditions = _filters(query)

    total = None
    if query.include_total:
        total = (
            await session.execute(select(func.count()).select_from(Recording).where(*conditions))
        ).scalar_one()

    stmt = select(Recording).where(*conditions)
    if query.cursor:
        after_recorded_at, after_id = decode_cursor(query.cursor)
        stmt = stmt.where(
            or_(
                col(Recording.recorded_at) < after_recorded_at,
                and_(col(Recording.recorded_at) == after_recorded_at, col(Recording.id) < after_id),
            )
        )
    else:
        stmt = stmt.offset(max(0, query.offset))
    stmt = stmt.order_by(col(Recording.recorded_at).desc(), col(Recording.id).desc()).limit(limit + 1)

    rows = list((await session.execute(stmt)).scalars().all())
    has_more = len(rows) > limit
    rows = rows[:limit]
    items = [to_view(row) for row in rows]
    next_cursor = encode_cursor(items[-1].recorded_at, items[-1].id) if has_more and items else None
    return RecordingPage(items=items, total=total, has_more=has_more, next_cursor=next_cursor)


async def get_recording(session: AsyncSession, recording_id: UUID) -> Optional[RecordingView]:
    """One live recording, e.g. to resolve the file for playback."""
    row = await session.get(Recording, recording_id)
    if row is None or row.deleted_at is not None:
        return None
    return to_view(row)
