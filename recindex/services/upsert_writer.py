"""Batched, idempotent writes of parsed recordings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from recindex.db.db import utcnow
from recindex.models.recording import QuarantinedFile, Recording
from recindex.services.change_detector import FileEntry
from recindex.services.filename_parser import ParsedRecording, ParseFailure, ParseResult, build_playback_segments


@dataclass(frozen=True)
class IndexItem:
    """A candidate file together with the result of parsing its name."""

    entry: FileEntry
    parsed: ParseResult

    @property
    def is_quarantined(self) -> bool:
        return isinstance(self.parsed, ParseFailure)


@dataclass
class BatchStats:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    quarantined: int = 0
    soft_deleted: int = 0  # live rows whose file no longer parses


def iter_batches(items: Sequence[IndexItem], size: int) -> Iterator[List[IndexItem]]:
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _apply_parsed(row: Recording, agent_id: str, entry: FileEntry, parsed: ParsedRecording, now: datetime) -> None:
    row.service_group = parsed.service_group
    row.other_party = parsed.other_party
    row.description = parsed.description
    row.call_id = parsed.call_id
    row.recorded_at = parsed.recorded_at
    row.file_mtime_ns = entry.mtime_ns
    row.file_size = entry.size
    row.playback_segments = build_playback_segments(agent_id, entry.path)
    row.deleted_at = None
    row.updated_at = now


async def write_batch(
    session: AsyncSession,
    agent_id: str,
    items: Sequence[IndexItem],
    now: Optional[datetime] = None,
) -> BatchStats:
    """Upsert one batch keyed on ``(agent_id, path)`` in the caller's transaction.

    A parsed file is inserted when absent. An existing row is refreshed (and
    its ``deleted_at`` cleared) when the incoming mtime is newer or the row
    was soft-deleted; otherwise nothing is written. A file that fails to parse
    goes to ``quarantined_files`` and any live recording at that path is
    soft-deleted.
    """
    now = now or utcnow()
    stats = BatchStats()
    if not items:
        return stats

    paths = [item.entry.path for item in items]
    existing: Dict[str, Recording] = {
        row.path: row
        for row in (
            await session.execute(
                select(Recording).where(Recording.agent_id == agent_id, col(Recording.path).in_(paths))
            )
        ).scalars()
    }
    quarantined: Dict[str, QuarantinedFile] = {
        row.path: row
        for row in (
            await session.execute(
                select(QuarantinedFile).where(
                    QuarantinedFile.agent_id == agent_id, col(QuarantinedFile.path).in_(paths)
                )
            )
        ).scalars()
    }

    for item in items:
        entry = item.entry
        row = existing.get(entry.path)

        if isinstance(item.parsed, ParseFailure):
            held = quarantined.get(entry.path)
            if held is not None and held.file_mtime_ns == entry.mtime_ns and held.reason == item.parsed.reason.value:
                stats.unchanged += 1
                continue
            stats.quarantined += 1
            if held is None:
                held = QuarantinedFile(
                    agent_id=agent_id,
                    path=entry.path,
                    reason=item.parsed.reason.value,
                    detail=item.parsed.detail,
                    file_mtime_ns=entry.mtime_ns,
                    created_at=now,
                    updated_at=now,
                )
                session.add(held)
                quarantined[entry.path] = held
            else:
                held.reason = item.parsed.reason.value
                held.detail = item.parsed.detail
                held.file_mtime_ns = entry.mtime_ns
                held.updated_at = now
            if row is not None and row.deleted_at is None:
                row.deleted_at = now
                row.updated_at = now
                stats.soft_deleted += 1
            continue

        stale_quarantine = quarantined.pop(entry.path, None)
        if stale_quarantine is not None:
            await session.delete(stale_quarantine)

        if row is None:
            row = Recording(
                agent_id=agent_id,
                path=entry.path,
                call_id=item.parsed.call_id,
                recorded_at=item.parsed.recorded_at,
                file_mtime_ns=entry.mtime_ns,
                created_at=now,
            )
            _apply_parsed(row, agent_id, entry, item.parsed, now)
            session.add(row)
            existing[entry.path] = row
            stats.inserted += 1
        elif row.deleted_at is not None or entry.mtime_ns > row.file_mtime_ns:
            _apply_parsed(row, agent_id, entry, item.parsed, now)
            stats.updated += 1
        else:
            stats.unchanged += 1

    await session.flush()
    return stats


async def load_known_files(session: AsyncSession, agent_id: str) -> Dict[str, int]:
    """``{path: mtime_ns}`` for every live recording and quarantined file."""
    known: Dict[str, int] = {}
    recordings = await session.execute(
        select(Recording.path, Recording.file_mtime_ns).where(
            Recording.agent_id == agent_id, col(Recording.deleted_at).is_(None)
        )
    )
    for path, mtime_ns in recordings.all():
        known[path] = mtime_ns
    held = await session.execute(
        select(QuarantinedFile.path, QuarantinedFile.file_mtime_ns).where(QuarantinedFile.agent_id == agent_id)
    )
    for path, mtime_ns in held.all():
        known[path] = mtime_ns
    return known
