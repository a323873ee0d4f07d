"""Per-agent checkpoint persistence.

The cursor is a ``(mtime_ns, path)`` pair. Modification times are not
strictly monotonic across files written in the same instant, so ties are
broken by comparing the UTF-8 bytes of the relative path. Byte order is
stable across runs, locales and filesystems, unlike directory listing order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from recindex.db.db import ensure_utc, utcnow
from recindex.models.index_checkpoint import IndexCheckpoint


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def path_sort_key(path: str) -> bytes:
    return path.encode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class CheckpointCursor:
    """Position of the newest file already committed for an agent."""

    mtime_ns: int
    path: str

    @property
    def key(self) -> Tuple[int, bytes]:
        return (self.mtime_ns, path_sort_key(self.path))

    def is_before(self, mtime_ns: int, path: str) -> bool:
        """True when a file at ``(mtime_ns, path)`` sorts after this cursor."""
        return (mtime_ns, path_sort_key(path)) > self.key

    @classmethod
    def from_datetime(cls, value: datetime) -> "CheckpointCursor":
        """Cursor that admits every file modified at or after ``value``."""
        delta = ensure_utc(value) - EPOCH
        mtime_ns = (delta.days * 86400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000
        return cls(mtime_ns=mtime_ns - 1, path="")


@dataclass(frozen=True)
class CheckpointState:
    agent_id: str
    cursor: Optional[CheckpointCursor] = None
    checkpoint_at: Optional[datetime] = None
    last_reconciled_at: Optional[datetime] = None
    last_full_reconciled_at: Optional[datetime] = None


def _to_state(row: IndexCheckpoint) -> CheckpointState:
    cursor = None
    if row.last_mtime_ns is not None:
        cursor = CheckpointCursor(mtime_ns=row.last_mtime_ns, path=row.last_path or "")
    return CheckpointState(
        agent_id=row.agent_id,
        cursor=cursor,
        checkpoint_at=ensure_utc(row.checkpoint_at),
        last_reconciled_at=ensure_utc(row.last_reconciled_at),
        last_full_reconciled_at=ensure_utc(row.last_full_reconciled_at),
    )


async def load_checkpoint(session: AsyncSession, agent_id: str) -> CheckpointState:
    row = await session.get(IndexCheckpoint, agent_id)
    if row is None:
        return CheckpointState(agent_id=agent_id)
    return _to_state(row)


async def _get_or_create(session: AsyncSession, agent_id: str) -> IndexCheckpoint:
    row = await session.get(IndexCheckpoint, agent_id)
    if row is None:
        row = IndexCheckpoint(agent_id=agent_id)
        session.add(row)
    return row


async def advance_cursor(
    session: AsyncSession,
    agent_id: str,
    cursor: CheckpointCursor,
    now: Optional[datetime] = None,
) -> CheckpointCursor:
    """Move the stored cursor forward to ``cursor``; never moves it back.

    Must run inside the transaction that commits the batch the cursor covers.
    Returns the cursor now stored.
    """
    row = await _get_or_create(session, agent_id)
    if row.last_mtime_ns is not None:
        stored = CheckpointCursor(mtime_ns=row.last_mtime_ns, path=row.last_path or "")
        if stored.key >= cursor.key:
            return stored
    row.last_mtime_ns = cursor.mtime_ns
    row.last_path = cursor.path
    row.updated_at = now or utcnow()
    return cursor


async def mark_run_complete(
    session: AsyncSession,
    agent_id: str,
    *,
    reconciled: bool,
    full_reconcile: bool,
    now: Optional[datetime] = None,
) -> None:
    """Stamp the checkpoint once every step of a run has succeeded."""
    now = now or utcnow()
    row = await _get_or_create(session, agent_id)
    row.checkpoint_at = now
    if reconciled:
        row.last_reconciled_at = now
        if full_reconcile:
            row.last_full_reconciled_at = now
    row.updated_at = now


async def list_checkpoints(session: AsyncSession) -> List[CheckpointState]:
    result = await session.execute(select(IndexCheckpoint).order_by(IndexCheckpoint.agent_id))
    return [_to_state(row) for row in result.scalars().all()]
