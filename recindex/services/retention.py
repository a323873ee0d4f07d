"""Retention maintenance: the only path that hard-deletes recordings."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlmodel import col

from recindex.config.logger import app_logger
from recindex.db.db import db_session, utcnow
from recindex.models.recording import Recording


async def prune_soft_deleted(
    *,
    older_than_days: int,
    agent_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Hard-delete recordings soft-deleted more than ``older_than_days`` ago.

    Live rows are never touched. Returns the number of rows removed.
    """
    if older_than_days < 0:
        raise ValueError("older_than_days must be >= 0")
    now = now or utcnow()
    horizon = now - timedelta(days=older_than_days)

    stmt = delete(Recording).where(
        col(Recording.deleted_at).is_not(None),
        col(Recording.deleted_at) < horizon,
    )
    if agent_id is not None:
        stmt = stmt.where(Recording.agent_id == agent_id)

    async with db_session() as session:
        async with session.begin():
            result = await session.execute(stmt.execution_options(synchronize_session=False))
    pruned = result.rowcount or 0
    app_logger.info(
        f"Pruned {pruned} soft-deleted recording(s) older than {older_than_days} day(s)"
        + (f" for agent {agent_id}" if agent_id else "")
    )
    return pruned
