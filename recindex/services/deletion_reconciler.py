"""Soft-delete recordings whose files are gone from the agent directory."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy import delete, update
from sqlmodel import col, select

from recindex.config.logger import app_logger
from recindex.config.settings import settings
from recindex.db.db import db_session, utcnow
from recindex.models.recording import QuarantinedFile, Recording
from recindex.services.change_detector import WalkResult
from recindex.services.job_coordinator import renew_lease


@dataclass
class ReconcileStats:
    compared: int = 0
    soft_deleted: int = 0
    quarantine_cleared: int = 0


def _outside_scope(path: str, skipped_dirs: Sequence[str], skipped_files: Set[str]) -> bool:
    if path in skipped_files:
        return True
    return any(path == d or path.startswith(d + "/") for d in skipped_dirs)


def find_missing_paths(
    store_paths: Iterable[str],
    listing: Mapping[str, object],
    skipped_dirs: Sequence[str] = (),
    skipped_files: Iterable[str] = (),
) -> List[str]:
    """Paths held by the store but absent from the listing.

    Paths under directories (or files) the walk could not read are outside
    the compared scope and are never reported missing.
    """
    skipped = set(skipped_files)
    return sorted(
        path
        for path in store_paths
        if path not in listing and not _outside_scope(path, skipped_dirs, skipped)
    )


async def reconcile_deletions(
    agent_id: str,
    walk: WalkResult,
    *,
    claim_token: str,
    window_start: Optional[datetime] = None,
    batch_size: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReconcileStats:
    """Soft-delete live rows missing from ``walk.listing``.

    With ``window_start`` only rows recorded at or after it are compared
    (rolling window). Each batch commits in its own transaction together with
    a lease renewal taken at the current time; ``now`` only stamps
    ``deleted_at``.
    """
    if walk.listing is None:
        raise ValueError("reconciliation needs a walk that collected the full listing")
    now = now or utcnow()
    batch_size = batch_size or settings.BATCH_SIZE
    stats = ReconcileStats()

    async with db_session() as session:
        query = select(Recording.id, Recording.path).where(
            Recording.agent_id == agent_id, col(Recording.deleted_at).is_(None)
        )
        if window_start is not None:
            query = query.where(col(Recording.recorded_at) >= window_start)
        live = {path: row_id for row_id, path in (await session.execute(query)).all()}

        held_paths = (
            await session.execute(select(QuarantinedFile.path).where(QuarantinedFile.agent_id == agent_id))
        ).scalars().all()

    stats.compared = len(live)
    missing = find_missing_paths(live.keys(), walk.listing, walk.skipped_dirs, walk.skipped_files)
    missing_ids: List[UUID] = [live[path] for path in missing]

    for start in range(0, len(missing_ids), batch_size):
        chunk = missing_ids[start : start + batch_size]
        async with db_session() as session:
            async with session.begin():
                await renew_lease(session, agent_id, claim_token)
                result = await session.execute(
                    update(Recording)
                    .where(col(Recording.id).in_(chunk), col(Recording.deleted_at).is_(None))
                    .values(deleted_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                stats.soft_deleted += result.rowcount

    vanished_held = find_missing_paths(held_paths, walk.listing, walk.skipped_dirs, walk.skipped_files)
    for start in range(0, len(vanished_held), batch_size):
        chunk = vanished_held[start : start + batch_size]
        async with db_session() as session:
            async with session.begin():
                await renew_lease(session, agent_id, claim_token)
                result = await session.execute(
                    delete(QuarantinedFile)
                    .where(QuarantinedFile.agent_id == agent_id, col(QuarantinedFile.path).in_(chunk))
                    .execution_options(synchronize_session=False)
                )
                stats.quarantine_cleared += result.rowcount

    if stats.soft_deleted or stats.quarantine_cleared:
        app_logger.info(
            f"Reconciled agent {agent_id}: soft_deleted={stats.soft_deleted} "
            f"quarantine_cleared={stats.quarantine_cleared} compared={stats.compared}"
        )
    return stats
