"""Per-agent job claims, leases and retry backoff.

State machine per agent::

    idle -> running -> idle    (success)
                    -> failed  (error; checkpoint untouched)
    failed -> (backoff elapsed) -> claimable again

Claiming is a single conditional UPDATE on the agent's ``index_jobs`` row,
so two coordinators racing for the same agent cannot both win; the loser
gets a ``conflict`` outcome immediately instead of blocking. A running claim
whose lease has expired (holder crashed) can be taken over.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from recindex.config.logger import app_logger
from recindex.config.settings import settings
from recindex.db.db import db_session, ensure_utc, utcnow
from recindex.models.index_job import (
    JOB_STATE_FAILED,
    JOB_STATE_IDLE,
    JOB_STATE_RUNNING,
    IndexJob,
)
from recindex.services.errors import LeaseLostError


CLAIM_ACQUIRED = "acquired"
CLAIM_CONFLICT = "conflict"
CLAIM_BACKOFF = "backoff"

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class ClaimResult:
    agent_id: str
    status: str
    claim_token: Optional[str] = None
    attempt: int = 0
    recovered_stale_lease: bool = False
    retry_at: Optional[datetime] = None

    @property
    def acquired(self) -> bool:
        return self.status == CLAIM_ACQUIRED


@dataclass(frozen=True)
class JobStatus:
    agent_id: str
    state: str
    attempt_count: int
    claimed_at: Optional[datetime]
    lease_expires_at: Optional[datetime]
    next_retry_at: Optional[datetime]
    last_error_class: Optional[str]
    last_error: Optional[str]
    last_started_at: Optional[datetime]
    last_finished_at: Optional[datetime]


def backoff_delay(attempts: int, base_seconds: float, max_seconds: float) -> float:
    """Exponential retry delay after ``attempts`` consecutive failures, capped."""
    if attempts < 1:
        return 0.0
    return min(max_seconds, base_seconds * (2 ** (attempts - 1)))


async def _ensure_job_row(agent_id: str, now: datetime) -> None:
    async with db_session() as session:
        if await session.get(IndexJob, agent_id) is not None:
            return
        session.add(IndexJob(agent_id=agent_id, state=JOB_STATE_IDLE, updated_at=now))
        try:
            await session.commit()
        except IntegrityError:
            # Another coordinator created it first
            await session.rollback()


async def claim_agent(
    agent_id: str,
    *,
    now: Optional[datetime] = None,
    lease_seconds: Optional[float] = None,
) -> ClaimResult:
    """Try to move the agent's job to ``running`` under a new claim token."""
    now = now or utcnow()
    lease = timedelta(seconds=lease_seconds if lease_seconds is not None else settings.LEASE_SECONDS)
    await _ensure_job_row(agent_id, now)

    async with db_session() as session:
        before = await session.get(IndexJob, agent_id)
        previous_state = before.state if before else JOB_STATE_IDLE
        previous_lease = ensure_utc(before.lease_expires_at) if before else None
        previous_retry = ensure_utc(before.next_retry_at) if before else None

        token = uuid4().hex
        claimable = or_(
            IndexJob.state == JOB_STATE_IDLE,
            and_(
                IndexJob.state == JOB_STATE_FAILED,
                or_(col(IndexJob.next_retry_at).is_(None), col(IndexJob.next_retry_at) <= now),
            ),
            and_(
                IndexJob.state == JOB_STATE_RUNNING,
                or_(col(IndexJob.lease_expires_at).is_(None), col(IndexJob.lease_expires_at) < now),
            ),
        )
        result = await session.execute(
            update(IndexJob)
            .where(col(IndexJob.agent_id) == agent_id, claimable)
            .values(
                state=JOB_STATE_RUNNING,
                claim_token=token,
                claimed_at=now,
                lease_expires_at=now + lease,
                attempt_count=IndexJob.attempt_count + 1,
                last_started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        if result.rowcount != 1:
            if previous_state == JOB_STATE_FAILED:
                app_logger.info(f"Agent {agent_id} is backing off until {previous_retry}")
                return ClaimResult(agent_id=agent_id, status=CLAIM_BACKOFF, retry_at=previous_retry)
            app_logger.info(f"Agent {agent_id} already has a running index job; skipping")
            return ClaimResult(agent_id=agent_id, status=CLAIM_CONFLICT)

        claimed = await session.get(IndexJob, agent_id, populate_existing=True)

    recovered = previous_state == JOB_STATE_RUNNING and (previous_lease is None or previous_lease < now)
    if recovered:
        app_logger.warning(
            f"Recovered stale lease for agent {agent_id} (expired at {previous_lease}); "
            "resuming from last committed checkpoint"
        )
    return ClaimResult(
        agent_id=agent_id,
        status=CLAIM_ACQUIRED,
        claim_token=token,
        attempt=claimed.attempt_count if claimed else 1,
        recovered_stale_lease=recovered,
    )


async def renew_lease(
    session: AsyncSession,
    agent_id: str,
    claim_token: str,
    *,
    now: Optional[datetime] = None,
    lease_seconds: Optional[float] = None,
) -> None:
    """Extend the lease inside the caller's transaction.

    Raises ``LeaseLostError`` when the token no longer owns a running job, so
    the caller's batch rolls back instead of interleaving with a new holder.
    """
    now = now or utcnow()
    lease = timedelta(seconds=lease_seconds if lease_seconds is not None else settings.LEASE_SECONDS)
    result = await session.execute(
        update(IndexJob)
        .where(
            col(IndexJob.agent_id) == agent_id,
            IndexJob.claim_token == claim_token,
            IndexJob.state == JOB_STATE_RUNNING,
        )
        .values(lease_expires_at=now + lease, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LeaseLostError(f"Claim on agent {agent_id} is no longer held")


async def complete_job(agent_id: str, claim_token: str, *, now: Optional[datetime] = None) -> bool:
    """running -> idle. Returns False when the claim had already been lost."""
    now = now or utcnow()
    async with db_session() as session:
        result = await session.execute(
            update(IndexJob)
            .where(col(IndexJob.agent_id) == agent_id, IndexJob.claim_token == claim_token)
            .values(
                state=JOB_STATE_IDLE,
                attempt_count=0,
                claim_token=None,
                lease_expires_at=None,
                next_retry_at=None,
                last_error_class=None,
                last_error=None,
                last_finished_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if result.rowcount != 1:
        app_logger.warning(f"Completed run for agent {agent_id} but its claim had been taken over")
        return False
    return True


async def fail_job(
    agent_id: str,
    claim_token: str,
    error: BaseException,
    *,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """running -> failed, scheduling the retry. Returns the retry time."""
    now = now or utcnow()
    async with db_session() as session:
        job = await session.get(IndexJob, agent_id)
        if job is None or job.claim_token != claim_token:
            app_logger.warning(f"Cannot record failure for agent {agent_id}: claim no longer held")
            return None
        delay = backoff_delay(
            job.attempt_count,
            settings.RETRY_BACKOFF_BASE_SECONDS,
            settings.RETRY_BACKOFF_MAX_SECONDS,
        )
        retry_at = now + timedelta(seconds=delay)
        job.state = JOB_STATE_FAILED
        job.claim_token = None
        job.lease_expires_at = None
        job.next_retry_at = retry_at
        job.last_error_class = type(error).__name__
        job.last_error = str(error)[:MAX_ERROR_LENGTH]
        job.last_finished_at = now
        job.updated_at = now
        await session.commit()
    app_logger.error(
        f"Index job for agent {agent_id} failed ({type(error).__name__}: {error}); "
        f"retry after {retry_at.isoformat()}"
    )
    return retry_at


def _to_status(job: IndexJob) -> JobStatus:
    return JobStatus(
        agent_id=job.agent_id,
        state=job.state,
        attempt_count=job.attempt_count,
        claimed_at=ensure_utc(job.claimed_at),
        lease_expires_at=ensure_utc(job.lease_expires_at),
        next_retry_at=ensure_utc(job.next_retry_at),
        last_error_class=job.last_error_class,
        last_error=job.last_error,
        last_started_at=ensure_utc(job.last_started_at),
        last_finished_at=ensure_utc(job.last_finished_at),
    )


async def get_job(session: AsyncSession, agent_id: str) -> Optional[JobStatus]:
    job = await session.get(IndexJob, agent_id, populate_existing=True)
    return _to_status(job) if job else None


async def list_jobs(session: AsyncSession) -> List[JobStatus]:
    result = await session.execute(select(IndexJob).order_by(IndexJob.agent_id))
    return [_to_status(job) for job in result.scalars().all()]
