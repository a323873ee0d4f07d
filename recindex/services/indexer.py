"""Incremental indexing pipeline and trigger entry point.

One agent run, inside a job claim:

    walk (from checkpoint) -> parse -> upsert in batches -> reconcile
    deletions -> stamp checkpoint -> release claim

Each batch commits in its own transaction together with the lease renewal
and the cursor advance, so a crash re-processes at most one batch. The
cursor never moves past a batch that did not commit. Cancellation and the
per-job timeout are honoured between batches only.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recindex.config.logger import app_logger, log_performance
from recindex.config.settings import settings
from recindex.db.db import db_session, utcnow
from recindex.services.change_detector import merge_unindexed, plan_reconciliation, walk_agent_directory
from recindex.services.checkpoint_store import (
    CheckpointCursor,
    advance_cursor,
    list_checkpoints,
    load_checkpoint,
    mark_run_complete,
)
from recindex.services.deletion_reconciler import reconcile_deletions
from recindex.services.errors import InvalidAgentIdError
from recindex.services.filename_parser import parse_recording_filename
from recindex.services.job_coordinator import (
    CLAIM_BACKOFF,
    CLAIM_CONFLICT,
    claim_agent,
    complete_job,
    fail_job,
    list_jobs,
    renew_lease,
)
from recindex.services.upsert_writer import BatchStats, IndexItem, iter_batches, load_known_files, write_batch


AGENT_ALL = "all"

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_TRUNCATED = "truncated"
OUTCOME_FAILED = "failed"
OUTCOME_CONFLICT = "conflict"
OUTCOME_BACKOFF = "backoff"

TRIGGER_SUCCESS = "success"
TRIGGER_PARTIAL = "partial"
TRIGGER_FAILURE = "failure"

EXIT_CODES = {TRIGGER_SUCCESS: 0, TRIGGER_PARTIAL: 1, TRIGGER_FAILURE: 2}

# One path component: no separators, no leading dot (covers "." and "..")
AGENT_ID_PATTERN = r"^[^/\\.\x00][^/\\\x00]*$"


@dataclass
class AgentRunResult:
    """What one agent run did; reported through the trigger interface."""

    agent_id: str
    outcome: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    soft_deleted: int = 0
    quarantined: int = 0
    errored: int = 0
    files_seen: int = 0
    candidates: int = 0
    batches_committed: int = 0
    reconciled: bool = False
    full_reconcile: bool = False
    recovered_stale_lease: bool = False
    error_class: Optional[str] = None
    error: Optional[str] = None
    retry_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def add_batch(self, stats: BatchStats) -> None:
        self.inserted += stats.inserted
        self.updated += stats.updated
        self.unchanged += stats.unchanged
        self.quarantined += stats.quarantined
        self.soft_deleted += stats.soft_deleted
        self.batches_committed += 1


@dataclass
class TriggerResult:
    outcome: str
    agents: List[AgentRunResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.outcome]

    @property
    def totals(self) -> Dict[str, int]:
        keys = ("inserted", "updated", "soft_deleted", "quarantined", "errored")
        return {key: sum(getattr(agent, key) for agent in self.agents) for key in keys}

    def to_dict(self) -> dict:
        data = asdict(self)
        data["totals"] = self.totals
        data["exit_code"] = self.exit_code
        return data


def _should_stop(cancel_event: Optional[asyncio.Event], deadline: Optional[float]) -> Optional[str]:
    if cancel_event is not None and cancel_event.is_set():
        return "cancelled"
    if deadline is not None and time.monotonic() >= deadline:
        return "timeout"
    return None


def validate_agent_id(agent_id: str) -> str:
    """Reject ids that would resolve outside the recordings root."""
    if not re.fullmatch(AGENT_ID_PATTERN, agent_id or ""):
        raise InvalidAgentIdError(f"Invalid agent id: {agent_id!r}")
    return agent_id


def agent_directory(agent_id: str) -> Path:
    return Path(settings.RECORDINGS_ROOT) / validate_agent_id(agent_id)


def discover_agents(root: Optional[Path] = None) -> List[str]:
    """Agent ids are the names of the sub-directories of the recordings root."""
    root = root or Path(settings.RECORDINGS_ROOT)
    if not root.is_dir():
        raise FileNotFoundError(f"Recordings root not found: {root}")
    return sorted(p.name for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))


async def index_agent(
    agent_id: str,
    *,
    since: Optional[datetime] = None,
    force_reconcile: bool = False,
    cancel_event: Optional[asyncio.Event] = None,
    deadline: Optional[float] = None,
    now: Optional[datetime] = None,
) -> AgentRunResult:
    """Run one incremental indexing job for ``agent_id``.

    ``since`` widens candidate selection for a backfill without rewinding the
    stored cursor. ``deadline`` is a ``time.monotonic()`` value.
    """
    started = time.perf_counter()
    now = now or utcnow()
    validate_agent_id(agent_id)

    claim = await claim_agent(agent_id, now=now)
    if not claim.acquired:
        outcome = OUTCOME_BACKOFF if claim.status == CLAIM_BACKOFF else OUTCOME_CONFLICT
        return AgentRunResult(agent_id=agent_id, outcome=outcome, retry_at=claim.retry_at)

    result = AgentRunResult(
        agent_id=agent_id,
        outcome=OUTCOME_SUCCEEDED,
        recovered_stale_lease=claim.recovered_stale_lease,
    )
    try:
        await _run_claimed(agent_id, claim.claim_token, result, since, force_reconcile, cancel_event, deadline, now)
    except Exception as exc:
        _mark_failed(result, exc)
        try:
            result.retry_at = await fail_job(agent_id, claim.claim_token, exc)
        except Exception as release_exc:
            # The lease expires on its own; the next claim recovers it
            app_logger.error(f"Could not record failure for agent {agent_id}: {release_exc}")
    else:
        try:
            await complete_job(agent_id, claim.claim_token)
        except Exception as exc:
            _mark_failed(result, exc)
            app_logger.error(f"Could not release claim for agent {agent_id}: {exc}")
    finally:
        result.duration_seconds = round(time.perf_counter() - started, 4)

    log_performance(
        f"index_agent[{agent_id}]",
        result.duration_seconds,
        outcome=result.outcome,
        inserted=result.inserted,
        updated=result.updated,
        soft_deleted=result.soft_deleted,
        quarantined=result.quarantined,
        errored=result.errored,
        batches=result.batches_committed,
    )
    return result


def _mark_failed(result: AgentRunResult, exc: BaseException) -> None:
    result.outcome = OUTCOME_FAILED
    result.error_class = type(exc).__name__
    result.error = str(exc)


async def _run_claimed(
    agent_id: str,
    claim_token: str,
    result: AgentRunResult,
    since: Optional[datetime],
    force_reconcile: bool,
    cancel_event: Optional[asyncio.Event],
    deadline: Optional[float],
    now: datetime,
) -> None:
    async with db_session() as session:
        state = await load_checkpoint(session, agent_id)

    plan = plan_reconciliation(
        state,
        now,
        force=force_reconcile,
        interval_seconds=settings.RECONCILE_INTERVAL_SECONDS,
        window_days=settings.RECONCILE_WINDOW_DAYS,
        full_interval_seconds=settings.FULL_RECONCILE_INTERVAL_SECONDS,
    )
    cursor = state.cursor
    if since is not None:
        since_cursor = CheckpointCursor.from_datetime(since)
        if cursor is None or since_cursor.key < cursor.key:
            cursor = since_cursor

    walk = await asyncio.to_thread(
        walk_agent_directory,
        agent_directory(agent_id),
        cursor,
        extensions=settings.recording_extensions,
        collect_listing=plan.due,
    )
    result.files_seen = walk.files_seen
    result.errored = walk.errored

    if plan.full:
        async with db_session() as session:
            known = await load_known_files(session, agent_id)
        added = merge_unindexed(walk, known)
        if added:
            app_logger.info(f"Agent {agent_id}: {added} listed file(s) behind the checkpoint queued for indexing")

    items = [
        IndexItem(
            entry=entry,
            parsed=parse_recording_filename(
                entry.path,
                timezone_name=settings.RECORDING_TIMEZONE,
                call_id_pattern=settings.CALL_ID_PATTERN,
            ),
        )
        for entry in walk.candidates
    ]
    result.candidates = len(items)

    for batch in iter_batches(items, settings.BATCH_SIZE):
        stop_reason = _should_stop(cancel_event, deadline)
        if stop_reason:
            result.outcome = OUTCOME_TRUNCATED
            app_logger.warning(
                f"Agent {agent_id}: stopping at batch boundary ({stop_reason}) after "
                f"{result.batches_committed} batch(es); remainder deferred to next run"
            )
            break
        try:
            stats = await _commit_batch(agent_id, claim_token, batch)
        except Exception:
            result.errored += len(batch)
            raise
        result.add_batch(stats)

    if result.outcome == OUTCOME_TRUNCATED:
        # Deletion detection only runs once the candidate set is fully committed
        return

    if plan.due:
        reconcile = await reconcile_deletions(
            agent_id,
            walk,
            claim_token=claim_token,
            window_start=plan.window_start,
            now=now,
        )
        result.soft_deleted += reconcile.soft_deleted
        result.reconciled = True
        result.full_reconcile = plan.full

    async with db_session() as session:
        async with session.begin():
            await renew_lease(session, agent_id, claim_token)
            await mark_run_complete(
                session,
                agent_id,
                reconciled=plan.due,
                full_reconcile=plan.full,
                now=utcnow(),
            )


async def _commit_batch(agent_id: str, claim_token: str, batch: List[IndexItem]) -> BatchStats:
    """Write one batch, renew the lease and advance the cursor atomically."""
    async with db_session() as session:
        async with session.begin():
            await renew_lease(session, agent_id, claim_token)
            stats = await write_batch(session, agent_id, batch)
            await advance_cursor(session, agent_id, batch[-1].entry.cursor)
    return stats


def _trigger_outcome(results: List[AgentRunResult]) -> str:
    attempted = [r for r in results if r.outcome not in (OUTCOME_CONFLICT, OUTCOME_BACKOFF)]
    failed = [r for r in attempted if r.outcome == OUTCOME_FAILED]
    if not failed:
        return TRIGGER_SUCCESS
    if len(failed) == len(attempted):
        return TRIGGER_FAILURE
    return TRIGGER_PARTIAL


async def run_indexing(
    agent: str = AGENT_ALL,
    *,
    since: Optional[datetime] = None,
    force_reconcile: bool = False,
    cancel_event: Optional[asyncio.Event] = None,
) -> TriggerResult:
    """Trigger interface: index one agent or every agent.

    Agents run in parallel on a pool bounded by ``WORKER_POOL_SIZE``; each
    gets its own ``JOB_TIMEOUT_SECONDS`` budget starting when its worker picks
    it up.
    """
    started_at = utcnow()
    started = time.perf_counter()

    if agent == AGENT_ALL:
        try:
            agent_ids = await asyncio.to_thread(discover_agents)
        except OSError as exc:
            app_logger.error(f"Cannot list agents: {exc}")
            failed = AgentRunResult(
                agent_id=AGENT_ALL,
                outcome=OUTCOME_FAILED,
                error_class=type(exc).__name__,
                error=str(exc),
            )
            return TriggerResult(
                outcome=TRIGGER_FAILURE,
                agents=[failed],
                started_at=started_at,
                finished_at=utcnow(),
                duration_seconds=round(time.perf_counter() - started, 4),
            )
    else:
        agent_ids = [agent]

    semaphore = asyncio.Semaphore(settings.WORKER_POOL_SIZE)

    async def worker(agent_id: str) -> AgentRunResult:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return AgentRunResult(agent_id=agent_id, outcome=OUTCOME_TRUNCATED, error="cancelled before start")
            deadline = time.monotonic() + settings.JOB_TIMEOUT_SECONDS
            try:
                return await index_agent(
                    agent_id,
                    since=since,
                    force_reconcile=force_reconcile,
                    cancel_event=cancel_event,
                    deadline=deadline,
                )
            except Exception as exc:
                app_logger.error(f"Index job for agent {agent_id} aborted: {type(exc).__name__}: {exc}")
                failed = AgentRunResult(agent_id=agent_id, outcome=OUTCOME_FAILED)
                _mark_failed(failed, exc)
                return failed

    results = list(await asyncio.gather(*(worker(agent_id) for agent_id in agent_ids)))
    trigger = TriggerResult(
        outcome=_trigger_outcome(results),
        agents=results,
        started_at=started_at,
        finished_at=utcnow(),
        duration_seconds=round(time.perf_counter() - started, 4),
    )
    log_performance(
        f"run_indexing[{agent}]",
        trigger.duration_seconds,
        outcome=trigger.outcome,
        agents=len(results),
        **trigger.totals,
    )
    return trigger


@dataclass(frozen=True)
class AgentHealth:
    agent_id: str
    state: str
    checkpoint_at: Optional[datetime]
    last_path: Optional[str]
    last_mtime_ns: Optional[int]
    last_reconciled_at: Optional[datetime]
    attempt_count: int
    last_error_class: Optional[str]
    last_error: Optional[str]
    lease_expires_at: Optional[datetime]
    next_retry_at: Optional[datetime]
    lag_seconds: Optional[float]


async def get_index_health(session: AsyncSession, now: Optional[datetime] = None) -> List[AgentHealth]:
    """Per-agent checkpoint and job state, for stall monitoring."""
    now = now or utcnow()
    checkpoints = {state.agent_id: state for state in await list_checkpoints(session)}
    jobs = {job.agent_id: job for job in await list_jobs(session)}

    health: List[AgentHealth] = []
    for agent_id in sorted(set(checkpoints) | set(jobs)):
        checkpoint = checkpoints.get(agent_id)
        job = jobs.get(agent_id)
        checkpoint_at = checkpoint.checkpoint_at if checkpoint else None
        cursor = checkpoint.cursor if checkpoint else None
        health.append(
            AgentHealth(
                agent_id=agent_id,
                state=job.state if job else "idle",
                checkpoint_at=checkpoint_at,
                last_path=cursor.path if cursor else None,
                last_mtime_ns=cursor.mtime_ns if cursor else None,
                last_reconciled_at=checkpoint.last_reconciled_at if checkpoint else None,
                attempt_count=job.attempt_count if job else 0,
                last_error_class=job.last_error_class if job else None,
                last_error=job.last_error if job else None,
                lease_expires_at=job.lease_expires_at if job else None,
                next_retry_at=job.next_retry_at if job else None,
                lag_seconds=round((now - checkpoint_at).total_seconds(), 3) if checkpoint_at else None,
            )
        )
    return health
