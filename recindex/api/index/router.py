"""Indexing trigger, health and maintenance endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from recindex.api.index.schemas import (
    AgentHealthResponse,
    AgentRunSummary,
    IndexHealthResponse,
    PruneRequest,
    PruneResponse,
    TriggerRequest,
    TriggerResponse,
)
from recindex.config.logger import app_logger
from recindex.config.settings import settings
from recindex.db.db import get_session
from recindex.services.indexer import get_index_health, run_indexing
from recindex.services.retention import prune_soft_deleted
from recindex.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/index", tags=["index"])


@router.post(
    "/runs",
    response_model=SuccessResponse[TriggerResponse],
    summary="Run incremental indexing for one agent or all agents",
)
async def trigger_index_run(request: TriggerRequest) -> SuccessResponse[TriggerResponse]:
    """Trigger interface for external schedulers.

    A run for an agent that is already being indexed is a no-op with outcome
    `conflict`. The response distinguishes success, partial success and
    total failure, with per-agent counts.
    """
    app_logger.info(f"Index run requested: agent={request.agent} since={request.since} force_reconcile={request.force_reconcile}")
    try:
        result = await run_indexing(
            request.agent,
            since=request.since,
            force_reconcile=request.force_reconcile,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    data = TriggerResponse(
        outcome=result.outcome,
        exit_code=result.exit_code,
        totals=result.totals,
        agents=[AgentRunSummary.model_validate(agent) for agent in result.agents],
        started_at=result.started_at,
        finished_at=result.finished_at,
        duration_seconds=result.duration_seconds,
    )
    return success_response(data=data, message=f"Index run finished: {result.outcome}")


@router.get(
    "/health",
    response_model=SuccessResponse[IndexHealthResponse],
    summary="Per-agent checkpoint and job state",
)
async def index_health(session: AsyncSession = Depends(get_session)) -> SuccessResponse[IndexHealthResponse]:
    """Read-only view used by monitoring to detect stalled indexing."""
    health = await get_index_health(session)
    data = IndexHealthResponse(agents=[AgentHealthResponse.model_validate(agent) for agent in health])
    return success_response(data=data, message="Index health retrieved")


@router.post(
    "/prune",
    response_model=SuccessResponse[PruneResponse],
    summary="Hard-delete recordings soft-deleted before the retention horizon",
)
async def prune_recordings(request: PruneRequest) -> SuccessResponse[PruneResponse]:
    days = request.older_than_days if request.older_than_days is not None else settings.RETENTION_DAYS
    try:
        pruned = await prune_soft_deleted(older_than_days=days, agent_id=request.agent_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as exc:
        app_logger.error(f"Retention prune failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Retention prune failed: {str(exc)}",
        )
    return success_response(
        data=PruneResponse(pruned=pruned, older_than_days=days, agent_id=request.agent_id),
        message="Retention prune completed",
    )
