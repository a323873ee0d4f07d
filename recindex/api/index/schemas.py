"""Request and response schemas for the indexing endpoints."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from recindex.services.indexer import AGENT_ID_PATTERN


class TriggerRequest(BaseModel):
    """Request schema for POST /v1/index/runs."""

    agent: str = Field(
        default="all",
        min_length=1,
        pattern=AGENT_ID_PATTERN,
        description="Agent id (a directory name under the recordings root), or 'all'",
    )
    since: Optional[datetime] = Field(default=None, description="Backfill: re-examine files modified at or after this time")
    force_reconcile: bool = Field(default=False, description="Run a full deletion reconciliation pass now")

    model_config = {"json_schema_extra": {"example": {
        "agent": "alice",
        "since": None,
        "force_reconcile": False,
    }}}


class AgentRunSummary(BaseModel):
    """Per-agent outcome and counts of one indexing run."""

    agent_id: str
    outcome: str = Field(description="succeeded, truncated, failed, conflict or backoff")
    inserted: int = Field(ge=0)
    updated: int = Field(ge=0)
    unchanged: int = Field(ge=0)
    soft_deleted: int = Field(ge=0)
    quarantined: int = Field(ge=0)
    errored: int = Field(ge=0)
    files_seen: int = Field(ge=0)
    batches_committed: int = Field(ge=0)
    reconciled: bool
    recovered_stale_lease: bool
    error_class: Optional[str] = None
    error: Optional[str] = None
    retry_at: Optional[datetime] = None
    duration_seconds: float = Field(ge=0)

    model_config = {"from_attributes": True}


class TriggerResponse(BaseModel):
    """Response payload for POST /v1/index/runs."""

    outcome: str = Field(description="success, partial or failure")
    exit_code: int
    totals: Dict[str, int]
    agents: List[AgentRunSummary] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = Field(ge=0)


class AgentHealthResponse(BaseModel):
    """Checkpoint and job state for one agent."""

    agent_id: str
    state: str
    checkpoint_at: Optional[datetime] = None
    last_path: Optional[str] = None
    last_mtime_ns: Optional[int] = None
    last_reconciled_at: Optional[datetime] = None
    attempt_count: int = 0
    last_error_class: Optional[str] = None
    last_error: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    lag_seconds: Optional[float] = None

    model_config = {"from_attributes": True}


class IndexHealthResponse(BaseModel):
    agents: List[AgentHealthResponse] = Field(default_factory=list)


class PruneRequest(BaseModel):
    """Request schema for POST /v1/index/prune."""

    older_than_days: Optional[int] = Field(default=None, ge=0, description="Defaults to RETENTION_DAYS")
    agent_id: Optional[str] = None


class PruneResponse(BaseModel):
    pruned: int = Field(ge=0)
    older_than_days: int = Field(ge=0)
    agent_id: Optional[str] = None
