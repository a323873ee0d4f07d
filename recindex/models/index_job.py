"""Indexing job coordination model."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel


JOB_STATE_IDLE = "idle"
JOB_STATE_RUNNING = "running"
JOB_STATE_FAILED = "failed"


class IndexJob(SQLModel, table=True):
    """Most recent indexing job for one agent.

    At most one row per agent, so at most one `running` job per agent. A
    running claim is owned by `claim_token` until `lease_expires_at`.
    """

    __tablename__ = "index_jobs"

    agent_id: str = Field(primary_key=True, max_length=255)
    state: str = Field(default=JOB_STATE_IDLE, max_length=20, index=True)
    attempt_count: int = Field(default=0, ge=0)
    claim_token: Optional[str] = Field(default=None, max_length=64)
    claimed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    lease_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    next_retry_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_error_class: Optional[str] = Field(default=None, max_length=100)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    last_started_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_finished_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
