"""Recording and quarantine models."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


class Recording(SQLModel, table=True):
    """One row per indexed recording file.

    `(agent_id, path)` is unique; a file that disappears is soft-deleted by
    setting `deleted_at` and revived in place when it comes back. Rows are
    only physically removed by the retention prune.
    """

    __tablename__ = "recordings"
    __table_args__ = (
        UniqueConstraint("agent_id", "path", name="uq_recordings_agent_path"),
        Index("ix_recordings_agent_recorded_at", "agent_id", "recorded_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    agent_id: str = Field(max_length=255, index=True)
    path: str = Field(max_length=1024, description="Path relative to the agent directory, POSIX separators")

    # Parsed from the filename
    service_group: Optional[str] = Field(default=None, max_length=255, index=True)
    other_party: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1024)
    call_id: str = Field(max_length=255, index=True)
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    duration_seconds: Optional[float] = Field(default=None, ge=0)

    # Filesystem facts
    file_mtime_ns: int = Field(sa_column=Column(BigInteger, nullable=False))
    file_size: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    playback_segments: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    deleted_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )


class QuarantinedFile(SQLModel, table=True):
    """A file whose name could not yield a call id or timestamp.

    Held aside so it never reaches the query path with ambiguous data.
    """

    __tablename__ = "quarantined_files"
    __table_args__ = (
        UniqueConstraint("agent_id", "path", name="uq_quarantined_files_agent_path"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    agent_id: str = Field(max_length=255, index=True)
    path: str = Field(max_length=1024)
    reason: str = Field(max_length=50, index=True)  # 'missing_segment', 'malformed_timestamp', 'missing_call_id'
    detail: Optional[str] = Field(default=None, max_length=1024)
    file_mtime_ns: int = Field(sa_column=Column(BigInteger, nullable=False))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
