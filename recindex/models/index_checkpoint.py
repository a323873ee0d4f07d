"""Per-agent traversal checkpoint model."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel


class IndexCheckpoint(SQLModel, table=True):
    """Durable cursor marking how far an agent's directory has been indexed.

    `(last_mtime_ns, last_path)` only moves forward, in the same transaction
    as the batch of writes it covers. `checkpoint_at` is the wall-clock time
    the last run completed successfully.
    """

    __tablename__ = "index_checkpoints"

    agent_id: str = Field(primary_key=True, max_length=255)
    last_path: Optional[str] = Field(default=None, max_length=1024)
    last_mtime_ns: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    checkpoint_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_reconciled_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_full_reconciled_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
