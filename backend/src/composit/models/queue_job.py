"""QueueJob entity - durable at-least-once work queue row."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow


class QueueJobStatus(str, Enum):
    """Queue job lifecycle status.

    Completed jobs are deleted; exhausted jobs stay as failed for inspection.
    """

    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class QueueJob(SQLModel, table=True):
    """QueueJob is one unit of queued work, deduplicated by (queue, key)."""

    __tablename__ = "queue_jobs"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("queue", "key", name="uq_queue_jobs_key"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    queue: str = Field(max_length=100, index=True)
    key: str = Field(max_length=255)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: QueueJobStatus = Field(default=QueueJobStatus.PENDING, index=True)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    run_at: datetime = Field(default_factory=utcnow, index=True)
    locked_at: Optional[datetime] = Field(default=None)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
