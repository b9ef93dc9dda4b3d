"""JobLog entity - append-only lifecycle audit trail."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow


class JobLog(SQLModel, table=True):
    """JobLog records lifecycle events (job.started, kie.callback, admin.purge, ...)."""

    __tablename__ = "job_logs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    generation_id: Optional[UUID] = Field(
        default=None, foreign_key="generations.id", index=True, ondelete="SET NULL"
    )
    event: str = Field(max_length=100)
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
