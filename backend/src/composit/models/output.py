"""GenerationOutput entity - one produced image for one variation."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow


class GenerationOutput(SQLModel, table=True):
    """GenerationOutput stores one image produced by one provider task.

    The (generation_id, task_id) unique constraint is the dedup ledger for
    repeated or overlapping webhook/poll notifications.
    """

    __tablename__ = "generation_outputs"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("generation_id", "task_id", name="uq_generation_outputs_task"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    generation_id: UUID = Field(foreign_key="generations.id", index=True, ondelete="CASCADE")
    task_id: str = Field(max_length=255)
    storage_key: str
    mime: str = Field(default="image/png", max_length=100)
    size_bytes: Optional[int] = Field(default=None)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
