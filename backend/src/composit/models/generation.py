"""Generation entity - one user request producing one or more images."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Column, Index
from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow


class GenerationStatus(str, Enum):
    """Generation lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


class TaskState(str, Enum):
    """State of one provider task as seen by this service."""

    PENDING = "pending"
    SUCCESS = "success"
    FAIL = "fail"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation state transition."""

    pass


class Generation(SQLModel, table=True):
    """Generation tracks one image request through queued → processing → terminal.

    variations_done is only ever changed by atomic increments in the repository
    and never exceeds variations_total.
    """

    __tablename__ = "generations"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("variations_done <= variations_total", name="ck_generations_done_le_total"),
        Index("ix_generations_session_created", "session_id", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id", ondelete="CASCADE")
    parent_generation_id: Optional[UUID] = Field(
        default=None, foreign_key="generations.id", ondelete="SET NULL"
    )
    prompt: str
    params: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: GenerationStatus = Field(default=GenerationStatus.QUEUED, index=True)
    variations_total: int = Field(default=1, ge=0)
    variations_done: int = Field(default=0, ge=0)
    failure_reason: Optional[str] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    def reset_for_retry(self) -> None:
        """Return a terminal generation to queued so it can be resubmitted.

        Raises:
            InvalidStateTransition: If the generation is still queued or processing
        """
        if not self.status.is_terminal:
            raise InvalidStateTransition(
                f"Cannot retry from {self.status.value}. "
                "Generation must be in completed or failed state."
            )
        self.status = GenerationStatus.QUEUED
        self.failure_reason = None
        self.started_at = None
        self.completed_at = None
        self.variations_done = 0

    def mark_deleted(self, deleted_at: datetime) -> None:
        """Soft-delete; repeated calls keep the first timestamp."""
        if self.deleted_at is None:
            self.deleted_at = deleted_at


class GenerationAsset(SQLModel, table=True):
    """Link between a generation and the assets it was built from."""

    __tablename__ = "generation_assets"  # type: ignore[assignment]

    generation_id: UUID = Field(foreign_key="generations.id", primary_key=True, ondelete="CASCADE")
    asset_id: UUID = Field(foreign_key="assets.id", primary_key=True, ondelete="CASCADE")


class GenerationTask(SQLModel, table=True):
    """One submitted provider task of a generation.

    Rows form the generation's ordered task-id list (by position) and the
    indexed task_id → generation lookup used by the callback reconciler.
    """

    __tablename__ = "generation_tasks"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    generation_id: UUID = Field(foreign_key="generations.id", index=True, ondelete="CASCADE")
    task_id: str = Field(max_length=255, unique=True, index=True)
    position: int = Field(default=0, ge=0)
    state: TaskState = Field(default=TaskState.PENDING)
    created_at: datetime = Field(default_factory=utcnow)
    settled_at: Optional[datetime] = Field(default=None)
