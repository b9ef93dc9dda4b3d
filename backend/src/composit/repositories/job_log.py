"""JobLog repository for composit backend.

Append-only: no update or delete methods are offered.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from composit.models.job_log import JobLog


class JobLogRepository:
    """Repository for JobLog entries."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def append(
        self, generation_id: UUID | None, event: str, payload: dict[str, Any] | None = None
    ) -> JobLog:
        """Append a lifecycle event.

        Args:
            generation_id: Related generation (None for session-wide admin events)
            event: Event name, e.g. "job.started" or "kie.callback"
            payload: JSON-serializable details

        Returns:
            Persisted log entry
        """
        entry = JobLog(generation_id=generation_id, event=event, payload=payload)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_generation(self, generation_id: UUID) -> list[JobLog]:
        """Retrieve a generation's events in insertion order."""
        result = await self.session.execute(
            select(JobLog)
            .where(JobLog.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(JobLog.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
