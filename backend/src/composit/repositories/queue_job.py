"""QueueJob repository for composit backend.

Provides data access methods for the durable work queue with worker
coordination via FOR UPDATE SKIP LOCKED.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from composit.models.queue_job import QueueJob, QueueJobStatus


class QueueJobRepository:
    """Repository for QueueJob entities.

    Claiming combines FOR UPDATE SKIP LOCKED (so concurrent PostgreSQL workers
    receive different rows) with a conditional pending → active update (so
    only one claimer wins even on backends without row locks).
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: QueueJob) -> QueueJob:
        """Persist new queue job.

        Raises:
            IntegrityError: If a job with the same (queue, key) already exists
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> QueueJob | None:
        """Retrieve queue job by UUID."""
        result = await self.session.execute(select(QueueJob).where(QueueJob.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_key(self, queue: str, key: str) -> QueueJob | None:
        """Retrieve the job holding a dedup key, if any."""
        result = await self.session.execute(
            select(QueueJob).where(QueueJob.queue == queue, QueueJob.key == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def rearm(self, job: QueueJob, payload: dict, max_attempts: int, now: datetime) -> None:
        """Return an exhausted job to pending with a fresh attempt budget."""
        job.status = QueueJobStatus.PENDING
        job.payload = payload
        job.attempts = 0
        job.max_attempts = max_attempts
        job.run_at = now
        job.locked_at = None
        job.last_error = None
        job.updated_at = now
        self.session.add(job)
        await self.session.flush()

    async def claim_next(self, queue: str, now: datetime) -> QueueJob | None:
        """Claim the oldest due pending job of a queue.

        Query explanation:
        - WHERE status = 'pending' AND run_at <= now: due jobs only
        - ORDER BY run_at ASC: oldest first
        - FOR UPDATE SKIP LOCKED: skip rows another worker is claiming
        - UPDATE ... WHERE status = 'pending': lose gracefully if claimed meanwhile

        Args:
            queue: Queue name
            now: Current time

        Returns:
            The claimed job (status active, attempts incremented), or None
        """
        result = await self.session.execute(
            select(QueueJob.id)
            .where(
                QueueJob.queue == queue,  # type: ignore[arg-type]
                QueueJob.status == QueueJobStatus.PENDING,  # type: ignore[arg-type]
                QueueJob.run_at <= now,  # type: ignore[arg-type]
            )
            .order_by(QueueJob.run_at.asc())  # type: ignore[attr-defined]
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        claimed = await self.session.execute(
            update(QueueJob)
            .where(
                QueueJob.id == job_id,  # type: ignore[arg-type]
                QueueJob.status == QueueJobStatus.PENDING,  # type: ignore[arg-type]
            )
            .values(
                status=QueueJobStatus.ACTIVE,
                attempts=QueueJob.attempts + 1,
                locked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:  # type: ignore[attr-defined]
            return None

        refreshed = await self.session.execute(
            select(QueueJob)
            .where(QueueJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return refreshed.scalar_one()

    async def delete(self, job_id: UUID) -> None:
        """Remove a job (successful completion)."""
        await self.session.execute(delete(QueueJob).where(QueueJob.id == job_id))  # type: ignore[arg-type]

    async def reschedule(self, job_id: UUID, run_at: datetime, error: str, now: datetime) -> None:
        """Return an active job to pending for a later retry."""
        await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)  # type: ignore[arg-type]
            .values(
                status=QueueJobStatus.PENDING,
                run_at=run_at,
                locked_at=None,
                last_error=error[:2000],
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, job_id: UUID, error: str, now: datetime) -> None:
        """Retain an exhausted job as failed for inspection."""
        await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)  # type: ignore[arg-type]
            .values(
                status=QueueJobStatus.FAILED,
                locked_at=None,
                last_error=error[:2000],
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def reset_stale_active(self, queue: str, now: datetime) -> int:
        """Reset jobs left active by a crashed process back to pending.

        Returns:
            Number of jobs reset
        """
        result = await self.session.execute(
            update(QueueJob)
            .where(
                QueueJob.queue == queue,  # type: ignore[arg-type]
                QueueJob.status == QueueJobStatus.ACTIVE,  # type: ignore[arg-type]
            )
            .values(status=QueueJobStatus.PENDING, locked_at=None, run_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def count_by_status(self, queue: str) -> dict[str, int]:
        """Count a queue's jobs grouped by status."""
        result = await self.session.execute(
            select(QueueJob.status, func.count(QueueJob.id))  # type: ignore[arg-type]
            .where(QueueJob.queue == queue)  # type: ignore[arg-type]
            .group_by(QueueJob.status)
        )
        return {status.value: count for status, count in result.all()}
