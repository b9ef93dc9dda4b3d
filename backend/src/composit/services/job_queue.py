"""Durable at-least-once job queue backed by the queue_jobs table.

Jobs are deduplicated by (queue, key): re-enqueuing a key that already has a
pending or active job returns that job instead of scheduling a second one.
Workers claim jobs one at a time, completed jobs are deleted, and failed jobs
are retried with exponential backoff until their attempt budget is spent, after
which they are kept with status 'failed' for inspection.
"""

from datetime import timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from composit.core.timezone import utcnow
from composit.models.queue_job import QueueJob, QueueJobStatus

logger = structlog.get_logger(__name__)

GENERATION_QUEUE = "generation"


class JobQueue:
    """Process-scoped handle on one named queue."""

    def __init__(
        self,
        uow_factory,
        name: str = GENERATION_QUEUE,
        max_attempts: int = 3,
        backoff_seconds: float = 10.0,
    ):
        """Initialize queue handle.

        Args:
            uow_factory: Unit of Work factory
            name: Queue name (rows of other queues are never touched)
            max_attempts: Attempts before a job is retained as failed
            backoff_seconds: Base delay; attempt n waits base * 2**(n-1)
        """
        self.uow_factory = uow_factory
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._open = False

    async def acquire(self) -> "JobQueue":
        self._open = True
        return self

    async def shutdown(self) -> None:
        """Stop handing out jobs; active ones finish or are recovered on restart."""
        self._open = False

    async def enqueue(self, key: str, payload: dict) -> UUID:
        """Schedule a job unless one already exists for the key.

        An exhausted (failed) job for the key is re-armed with a fresh attempt
        budget. A concurrent insert for the same key is resolved by the unique
        constraint; the loser returns the winner's job.

        Returns:
            Id of the new or existing job
        """
        now = utcnow()
        try:
            async with await self.uow_factory() as uow:
                existing = await uow.queue_jobs.get_by_key(self.name, key)
                if existing is None:
                    job = await uow.queue_jobs.add(
                        QueueJob(
                            queue=self.name,
                            key=key,
                            payload=payload,
                            max_attempts=self.max_attempts,
                            run_at=now,
                        )
                    )
                    logger.info("queue.enqueued", queue=self.name, key=key, job_id=str(job.id))
                    return job.id

                if existing.status == QueueJobStatus.FAILED:
                    await uow.queue_jobs.rearm(existing, payload, self.max_attempts, now)
                    logger.info("queue.rearmed", queue=self.name, key=key, job_id=str(existing.id))
                else:
                    logger.info(
                        "queue.deduplicated",
                        queue=self.name,
                        key=key,
                        job_id=str(existing.id),
                        status=existing.status.value,
                    )
                return existing.id
        except IntegrityError:
            async with await self.uow_factory() as uow:
                existing = await uow.queue_jobs.get_by_key(self.name, key)
            if existing is None:
                raise
            logger.info("queue.deduplicated", queue=self.name, key=key, job_id=str(existing.id))
            return existing.id

    async def enqueue_generation(self, generation_id: UUID, session_id: str) -> UUID:
        """Schedule processing of a generation, keyed by its id."""
        return await self.enqueue(
            str(generation_id),
            {"generationId": str(generation_id), "sessionId": session_id},
        )

    async def claim(self) -> QueueJob | None:
        """Claim the next due job, or None if the queue is idle or shut down."""
        if not self._open:
            return None
        async with await self.uow_factory() as uow:
            return await uow.queue_jobs.claim_next(self.name, utcnow())

    async def complete(self, job: QueueJob) -> None:
        """Remove a successfully processed job."""
        async with await self.uow_factory() as uow:
            await uow.queue_jobs.delete(job.id)
        logger.debug("queue.completed", queue=self.name, job_id=str(job.id))

    async def fail(self, job: QueueJob, error: str) -> bool:
        """Record a failed attempt.

        Returns:
            True if a retry was scheduled, False if the job is now exhausted
        """
        now = utcnow()
        async with await self.uow_factory() as uow:
            if job.attempts < job.max_attempts:
                delay = self.backoff_seconds * 2 ** (max(job.attempts, 1) - 1)
                await uow.queue_jobs.reschedule(job.id, now + timedelta(seconds=delay), error, now)
                logger.warning(
                    "queue.retry_scheduled",
                    queue=self.name,
                    job_id=str(job.id),
                    attempt=job.attempts,
                    max_attempts=job.max_attempts,
                    retry_in_seconds=delay,
                )
                return True

            await uow.queue_jobs.mark_failed(job.id, error, now)

        logger.error(
            "queue.exhausted",
            queue=self.name,
            job_id=str(job.id),
            attempts=job.attempts,
            error=error,
        )
        return False

    async def recover_stale(self) -> int:
        """Return jobs left active by a previous process to pending.

        Run once at startup, before any worker of this process claims a job.
        """
        async with await self.uow_factory() as uow:
            recovered = await uow.queue_jobs.reset_stale_active(self.name, utcnow())
        if recovered:
            logger.info("queue.recovered", queue=self.name, jobs_reset=recovered)
        return recovered

    async def counts(self) -> dict[str, int]:
        """Job counts per status (every status present, zero if empty)."""
        async with await self.uow_factory() as uow:
            counts = await uow.queue_jobs.count_by_status(self.name)
        return {status.value: counts.get(status.value, 0) for status in QueueJobStatus}
