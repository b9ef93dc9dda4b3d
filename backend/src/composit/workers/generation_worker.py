"""Generation worker: consumes generation jobs from the queue.

Per job:
1. Mark the generation processing and append a job.started log entry
2. Load the generation and its assets, sign provider-fetchable asset URLs
3. Map stored parameters onto provider fields (resolution tier, aspect ratio)
4. Persist variations_total / variations_done=0, then submit one provider task
   per variation, committing each task link before the next submission
5. Poll the submitted tasks until all are terminal or the timeout passes,
   handing every terminal task to the callback reconciler

A failure in steps 1-4 marks the generation failed and re-raises, so the queue
retries the whole job. Step 5 degrades per task: query or reconcile errors are
logged and retried on the next round, and tasks still pending at the timeout
are left to a late webhook or an administrative retry.

The webhook path and this polling loop race freely; the reconciler makes the
second arrival for a task a no-op.
"""

import asyncio
import time
from uuid import UUID

import structlog

from composit.core.timezone import utcnow
from composit.models.queue_job import QueueJob
from composit.services.container import Services
from composit.services.generation.params import GenerationParams, aspect_ratio, resolution_tier
from composit.services.metrics import generations_total

logger = structlog.get_logger(__name__)

OUTPUT_FORMAT = "png"


async def submit_generation(services: Services, generation_id: UUID, attempt: int = 1) -> list[str] | None:
    """Run steps 1-4 for one generation.

    Returns:
        Task ids submitted by this run, or None if the generation is gone

    Raises:
        Exception: Any failure after the generation was marked failed
    """
    settings = services.settings

    async with await services.uow_factory() as uow:
        generation = await uow.generations.get_by_id(generation_id)
        if generation is None:
            logger.warning("generation.job.missing", generation_id=str(generation_id))
            return None
        await uow.generations.mark_processing(generation_id, utcnow())
        await uow.job_logs.append(generation_id, "job.started", {"attempt": attempt})

    logger.info("generation.job.started", generation_id=str(generation_id), attempt=attempt)

    try:
        async with await services.uow_factory() as uow:
            generation = await uow.generations.get_by_id(generation_id)
            if generation is None:
                raise ValueError(f"Generation {generation_id} not found")
            assets = [a for a in await uow.generations.get_assets(generation_id) if a.deleted_at is None]
            position = len(await uow.generations.task_ids(generation_id))

        if not assets:
            raise ValueError("Generation has no input assets")

        image_urls = [
            await services.storage.signed_url(asset.storage_key, settings.provider_signed_url_ttl_seconds)
            for asset in assets
        ]

        params = GenerationParams.model_validate(generation.params)
        resolution = resolution_tier(params.resolution)
        ratio = aspect_ratio(params.framing, params.view)
        variations = params.variations

        async with await services.uow_factory() as uow:
            await uow.generations.reset_for_submission(generation_id, variations)

        task_ids: list[str] = []
        for variation in range(1, variations + 1):
            task_id = await services.kie.create_task(
                prompt=generation.prompt,
                image_urls=image_urls,
                aspect_ratio=ratio,
                resolution=resolution,
                output_format=OUTPUT_FORMAT,
                callback_url=settings.kie_callback_url,
            )
            async with await services.uow_factory() as uow:
                await uow.generations.append_task(generation_id, task_id, position)
                await uow.job_logs.append(
                    generation_id, "kie.submitted", {"taskId": task_id, "variation": variation}
                )
            position += 1
            task_ids.append(task_id)

            logger.info(
                "kie.task.submitted",
                generation_id=str(generation_id),
                task_id=task_id,
                variation=variation,
                variations=variations,
            )

        return task_ids

    except Exception as e:
        reason = str(e) or type(e).__name__
        async with await services.uow_factory() as uow:
            await uow.generations.mark_failed(generation_id, reason, utcnow())
            await uow.job_logs.append(generation_id, "job.failed", {"error": reason[:1000]})
        generations_total.labels(status="failed").inc()
        logger.error(
            "generation.job.failed",
            generation_id=str(generation_id),
            error_type=type(e).__name__,
            error_message=reason,
            attempt=attempt,
        )
        raise


async def poll_tasks(services: Services, generation_id: UUID, task_ids: list[str]) -> set[str]:
    """Poll tasks until all are terminal or the poll timeout passes.

    Returns:
        Task ids still pending when polling stopped
    """
    settings = services.settings
    pending = set(task_ids)
    deadline = time.monotonic() + settings.kie_poll_timeout_seconds

    while pending and time.monotonic() < deadline:
        for task_id in list(pending):
            try:
                record = await services.kie.query_task(task_id)
            except Exception as e:
                logger.warning(
                    "generation.poll.query_failed",
                    generation_id=str(generation_id),
                    task_id=task_id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                continue

            if not record.is_terminal:
                continue

            logger.info(
                "generation.poll.terminal",
                generation_id=str(generation_id),
                task_id=task_id,
                state=record.state,
            )
            try:
                await services.reconciler.reconcile(
                    task_id, record.state, record.result_json, record.fail_msg
                )
            except Exception as e:
                logger.warning(
                    "generation.poll.reconcile_failed",
                    generation_id=str(generation_id),
                    task_id=task_id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                continue
            pending.discard(task_id)

        if pending:
            await asyncio.sleep(settings.kie_poll_interval_seconds)

    if pending:
        logger.warning(
            "generation.poll.timed_out",
            generation_id=str(generation_id),
            pending_count=len(pending),
            timeout_seconds=settings.kie_poll_timeout_seconds,
        )
    return pending


async def process_generation_job(services: Services, payload: dict, attempt: int = 1) -> None:
    """Process one queue job payload ({"generationId", "sessionId"}).

    Raises:
        Exception: Submission failures, so the queue can retry the job
    """
    generation_id = UUID(payload["generationId"])
    start_time = time.time()

    task_ids = await submit_generation(services, generation_id, attempt)
    if task_ids is None:
        return

    pending = await poll_tasks(services, generation_id, task_ids)

    logger.info(
        "generation.job.finished",
        generation_id=str(generation_id),
        tasks=len(task_ids),
        pending=len(pending),
        duration_seconds=time.time() - start_time,
    )


async def run_job(services: Services, job: QueueJob) -> None:
    """Run one claimed job and report the outcome to the queue."""
    try:
        await process_generation_job(services, job.payload, attempt=job.attempts)
    except asyncio.CancelledError:
        # Job stays active and is recovered at the next startup
        raise
    except Exception as e:
        await services.queue.fail(job, str(e) or type(e).__name__)
        return
    await services.queue.complete(job)


async def run_generation_worker(services: Services, worker_name: str = "generation") -> None:
    """Worker loop: claim one job at a time and process it.

    Sleeps QUEUE_POLL_INTERVAL_SECONDS when the queue is idle. The app runs
    WORKER_CONCURRENCY of these loops.

    Args:
        services: Process-scoped services
        worker_name: Name used in log events
    """
    settings = services.settings
    logger.info(
        "worker.started",
        worker=worker_name,
        poll_interval=settings.queue_poll_interval_seconds,
    )

    try:
        while True:
            try:
                job = await services.queue.claim()
                if job is None:
                    await asyncio.sleep(settings.queue_poll_interval_seconds)
                    continue

                logger.debug("worker.job_claimed", worker=worker_name, job_id=str(job.id))
                await run_job(services, job)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker=worker_name,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker=worker_name)
        raise
