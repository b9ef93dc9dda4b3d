"""Administrative endpoints, guarded by the X-Admin-Secret header.

- GET /admin/metrics - queue counts and generation totals
- POST /admin/retry-job - reset a terminal generation and re-enqueue it
- POST /admin/purge - force-purge every generation of a session
- POST /admin/run-retention - trigger the retention purge in the background
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from composit.api.dependencies import get_services, require_admin
from composit.api.schemas import CamelModel
from composit.models.generation import GenerationStatus, InvalidStateTransition
from composit.models.queue_job import QueueJobStatus
from composit.services.container import Services
from composit.services.retention import purge_session, run_retention_purge

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class RetryJobRequest(CamelModel):
    generation_id: UUID


class RetryJobResponse(CamelModel):
    generation_id: UUID
    status: GenerationStatus


class PurgeRequest(CamelModel):
    session_id: str


class PurgeResponse(CamelModel):
    session_id: str
    generations_deleted: int
    keys_deleted: int


@router.get("/metrics")
async def admin_metrics(services: Services = Depends(get_services)) -> dict:
    """Queue depth per status and generation totals."""
    queue_counts = await services.queue.counts()
    async with await services.uow_factory() as uow:
        by_status = await uow.generations.count_by_status()

    return {
        "queue": {
            "waiting": queue_counts["pending"],
            "active": queue_counts["active"],
            "failed": queue_counts["failed"],
        },
        "generations": {
            "total": sum(by_status.values()),
            **{s.value: by_status.get(s.value, 0) for s in GenerationStatus},
        },
    }


@router.post("/retry-job", response_model=RetryJobResponse)
async def retry_job(
    request: RetryJobRequest,
    services: Services = Depends(get_services),
) -> RetryJobResponse:
    """Return a completed or failed generation to queued and enqueue it again.

    The task list is cleared, so callbacks for the previous tasks are ignored.
    A generation whose queue job is still pending or active is refused.

    Raises:
        HTTPException: 404 unknown generation, 409 generation or its job still in flight
    """
    async with await services.uow_factory() as uow:
        generation = await uow.generations.get_by_id(request.generation_id)
        if generation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
        job = await uow.queue_jobs.get_by_key(services.queue.name, str(generation.id))
        if job is not None and job.status in (QueueJobStatus.PENDING, QueueJobStatus.ACTIVE):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Generation job is still {job.status.value}",
            )
        try:
            generation.reset_for_retry()
        except InvalidStateTransition as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        await uow.generations.clear_tasks(generation.id)
        await uow.generations.save(generation)
        await uow.job_logs.append(generation.id, "admin.retry", {})
        session_id = generation.session_id

    await services.queue.enqueue_generation(request.generation_id, session_id)
    logger.info("admin.generation_requeued", generation_id=str(request.generation_id))
    return RetryJobResponse(generation_id=request.generation_id, status=GenerationStatus.QUEUED)


@router.post("/purge", response_model=PurgeResponse)
async def purge(
    request: PurgeRequest,
    services: Services = Depends(get_services),
) -> PurgeResponse:
    """Delete a session's storage objects and soft-delete its generations now."""
    result = await purge_session(services, request.session_id)
    return PurgeResponse(
        session_id=request.session_id,
        generations_deleted=result.generations_deleted,
        keys_deleted=result.keys_deleted,
    )


async def _run_retention_logged(services: Services) -> None:
    try:
        await run_retention_purge(services)
    except Exception as e:
        logger.error(
            "admin.retention_failed",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )


@router.post("/run-retention")
async def run_retention(
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> dict:
    """Start a retention purge without waiting for it."""
    background_tasks.add_task(_run_retention_logged, services)
    logger.info("admin.retention_triggered")
    return {"message": "Retention job triggered"}
