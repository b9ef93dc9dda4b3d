"""Generation API endpoints.

- POST /api/generate - create a generation and enqueue its job
- GET /api/generation/{id} - generation status, outputs and assets
- POST /api/generation/{id}/update - regenerate with parent lineage
- DELETE /api/generation/{id} - soft delete
- GET /api/history - keyset-paginated generation history
- GET /api/download/{output_id} - short-lived download URL for one output

Every endpoint is scoped to the caller's session; other sessions' rows and
soft-deleted rows answer 404.

POST /api/generate and the update endpoint share one hourly budget per session.
"""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import Field

from composit.api.dependencies import generate_rate_limit, get_services, require_session_id
from composit.api.schemas import CamelModel
from composit.core.timezone import utcnow
from composit.models.asset import AssetRole
from composit.models.generation import Generation, GenerationStatus
from composit.services.container import Services
from composit.services.exceptions import StorageError
from composit.services.generation.params import GenerationParams
from composit.services.metrics import generations_total
from composit.services.safety import PROMPT_MAX_LENGTH, is_safe_prompt

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generations"])

MAX_ASSETS = 8
SHORT_PROMPT_LENGTH = 120


# Request/Response Models


class GenerateRequest(CamelModel):
    asset_ids: list[UUID] = Field(..., min_length=1, max_length=MAX_ASSETS)
    prompt: str = Field(..., min_length=1, max_length=PROMPT_MAX_LENGTH)
    params: GenerationParams = Field(default_factory=GenerationParams)
    parent_generation_id: UUID | None = None


class UpdateGenerationRequest(CamelModel):
    """Regeneration request; asset ids default to the parent's."""

    asset_ids: list[UUID] | None = Field(default=None, min_length=1, max_length=MAX_ASSETS)
    prompt: str = Field(..., min_length=1, max_length=PROMPT_MAX_LENGTH)
    params: GenerationParams = Field(default_factory=GenerationParams)


class GenerationCreatedResponse(CamelModel):
    generation_id: UUID
    status: GenerationStatus
    created_at: datetime
    parent_generation_id: UUID | None = None


class OutputView(CamelModel):
    id: UUID
    task_id: str
    mime: str
    size_bytes: int | None
    width: int | None
    height: int | None
    created_at: datetime
    url: str | None


class AssetView(CamelModel):
    id: UUID
    role: AssetRole
    filename: str
    width: int | None
    height: int | None


class GenerationDetail(CamelModel):
    id: UUID
    status: GenerationStatus
    prompt: str
    params: dict[str, Any]
    parent_generation_id: UUID | None
    task_ids: list[str]
    variations_total: int
    variations_done: int
    failure_reason: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    outputs: list[OutputView]
    assets: list[AssetView]


class HistoryItem(CamelModel):
    id: UUID
    status: GenerationStatus
    prompt: str
    short_prompt: str
    params: dict[str, Any]
    parent_generation_id: UUID | None
    created_at: datetime
    completed_at: datetime | None
    expires_at: datetime
    thumbnail_url: str | None
    output_count: int


class HistoryResponse(CamelModel):
    items: list[HistoryItem]
    next_cursor: datetime | None
    has_more: bool


class DownloadResponse(CamelModel):
    url: str
    expires_in_seconds: int


async def signed_url_or_none(services: Services, storage_key: str) -> str | None:
    """Signed download URL, or None if signing fails (logged)."""
    try:
        return await services.storage.signed_url(
            storage_key, services.settings.download_url_ttl_seconds
        )
    except StorageError as e:
        logger.warning("storage.sign_failed", storage_key=storage_key, error=str(e))
        return None


async def create_generation(
    services: Services,
    session_id: str,
    asset_ids: list[UUID],
    prompt: str,
    params: GenerationParams,
    parent_generation_id: UUID | None = None,
) -> Generation:
    """Validate, persist (queued, with asset links) and enqueue a generation.

    Raises:
        HTTPException: 422 unsafe prompt, 404 assets missing or foreign
    """
    if not is_safe_prompt(prompt):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Prompt contains disallowed content",
        )

    unique_ids = list(dict.fromkeys(asset_ids))
    async with await services.uow_factory() as uow:
        owned = await uow.assets.get_owned(unique_ids, session_id)
        if len(owned) != len(unique_ids):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="One or more assets not found or not owned by this session",
            )

        generation = await uow.generations.add_with_assets(
            Generation(
                session_id=session_id,
                parent_generation_id=parent_generation_id,
                prompt=prompt,
                params=params.to_storage(),
                status=GenerationStatus.QUEUED,
                variations_total=params.variations,
            ),
            unique_ids,
        )

    await services.queue.enqueue_generation(generation.id, session_id)

    async with await services.uow_factory() as uow:
        await uow.job_logs.append(
            generation.id,
            "job.queued",
            {"assetIds": [str(a) for a in unique_ids], "prompt": prompt[:200]},
        )

    generations_total.labels(status="queued").inc()
    logger.info(
        "generation.queued",
        generation_id=str(generation.id),
        session_id=session_id,
        variations=params.variations,
    )
    return generation


@router.post(
    "/generate",
    status_code=status.HTTP_201_CREATED,
    response_model=GenerationCreatedResponse,
    dependencies=[Depends(generate_rate_limit)],
)
async def generate(
    request: GenerateRequest,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> GenerationCreatedResponse:
    """Create a generation from uploaded assets and queue it for processing."""
    generation = await create_generation(
        services,
        session_id,
        request.asset_ids,
        request.prompt,
        request.params,
        request.parent_generation_id,
    )
    return GenerationCreatedResponse(
        generation_id=generation.id,
        status=generation.status,
        created_at=generation.created_at,
        parent_generation_id=generation.parent_generation_id,
    )


@router.get("/generation/{generation_id}", response_model=GenerationDetail)
async def get_generation(
    generation_id: UUID,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> GenerationDetail:
    """Return a generation with its task ids, counters, outputs and assets.

    Output URLs are short-lived signed URLs (null if signing failed).
    """
    async with await services.uow_factory() as uow:
        generation = await uow.generations.get_for_session(generation_id, session_id)
        if generation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
        task_ids = await uow.generations.task_ids(generation_id)
        outputs = await uow.outputs.list_for_generation(generation_id)
        assets = await uow.generations.get_assets(generation_id)

    return GenerationDetail(
        id=generation.id,
        status=generation.status,
        prompt=generation.prompt,
        params=generation.params,
        parent_generation_id=generation.parent_generation_id,
        task_ids=task_ids,
        variations_total=generation.variations_total,
        variations_done=generation.variations_done,
        failure_reason=generation.failure_reason,
        created_at=generation.created_at,
        started_at=generation.started_at,
        completed_at=generation.completed_at,
        outputs=[
            OutputView(
                id=output.id,
                task_id=output.task_id,
                mime=output.mime,
                size_bytes=output.size_bytes,
                width=output.width,
                height=output.height,
                created_at=output.created_at,
                url=await signed_url_or_none(services, output.storage_key),
            )
            for output in outputs
        ],
        assets=[
            AssetView(
                id=asset.id,
                role=asset.role,
                filename=asset.filename,
                width=asset.width,
                height=asset.height,
            )
            for asset in assets
        ],
    )


@router.post(
    "/generation/{generation_id}/update",
    status_code=status.HTTP_201_CREATED,
    response_model=GenerationCreatedResponse,
    dependencies=[Depends(generate_rate_limit)],
)
async def update_generation(
    generation_id: UUID,
    request: UpdateGenerationRequest,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> GenerationCreatedResponse:
    """Regenerate from an existing generation, recording it as the parent."""
    async with await services.uow_factory() as uow:
        parent = await uow.generations.get_for_session(generation_id, session_id)
        if parent is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Parent generation not found"
            )
        asset_ids = request.asset_ids or await uow.generations.get_asset_ids(generation_id)

    generation = await create_generation(
        services, session_id, asset_ids, request.prompt, request.params, generation_id
    )
    return GenerationCreatedResponse(
        generation_id=generation.id,
        status=generation.status,
        created_at=generation.created_at,
        parent_generation_id=generation_id,
    )


@router.delete("/generation/{generation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation(
    generation_id: UUID,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> Response:
    """Soft-delete a generation; it disappears from every read path."""
    async with await services.uow_factory() as uow:
        generation = await uow.generations.get_for_session(generation_id, session_id)
        if generation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
        generation.mark_deleted(utcnow())
        await uow.generations.save(generation)

    logger.info("generation.deleted", generation_id=str(generation_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/history", response_model=HistoryResponse)
async def history(
    limit: int = Query(default=20, ge=1),
    cursor: datetime | None = Query(default=None),
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> HistoryResponse:
    """Session history, newest first.

    Pass the previous page's nextCursor as `cursor` to fetch the next page.
    """
    limit = min(limit, 100)
    if cursor is not None and cursor.tzinfo is not None:
        cursor = cursor.astimezone(timezone.utc).replace(tzinfo=None)

    async with await services.uow_factory() as uow:
        generations = await uow.generations.list_for_session(session_id, limit + 1, cursor)
        has_more = len(generations) > limit
        generations = generations[:limit]
        outputs = await uow.outputs.list_for_generations([g.id for g in generations])

    retention = timedelta(days=services.settings.retention_days)
    items = []
    for generation in generations:
        generation_outputs = outputs.get(generation.id, [])
        thumbnail_url = None
        if generation_outputs:
            thumbnail_url = await signed_url_or_none(services, generation_outputs[0].storage_key)
        items.append(
            HistoryItem(
                id=generation.id,
                status=generation.status,
                prompt=generation.prompt,
                short_prompt=generation.prompt[:SHORT_PROMPT_LENGTH],
                params=generation.params,
                parent_generation_id=generation.parent_generation_id,
                created_at=generation.created_at,
                completed_at=generation.completed_at,
                expires_at=generation.created_at + retention,
                thumbnail_url=thumbnail_url,
                output_count=len(generation_outputs),
            )
        )

    return HistoryResponse(
        items=items,
        next_cursor=generations[-1].created_at if has_more else None,
        has_more=has_more,
    )


@router.get("/download/{output_id}", response_model=DownloadResponse)
async def download(
    output_id: UUID,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> DownloadResponse:
    """Short-lived signed URL for one of the session's outputs."""
    async with await services.uow_factory() as uow:
        output = await uow.outputs.get_for_session(output_id, session_id)
    if output is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Output not found")

    ttl = services.settings.download_url_ttl_seconds
    try:
        url = await services.storage.signed_url(output.storage_key, ttl)
    except StorageError as e:
        logger.error("download.sign_failed", output_id=str(output_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to generate download URL"
        )
    return DownloadResponse(url=url, expires_in_seconds=ttl)
