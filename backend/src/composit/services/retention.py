"""Retention and purge of generations, outputs and assets.

Storage objects are deleted first, then rows are soft-deleted; a storage
failure leaves the rows untouched so the next sweep retries them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import structlog

from composit.core.timezone import utcnow
from composit.models.asset import PENDING_STORAGE_KEY
from composit.services.container import Services

logger = structlog.get_logger(__name__)


@dataclass
class PurgeResult:
    generations_deleted: int = 0
    keys_deleted: int = 0
    orphaned_assets_deleted: int = 0
    errors: int = 0


async def purge_generation(
    services: Services,
    generation_id: UUID,
    log_event: str | None = "retention.deleted",
    log_payload: dict | None = None,
) -> int:
    """Delete a generation's storage objects and soft-delete its rows.

    Linked assets are purged too, unless another live generation still uses them.

    Args:
        services: Process-scoped services
        generation_id: Generation to purge (already-deleted rows are accepted)
        log_event: Job log event to append, or None
        log_payload: Extra job log payload

    Returns:
        Number of storage keys deleted
    """
    async with await services.uow_factory() as uow:
        outputs = await uow.outputs.list_for_generation(generation_id)
        assets = await uow.generations.get_assets(generation_id)
        shared = await uow.assets.in_use_elsewhere([a.id for a in assets], generation_id)

    purge_assets = [a for a in assets if a.deleted_at is None and a.id not in shared]
    keys = [o.storage_key for o in outputs] + [
        a.storage_key for a in purge_assets if a.storage_key != PENDING_STORAGE_KEY
    ]
    await services.storage.delete(keys)

    now = utcnow()
    async with await services.uow_factory() as uow:
        await uow.outputs.soft_delete_for_generation(generation_id, now)
        await uow.assets.soft_delete_many([a.id for a in purge_assets], now)
        generation = await uow.generations.get_by_id(generation_id, include_deleted=True)
        if generation is not None:
            generation.mark_deleted(now)
            await uow.generations.save(generation)
        if log_event:
            await uow.job_logs.append(
                generation_id,
                log_event,
                {"storageKeysDeleted": len(keys), **(log_payload or {})},
            )

    return len(keys)


async def purge_orphaned_assets(services: Services, cutoff: datetime) -> int:
    """Purge assets older than cutoff that no generation links to."""
    async with await services.uow_factory() as uow:
        orphans = await uow.assets.orphaned_before(cutoff)
    if not orphans:
        return 0

    await services.storage.delete(
        [a.storage_key for a in orphans if a.storage_key != PENDING_STORAGE_KEY]
    )
    async with await services.uow_factory() as uow:
        await uow.assets.soft_delete_many([a.id for a in orphans], utcnow())

    logger.info("retention.orphaned_assets_purged", count=len(orphans))
    return len(orphans)


async def run_retention_purge(services: Services) -> PurgeResult:
    """Purge every generation older than RETENTION_DAYS, then orphaned assets.

    Per-generation failures are logged and skipped.
    """
    retention_days = services.settings.retention_days
    cutoff = utcnow() - timedelta(days=retention_days)
    result = PurgeResult()

    logger.info("retention.started", cutoff=cutoff.isoformat(), retention_days=retention_days)

    async with await services.uow_factory() as uow:
        expired = await uow.generations.expired_before(cutoff)

    logger.info("retention.expired_found", count=len(expired))

    for generation in expired:
        try:
            keys = await purge_generation(
                services, generation.id, log_payload={"cutoff": cutoff.isoformat()}
            )
        except Exception as e:
            result.errors += 1
            logger.error(
                "retention.generation_failed",
                generation_id=str(generation.id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            continue
        result.generations_deleted += 1
        result.keys_deleted += keys
        logger.info("retention.deleted", generation_id=str(generation.id), keys_deleted=keys)

    result.orphaned_assets_deleted = await purge_orphaned_assets(services, cutoff)

    logger.info(
        "retention.completed",
        generations_deleted=result.generations_deleted,
        keys_deleted=result.keys_deleted,
        orphaned_assets_deleted=result.orphaned_assets_deleted,
        errors=result.errors,
    )
    return result


async def purge_session(services: Services, session_id: str) -> PurgeResult:
    """Force-purge every live generation of a session (administrative)."""
    result = PurgeResult()
    async with await services.uow_factory() as uow:
        generations = await uow.generations.list_active_for_session(session_id)

    for generation in generations:
        result.keys_deleted += await purge_generation(services, generation.id, log_event=None)
        result.generations_deleted += 1

    async with await services.uow_factory() as uow:
        await uow.job_logs.append(
            None,
            "admin.purge",
            {
                "sessionId": session_id,
                "generationsDeleted": result.generations_deleted,
                "keysDeleted": result.keys_deleted,
            },
        )

    logger.warning(
        "admin.session_purged",
        session_id=session_id,
        generations_deleted=result.generations_deleted,
        keys_deleted=result.keys_deleted,
    )
    return result
