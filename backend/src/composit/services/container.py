"""Process-scoped service container.

Holds the single instances of the provider client, object store client, job
queue, callback reconciler and request rate limiters, with an explicit
acquire/shutdown lifecycle. The app lifespan builds one container and stores
it on app.state; workers and routes receive it from there, and tests build
containers around fakes.
"""

from dataclasses import dataclass

import structlog

from composit.core.config import Settings
from composit.services.job_queue import GENERATION_QUEUE, JobQueue
from composit.services.kie.client import KieClient
from composit.services.rate_limit import RateLimiter
from composit.services.reconciler import CallbackReconciler
from composit.services.storage.supabase_storage import StorageClient

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    uow_factory: object
    kie: KieClient
    storage: StorageClient
    queue: JobQueue
    reconciler: CallbackReconciler
    generate_limiter: RateLimiter
    upload_limiter: RateLimiter

    async def acquire(self) -> "Services":
        await self.kie.acquire()
        await self.storage.acquire()
        await self.queue.acquire()
        logger.debug("services.acquired")
        return self

    async def shutdown(self) -> None:
        await self.queue.shutdown()
        await self.kie.shutdown()
        await self.storage.shutdown()
        logger.debug("services.shutdown")


def build_services(
    settings: Settings,
    uow_factory,
    kie: KieClient | None = None,
    storage: StorageClient | None = None,
) -> Services:
    """Wire the service graph from settings.

    Args:
        settings: Application settings
        uow_factory: Unit of Work factory shared by every service
        kie: Task client override (tests pass fakes)
        storage: Object store override (tests pass fakes)
    """
    kie = kie or KieClient(
        api_key=settings.kie_api_key,
        base_url=settings.kie_base_url,
        model=settings.kie_model,
    )
    storage = storage or StorageClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        bucket=settings.storage_bucket,
    )
    queue = JobQueue(
        uow_factory,
        name=GENERATION_QUEUE,
        max_attempts=settings.queue_max_attempts,
        backoff_seconds=settings.queue_backoff_seconds,
    )
    return Services(
        settings=settings,
        uow_factory=uow_factory,
        kie=kie,
        storage=storage,
        queue=queue,
        reconciler=CallbackReconciler(uow_factory, kie, storage),
        generate_limiter=RateLimiter(
            "generate", max_requests=settings.rate_limit_generate_per_hour, window_seconds=3600
        ),
        upload_limiter=RateLimiter(
            "upload", max_requests=settings.rate_limit_uploads_per_minute, window_seconds=60
        ),
    )
