"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from composit.api.routes import admin, generations, uploads, webhooks
from composit.core import timezone  # noqa: F401
from composit.core.config import Settings, configure_logging
from composit.core.database import setup_db_session
from composit.services.container import Services, build_services
from composit.services.metrics import queue_depth
from composit.uow import create_uow_factory
from composit.workers.generation_worker import run_generation_worker
from composit.workers.retention_worker import run_retention_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, services: Services, worker_name: str, shutdown_event: asyncio.Event, *args
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_generation_worker)
        services: Process-scoped services passed to the worker
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        *args: Extra positional arguments for coro_func

    Returns:
        Holder list whose single item is the current task (replaced on restart)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts
    holder: list[asyncio.Task] = []

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped cleanly (unexpected for infinite loop workers)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(services, *args))
            new_task.add_done_callback(on_worker_done)
            holder[0] = new_task

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(services, *args))
    task.add_done_callback(on_worker_done)
    holder.append(task)
    return holder


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, database session factory, services, queue
      recovery, generation worker pool and retention worker
    - Shutdown: stop workers, release services, dispose the engine
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    services = await build_services(settings, uow_factory).acquire()

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = services

    # Jobs left active by a previous process are claimed again
    await services.queue.recover_stale()

    shutdown_event = asyncio.Event()
    workers = [
        create_resilient_worker(
            run_generation_worker,
            services,
            f"generation-{index}",
            shutdown_event,
            f"generation-{index}",
        )
        for index in range(settings.worker_concurrency)
    ]
    workers.append(
        create_resilient_worker(run_retention_worker, services, "retention", shutdown_event)
    )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        worker_concurrency=settings.worker_concurrency,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    tasks = [holder[0] for holder in workers]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    await services.shutdown()
    await session_factory.kw["bind"].dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Composit Backend API",
        description="Product-on-model image generation service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(uploads.router)
    app.include_router(generations.router)
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(admin.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check with database and queue checks.

        Returns:
            200: {"status": "ok", "db": "ok", "queue": "ok", "queueDepth": n}
            503: {"status": "degraded", ...} if a check fails
        """
        checks: dict = {}

        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            checks["db"] = "ok"
        except Exception as e:
            logger.error("health_check.db_failed", error=str(e), error_type=type(e).__name__)
            checks["db"] = "error"

        try:
            counts = await app.state.services.queue.counts()
            queue_depth.set(counts["pending"])
            checks["queue"] = "ok"
            checks["queueDepth"] = counts["pending"]
        except Exception as e:
            logger.error("health_check.queue_failed", error=str(e), error_type=type(e).__name__)
            checks["queue"] = "error"

        healthy = checks["db"] == "ok" and checks["queue"] == "ok"
        if not healthy:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "ok" if healthy else "degraded", **checks}

    @app.get("/metrics")
    async def metrics():
        """Prometheus text exposition."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# Create app instance for uvicorn
app = create_app()
