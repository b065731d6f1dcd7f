"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from mealforge.api.routes import jobs
from mealforge.core import timezone  # noqa: F401
from mealforge.core.config import Settings, configure_logging
from mealforge.core.database import setup_db_session
from mealforge.services.generation.factory import build_services
from mealforge.uow import create_uow_factory
from mealforge.workers.healing_worker import run_healing_worker
from mealforge.workers.recovery import recover_orphaned_jobs
from mealforge.workers.snapshot_worker import run_snapshot_worker

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


class WorkerHandle:
    """Live task of a restartable worker; follows the task across restarts."""

    def __init__(self, name: str):
        self.name = name
        self.task: asyncio.Task | None = None
        self.restart_task: asyncio.Task | None = None

    def cancel(self) -> None:
        for task in (self.restart_task, self.task):
            if task is not None and not task.done():
                task.cancel()

    async def stop(self) -> None:
        """Cancel the current task (and any pending restart) and wait for it."""
        self.cancel()
        pending = [t for t in (self.restart_task, self.task) if t is not None]
        await asyncio.gather(*pending, return_exceptions=True)


def create_resilient_worker(coro_func, services, worker_name: str, shutdown_event: asyncio.Event):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_snapshot_worker)
        services: GenerationServices bundle passed to the worker
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        WorkerHandle whose ``task`` is replaced on every restart
    """
    handle = WorkerHandle(worker_name)

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

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
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            handle.task = asyncio.create_task(coro_func(services))
            handle.task.add_done_callback(on_worker_done)

        handle.restart_task = asyncio.create_task(restart_worker())

    handle.task = asyncio.create_task(coro_func(services))
    handle.task.add_done_callback(on_worker_done)
    return handle


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup: configure logging, build the generation services, recover jobs
    orphaned by a previous process, load image fingerprints and start the
    snapshot and healing workers.
    Shutdown: stop the workers, then interrupt jobs still running here
    (the next startup recovers them).
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    services = build_services(settings, uow_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = services

    try:
        result = await recover_orphaned_jobs(uow_factory, services.ledger)
        if result.jobs_recovered:
            logger.info(
                "startup.recovery_completed",
                jobs=result.jobs_recovered,
                tasks_failed=result.tasks_failed,
                units_released=result.units_released,
                failed=len(result.errors),
            )
    except Exception as e:
        # Serving new jobs does not depend on finishing old ones
        logger.error(
            "startup.recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
            message="Job recovery failed during startup - workers will still start",
        )

    await services.hash_store.warm()

    shutdown_event = asyncio.Event()
    snapshot_worker = create_resilient_worker(
        run_snapshot_worker, services, "snapshot", shutdown_event
    )
    healing_worker = create_resilient_worker(
        run_healing_worker, services, "healing", shutdown_event
    )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    await healing_worker.stop()

    await services.orchestrator.shutdown()

    # Snapshot worker last so interrupted jobs get a final flush
    await snapshot_worker.stop()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="MealForge Generation API",
        description="Recipe and image generation orchestrator",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)  # Jobs router has prefix="/api" in definition

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy", "degraded": [...]} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            services = getattr(app.state, "services", None)
            degraded = services.breakers.degraded() if services is not None else []
            return {"status": "healthy", "degraded": degraded}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
