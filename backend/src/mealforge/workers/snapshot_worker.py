"""Snapshot worker: copies live tracker snapshots into the job store.

Every SNAPSHOT_INTERVAL_SECONDS the worker writes the snapshots whose
revision changed since the last write into
``generation_jobs.progress_snapshot`` and then drops long-finished jobs from
the tracker.
"""

import asyncio
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


async def persist_snapshots(services, written: dict[UUID, int]) -> int:
    """Write changed snapshots.

    Args:
        services: GenerationServices bundle
        written: Last persisted revision per job (updated in place)

    Returns:
        Number of snapshots written
    """
    count = 0
    for snapshot in services.tracker.snapshots():
        if written.get(snapshot.job_id) == snapshot.revision:
            continue
        await services.job_store.save_snapshot(snapshot.job_id, snapshot.as_dict())
        written[snapshot.job_id] = snapshot.revision
        count += 1

    for job_id in services.tracker.prune(services.settings.progress_retention_seconds):
        written.pop(job_id, None)
    return count


async def run_snapshot_worker(services) -> None:
    """Main worker loop for progress snapshots."""
    interval = services.settings.snapshot_interval_seconds
    written: dict[UUID, int] = {}
    logger.info("worker.started", worker="snapshot", interval=interval)

    try:
        while True:
            try:
                count = await persist_snapshots(services, written)
                if count:
                    logger.debug("snapshot.persisted", snapshots=count)
                await asyncio.sleep(interval)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="snapshot",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        # Final flush so terminal snapshots survive a graceful shutdown
        try:
            await persist_snapshots(services, written)
        except Exception:
            logger.warning("snapshot.final_flush_failed", exc_info=True)
        logger.info("worker.stopped", worker="snapshot")
        raise
