"""Healing worker: retries the image path of tasks that ended with a placeholder.

Polls for tasks whose final outcome is ``success_with_placeholder``, reruns
image -> dedupe -> storage -> persist through the stage pipeline using the
persisted recipe draft, and upgrades the task to ``success`` when a real
image makes it to storage. Healing consumes no quota. A concurrent
regeneration of the same task is resolved last-writer-wins by the
idempotent persist upsert.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog

from mealforge.core.timezone import utcnow
from mealforge.models.item_task import ItemTask
from mealforge.models.stages import RecipeDraft, Stage
from mealforge.services.generation.pipeline import TaskContext

logger = structlog.get_logger(__name__)


@dataclass
class HealingSummary:
    selected: int = 0
    healed: int = 0
    still_placeholder: int = 0
    skipped: int = 0
    errors: int = 0


async def heal_task(task: ItemTask, services) -> Optional[bool]:
    """Run one healing attempt.

    Returns:
        True if healed, False if the task still has a placeholder,
        None if the task cannot be healed (no draft or job)
    """
    concept = task.last_payload(Stage.CONCEPT)
    if concept is None:
        logger.warning("healing.no_draft", task_id=str(task.id))
        return None
    draft = RecipeDraft.model_validate(concept["draft"])

    job = await services.job_store.get_job(task.job_id)
    task.heal_attempts += 1
    await services.job_store.save_task(task)

    ctx = TaskContext(
        job_id=job.id,
        account_id=job.account_id,
        constraints=dict(job.constraints),
        scope_key=services.hash_store.scope_key(job.account_id),
    )
    healed = await services.pipeline.heal(task, draft, ctx)
    await services.job_store.save_task(task)

    logger.info(
        "healing.attempted",
        task_id=str(task.id),
        job_id=str(job.id),
        healed=healed,
        heal_attempts=task.heal_attempts,
    )
    return healed


async def heal_batch(services, min_age_seconds: float | None = None) -> HealingSummary:
    """Select a batch of placeholder tasks and try to heal each of them.

    Tasks belonging to jobs still running in this process are left alone.

    Args:
        services: GenerationServices bundle
        min_age_seconds: Only tasks last updated at least this long ago
            (defaults to HEALING_INTERVAL_SECONDS)
    """
    settings = services.settings
    age = settings.healing_interval_seconds if min_age_seconds is None else min_age_seconds
    summary = HealingSummary()

    async with await services.uow_factory() as uow:
        tasks = await uow.tasks.get_healable(
            max_attempts=settings.healing_max_attempts,
            updated_before=utcnow() - timedelta(seconds=age),
            limit=settings.healing_batch_size,
        )
    summary.selected = len(tasks)
    if not tasks:
        return summary

    live_jobs = set(services.orchestrator.running_jobs())
    candidates = []
    for task in tasks:
        if task.job_id in live_jobs:
            summary.skipped += 1
        else:
            candidates.append(task)

    results = await asyncio.gather(
        *(heal_task(task, services) for task in candidates), return_exceptions=True
    )
    for task, result in zip(candidates, results):
        if isinstance(result, Exception):
            summary.errors += 1
            logger.error(
                "healing.failed",
                task_id=str(task.id),
                error=str(result),
                error_type=type(result).__name__,
            )
        elif result is None:
            summary.skipped += 1
        elif result:
            summary.healed += 1
        else:
            summary.still_placeholder += 1
    return summary


async def run_healing_worker(services) -> None:
    """Main worker loop for placeholder healing."""
    settings = services.settings
    logger.info(
        "worker.started",
        worker="healing",
        interval=settings.healing_interval_seconds,
        batch_size=settings.healing_batch_size,
    )

    try:
        while True:
            try:
                summary = await heal_batch(services)
                if summary.selected:
                    logger.info(
                        "healing.batch_completed",
                        selected=summary.selected,
                        healed=summary.healed,
                        still_placeholder=summary.still_placeholder,
                        skipped=summary.skipped,
                        errors=summary.errors,
                    )
                await asyncio.sleep(settings.healing_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="healing",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="healing")
        raise
