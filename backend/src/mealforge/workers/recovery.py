"""Startup recovery of jobs orphaned by a previous process.

A freshly started process owns no jobs, so every job still ``pending`` or
``running`` in the database was interrupted. Recovery finishes those jobs,
fails their unfinished tasks and returns the quota they still held.
"""

from dataclasses import dataclass, field

import structlog

from mealforge.models.job import JobStatus
from mealforge.models.stages import TaskOutcome

logger = structlog.get_logger(__name__)


@dataclass
class RecoveryResult:
    jobs_recovered: int = 0
    tasks_failed: int = 0
    units_released: int = 0
    errors: list[str] = field(default_factory=list)


async def recover_orphaned_jobs(
    uow_factory, ledger, limit: int = 1000, dry_run: bool = False
) -> RecoveryResult:
    """Finish interrupted jobs and release their outstanding reservations.

    Jobs with a pending cancel request end ``cancelled``; all others end
    ``failed`` with ``error_data.error_type == "Interrupted"``. Tasks that
    finished before the interruption keep their outcome (and committed quota).

    Args:
        uow_factory: Factory for UnitOfWork instances
        ledger: QuotaLedger used to release outstanding units
        limit: Maximum number of jobs to recover in one call
        dry_run: Only count what would be recovered

    Returns:
        RecoveryResult with counts and per-job errors
    """
    result = RecoveryResult()

    async with await uow_factory() as uow:
        jobs = await uow.jobs.list_unfinished(limit=limit)

    for job in jobs:
        try:
            async with await uow_factory() as uow:
                tasks = await uow.tasks.get_by_job(job.id)
                unfinished = [task for task in tasks if task.final_outcome is None]
                if dry_run:
                    result.jobs_recovered += 1
                    result.tasks_failed += len(unfinished)
                    continue

                for task in unfinished:
                    task.finish(TaskOutcome.FAILED, error="interrupted: process restarted")
                    await uow.tasks.save(task)

                if job.cancel_requested:
                    job.mark_finished(JobStatus.CANCELLED)
                else:
                    job.mark_failed(
                        {
                            "error_type": "Interrupted",
                            "message": "Job was interrupted by a process restart",
                            "unfinished_tasks": len(unfinished),
                        }
                    )
                await uow.jobs.save(job)
                reservations = await uow.reservations.list_outstanding_for_job(job.id)

            for reservation in reservations:
                result.units_released += await ledger.release_remaining(reservation.id)

            result.jobs_recovered += 1
            result.tasks_failed += len(unfinished)
            logger.info(
                "recovery.job_recovered",
                job_id=str(job.id),
                status=job.status.value,
                unfinished_tasks=len(unfinished),
            )
        except Exception as e:
            logger.error("recovery.job_failed", job_id=str(job.id), error=str(e), exc_info=True)
            result.errors.append(f"{job.id}: {e}")

    if result.jobs_recovered:
        logger.info(
            "recovery.completed",
            jobs=result.jobs_recovered,
            tasks_failed=result.tasks_failed,
            units_released=result.units_released,
            dry_run=dry_run,
        )
    return result
