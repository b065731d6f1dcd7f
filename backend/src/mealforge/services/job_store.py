"""Durable job and task records used by the orchestrator and the workers."""

from datetime import datetime, timezone
from uuid import UUID

import structlog

from mealforge.models.item_task import ItemTask
from mealforge.models.job import GenerationJob
from mealforge.models.request import GenerationRequest
from mealforge.services.exceptions import JobNotFoundError

logger = structlog.get_logger(__name__)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class JobStore:
    """Short transactions over the job tables, one UnitOfWork per call.

    Entities returned here are detached; pass them back to ``save_job`` /
    ``save_task`` to persist changes.
    """

    def __init__(self, uow_factory):
        self._uow_factory = uow_factory

    async def create_job(
        self, request: GenerationRequest, reservation_id: UUID | None = None
    ) -> tuple[GenerationJob, list[ItemTask]]:
        """Create a pending job with ``item_count`` queued tasks in one transaction."""
        job = GenerationJob(
            account_id=request.account_id,
            item_count=request.item_count,
            constraints=dict(request.constraints),
            requested_at=_naive_utc(request.requested_at),
            reservation_id=reservation_id,
        )
        tasks = [ItemTask(job_id=job.id, ordinal=i) for i in range(request.item_count)]

        async with await self._uow_factory() as uow:
            await uow.jobs.add(job)
            await uow.tasks.add_all(tasks)
            if reservation_id is not None:
                await uow.reservations.attach_job(reservation_id, job.id)

        logger.info(
            "job.created",
            job_id=str(job.id),
            account_id=job.account_id,
            item_count=job.item_count,
        )
        return job, tasks

    async def get_job(self, job_id: UUID) -> GenerationJob:
        """Load a job.

        Raises:
            JobNotFoundError: If no such job exists
        """
        async with await self._uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_tasks(self, job_id: UUID) -> list[ItemTask]:
        async with await self._uow_factory() as uow:
            return await uow.tasks.get_by_job(job_id)

    async def save_job(self, job: GenerationJob) -> None:
        async with await self._uow_factory() as uow:
            await uow.jobs.save(job)

    async def save_task(self, task: ItemTask) -> None:
        async with await self._uow_factory() as uow:
            await uow.tasks.save(task)

    async def save_snapshot(self, job_id: UUID, snapshot: dict) -> None:
        async with await self._uow_factory() as uow:
            await uow.jobs.save_snapshot(job_id, snapshot)

    async def mark_cancel_requested(self, job_id: UUID) -> None:
        async with await self._uow_factory() as uow:
            await uow.jobs.mark_cancel_requested(job_id)
