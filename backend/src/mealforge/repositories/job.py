"""GenerationJob repository for MealForge.

Provides data access methods for GenerationJob entities.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mealforge.models.job import GenerationJob, JobStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def save(self, job: GenerationJob) -> GenerationJob:
        """Write the state of a (possibly detached) job back to the database."""
        merged = await self.session.merge(job)
        await self.session.flush()
        return merged

    async def list_unfinished(self, limit: int = 1000) -> list[GenerationJob]:
        """Retrieve jobs still pending or running, oldest first.

        Used by startup recovery: a freshly started process owns no jobs, so
        every unfinished row was orphaned by a previous process.
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.status.in_([JobStatus.PENDING, JobStatus.RUNNING]))  # type: ignore[attr-defined]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def save_snapshot(self, job_id: UUID, snapshot: dict) -> None:
        """Store the latest progress snapshot without touching other columns."""
        await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .values(progress_snapshot=snapshot)
        )
        await self.session.flush()

    async def mark_cancel_requested(self, job_id: UUID) -> None:
        await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .values(cancel_requested=True)
        )
        await self.session.flush()
