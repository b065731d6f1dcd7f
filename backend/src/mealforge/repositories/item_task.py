"""ItemTask repository for MealForge.

Provides data access methods for ItemTask entities, including the selection
query used by the healing worker.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mealforge.models.item_task import ItemTask
from mealforge.models.stages import TaskOutcome


class ItemTaskRepository:
    """Repository for ItemTask entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add_all(self, tasks: list[ItemTask]) -> list[ItemTask]:
        """Persist new tasks to database."""
        self.session.add_all(tasks)
        await self.session.flush()
        return tasks

    async def get_by_id(self, task_id: UUID) -> ItemTask | None:
        result = await self.session.execute(select(ItemTask).where(ItemTask.id == task_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_job(self, job_id: UUID) -> list[ItemTask]:
        """Retrieve all tasks of a job ordered by ordinal.

        Args:
            job_id: Job's unique identifier

        Returns:
            List of tasks (ordinal ascending)
        """
        result = await self.session.execute(
            select(ItemTask)
            .where(ItemTask.job_id == job_id)  # type: ignore[arg-type]
            .order_by(ItemTask.ordinal.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def save(self, task: ItemTask) -> ItemTask:
        """Write the state of a (possibly detached) task back to the database."""
        merged = await self.session.merge(task)
        await self.session.flush()
        return merged

    async def get_healable(
        self, max_attempts: int, updated_before: datetime, limit: int = 10
    ) -> list[ItemTask]:
        """Retrieve placeholder tasks eligible for another image attempt.

        Uses FOR UPDATE SKIP LOCKED so concurrent healing workers receive
        non-overlapping sets of tasks (ignored by SQLite).

        Query explanation:
        - WHERE final_outcome = 'success_with_placeholder': Only placeholder images
        - AND heal_attempts < max_attempts: Stop retrying hopeless tasks
        - AND updated_at < updated_before: Leave freshly finished tasks alone
        - ORDER BY updated_at ASC: Oldest first

        Args:
            max_attempts: Maximum healing attempts per task
            updated_before: Only tasks last touched before this time
            limit: Maximum number of tasks to return

        Returns:
            List of tasks locked for this worker
        """
        result = await self.session.execute(
            select(ItemTask)
            .where(ItemTask.final_outcome == TaskOutcome.SUCCESS_WITH_PLACEHOLDER)  # type: ignore[arg-type]
            .where(ItemTask.heal_attempts < max_attempts)  # type: ignore[arg-type]
            .where(ItemTask.updated_at < updated_before)  # type: ignore[arg-type]
            .order_by(ItemTask.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())
