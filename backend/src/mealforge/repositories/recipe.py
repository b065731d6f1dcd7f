"""GeneratedRecipe repository for MealForge.

Provides idempotent persistence of finished task results.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mealforge.core.database import dialect_insert
from mealforge.core.timezone import utcnow
from mealforge.models.recipe import GeneratedRecipe


class GeneratedRecipeRepository:
    """Repository for GeneratedRecipe entities.

    Provides UPSERT behavior (INSERT ... ON CONFLICT DO UPDATE) keyed by task id,
    so retried or repeated saves of the same task never create a second row.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def upsert(self, recipe: GeneratedRecipe) -> None:
        """Insert the recipe or overwrite the row with the same task id.

        Query explanation:
        - INSERT: Try to insert new row
        - ON CONFLICT (task_id): If the task was saved before
        - DO UPDATE: Overwrite content columns and bump updated_at (created_at kept)

        Args:
            recipe: Recipe to store
        """
        now = utcnow()
        values = {
            "task_id": recipe.task_id,
            "job_id": recipe.job_id,
            "account_id": recipe.account_id,
            "name": recipe.name,
            "description": recipe.description,
            "draft": recipe.draft,
            "nutrition": recipe.nutrition,
            "image_url": recipe.image_url,
            "is_placeholder": recipe.is_placeholder,
            "created_at": recipe.created_at,
            "updated_at": now,
        }
        stmt = dialect_insert(self.session, GeneratedRecipe).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["task_id"],
            set_={
                key: value
                for key, value in values.items()
                if key not in ("task_id", "created_at")
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_by_task_id(self, task_id: UUID) -> GeneratedRecipe | None:
        result = await self.session.execute(
            select(GeneratedRecipe).where(GeneratedRecipe.task_id == task_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_job(self, job_id: UUID) -> list[GeneratedRecipe]:
        result = await self.session.execute(
            select(GeneratedRecipe)
            .where(GeneratedRecipe.job_id == job_id)  # type: ignore[arg-type]
            .order_by(GeneratedRecipe.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
