"""Persistence store writing finished tasks into ``generated_recipes``."""

from uuid import UUID

from mealforge.models.recipe import GeneratedRecipe
from mealforge.models.stages import TaskResult


class SqlRecipeStore:
    """Idempotent per task id: saving the same task twice updates one row."""

    def __init__(self, uow_factory):
        self._uow_factory = uow_factory

    async def save(self, result: TaskResult) -> str:
        recipe = GeneratedRecipe(
            task_id=UUID(result.task_id),
            job_id=UUID(result.job_id),
            account_id=result.account_id,
            name=result.draft.name,
            description=result.draft.description,
            draft=result.draft.model_dump(mode="json"),
            nutrition=result.draft.estimated_nutrition.model_dump(mode="json"),
            image_url=result.image_url,
            is_placeholder=result.is_placeholder,
        )
        async with await self._uow_factory() as uow:
            await uow.recipes.upsert(recipe)
        return result.task_id
