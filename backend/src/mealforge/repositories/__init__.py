"""Repository layer for MealForge.

Provides data access abstractions for all domain entities.
Each repository is self-contained and works on the session it is given.
"""

from mealforge.repositories.fingerprint import ImageFingerprintRepository
from mealforge.repositories.item_task import ItemTaskRepository
from mealforge.repositories.job import GenerationJobRepository
from mealforge.repositories.quota import QuotaRecordRepository, QuotaReservationRepository
from mealforge.repositories.recipe import GeneratedRecipeRepository

__all__ = [
    "GenerationJobRepository",
    "ItemTaskRepository",
    "QuotaRecordRepository",
    "QuotaReservationRepository",
    "ImageFingerprintRepository",
    "GeneratedRecipeRepository",
]
