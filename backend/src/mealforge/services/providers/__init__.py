"""External collaborators called by the stage pipeline."""

from mealforge.services.providers.base import (
    ConceptProvider,
    ImageProvider,
    NutritionValidator,
    PersistenceStore,
    StorageProvider,
    TierConfigSource,
)
from mealforge.services.providers.http_content import HttpConceptProvider, HttpNutritionValidator
from mealforge.services.providers.pinata_storage import PinataStorageProvider
from mealforge.services.providers.replicate_image import ReplicateImageProvider
from mealforge.services.providers.sql_recipe_store import SqlRecipeStore

__all__ = [
    "ConceptProvider",
    "NutritionValidator",
    "ImageProvider",
    "StorageProvider",
    "PersistenceStore",
    "TierConfigSource",
    "HttpConceptProvider",
    "HttpNutritionValidator",
    "ReplicateImageProvider",
    "PinataStorageProvider",
    "SqlRecipeStore",
]
