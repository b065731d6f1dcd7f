"""SQLModel database entities and orchestration value types.

All table models are imported here to ensure they're registered with SQLModel
metadata for Alembic autogenerate support.
"""

from mealforge.models.fingerprint import ImageFingerprint
from mealforge.models.item_task import ItemTask
from mealforge.models.job import GenerationJob, InvalidStateTransition, JobStatus
from mealforge.models.quota import QuotaRecord, QuotaReservation
from mealforge.models.recipe import GeneratedRecipe
from mealforge.models.request import GenerationRequest
from mealforge.models.stages import OutcomeStatus, Stage, StageOutcome, TaskOutcome

__all__ = [
    "GenerationJob",
    "JobStatus",
    "InvalidStateTransition",
    "ItemTask",
    "Stage",
    "StageOutcome",
    "OutcomeStatus",
    "TaskOutcome",
    "QuotaRecord",
    "QuotaReservation",
    "ImageFingerprint",
    "GeneratedRecipe",
    "GenerationRequest",
]
