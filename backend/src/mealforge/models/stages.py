"""Stage names, stage outcomes and the typed payloads passed between stages.

Payloads form a tagged union discriminated on ``kind``. Providers return
loosely shaped data; the adapter layer validates it into one of these models
at the stage boundary, so the pipeline never handles untyped dicts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Stage(str, Enum):
    """Ordered steps of an item task."""

    QUEUED = "queued"
    CONCEPT = "concept"
    VALIDATION = "validation"
    IMAGE = "image"
    DEDUPE = "dedupe"
    STORAGE = "storage"
    PERSIST = "persist"
    DONE = "done"


PIPELINE_ORDER: list[Stage] = [
    Stage.CONCEPT,
    Stage.VALIDATION,
    Stage.IMAGE,
    Stage.DEDUPE,
    Stage.STORAGE,
    Stage.PERSIST,
]


class OutcomeStatus(str, Enum):
    """Result class of one stage attempt."""

    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    EXHAUSTED = "exhausted"


class TaskOutcome(str, Enum):
    """Final outcome of an item task."""

    SUCCESS = "success"
    SUCCESS_WITH_PLACEHOLDER = "success_with_placeholder"
    FAILED = "failed"
    CANCELLED = "cancelled"


SUCCESSFUL_OUTCOMES = frozenset({TaskOutcome.SUCCESS, TaskOutcome.SUCCESS_WITH_PLACEHOLDER})


# Recipe concept shapes


class Ingredient(BaseModel):
    name: str = Field(min_length=1)
    amount: float = Field(ge=0)
    unit: str = ""


class NutritionFacts(BaseModel):
    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fat: float = Field(ge=0)


class RecipeDraft(BaseModel):
    """Recipe concept produced by the content service."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    meal_types: list[str] = Field(default_factory=list)
    dietary_tags: list[str] = Field(default_factory=list)
    main_ingredient_tags: list[str] = Field(default_factory=list)
    ingredients: list[Ingredient] = Field(min_length=1)
    instructions: str = Field(min_length=1)
    prep_time_minutes: int = Field(default=0, ge=0)
    cook_time_minutes: int = Field(default=0, ge=0)
    servings: int = Field(default=1, ge=1)
    estimated_nutrition: NutritionFacts


class ValidationReport(BaseModel):
    """Verdict of the nutrition validation service."""

    model_config = ConfigDict(extra="ignore")

    passed: bool
    score: Optional[float] = None
    issues: list[str] = Field(default_factory=list)


# Stage payloads


class ConceptPayload(BaseModel):
    kind: Literal["concept"] = "concept"
    draft: RecipeDraft


class ValidationPayload(BaseModel):
    kind: Literal["validation"] = "validation"
    report: ValidationReport


class ImagePayload(BaseModel):
    kind: Literal["image"] = "image"
    prompt: str
    image_bytes: bytes = Field(exclude=True, repr=False)
    size_bytes: int = 0
    source_url: Optional[str] = None


class DedupePayload(BaseModel):
    kind: Literal["dedupe"] = "dedupe"
    accepted: bool
    fingerprint: str
    matched_task_id: Optional[str] = None
    distance: Optional[int] = None


class StoragePayload(BaseModel):
    kind: Literal["storage"] = "storage"
    url: str = Field(min_length=1)
    is_placeholder: bool = False


class PersistPayload(BaseModel):
    kind: Literal["persist"] = "persist"
    record_id: str = Field(min_length=1)


StagePayload = Annotated[
    Union[
        ConceptPayload,
        ValidationPayload,
        ImagePayload,
        DedupePayload,
        StoragePayload,
        PersistPayload,
    ],
    Field(discriminator="kind"),
]

stage_payload_adapter: TypeAdapter[StagePayload] = TypeAdapter(StagePayload)


@dataclass(frozen=True)
class StageOutcome:
    """Result of one stage attempt (or the terminal result of a retried stage)."""

    stage: Stage
    status: OutcomeStatus
    payload: Any = None
    error: Optional[str] = None
    latency_ms: float = 0.0
    attempt: int = 1
    short_circuited: bool = False

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK

    def as_record(self) -> dict[str, Any]:
        """JSON-serialisable form for the task's stage history."""
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "payload": self.payload.model_dump(mode="json") if self.payload is not None else None,
            "error": self.error,
            "latency_ms": round(self.latency_ms, 2),
            "attempt": self.attempt,
            "short_circuited": self.short_circuited,
        }


@dataclass
class TaskResult:
    """What the persist stage hands to the persistence store."""

    task_id: str
    job_id: str
    account_id: str
    draft: RecipeDraft
    image_url: str
    is_placeholder: bool
    extra: dict[str, Any] = field(default_factory=dict)
