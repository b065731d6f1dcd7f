"""GeneratedRecipe entity - persisted result of a finished item task."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from mealforge.core.timezone import utcnow


class GeneratedRecipe(SQLModel, table=True):
    """GeneratedRecipe is keyed by task id so repeated saves update one row."""

    __tablename__ = "generated_recipes"  # type: ignore[assignment]

    task_id: UUID = Field(primary_key=True)
    job_id: UUID = Field(index=True)
    account_id: str = Field(max_length=255, index=True)
    name: str = Field(max_length=255)
    description: str = Field(default="")
    draft: dict = Field(default_factory=dict, sa_column=Column(JSON))
    nutrition: dict = Field(default_factory=dict, sa_column=Column(JSON))
    image_url: str = Field()
    is_placeholder: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
