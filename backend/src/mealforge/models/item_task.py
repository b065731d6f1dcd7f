"""ItemTask entity - one recipe + image unit of work inside a job."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from mealforge.core.timezone import utcnow
from mealforge.models.stages import Stage, StageOutcome, TaskOutcome


class ItemTask(SQLModel, table=True):
    """ItemTask tracks stage progress, attempt counts and the outcome history of one item.

    A task is mutated only by the pipeline run that owns it. JSON columns are
    reassigned (never mutated in place) so SQLAlchemy sees every change.
    """

    __tablename__ = "item_tasks"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)
    ordinal: int = Field(ge=0)
    current_stage: Stage = Field(default=Stage.QUEUED)
    attempts: dict = Field(default_factory=dict, sa_column=Column(JSON))
    stage_history: list = Field(default_factory=list, sa_column=Column(JSON))
    final_outcome: Optional[TaskOutcome] = Field(default=None, index=True)
    image_url: Optional[str] = Field(default=None)
    is_placeholder: bool = Field(default=False)
    error: Optional[str] = Field(default=None, max_length=1000)
    heal_attempts: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.final_outcome is not None

    def enter_stage(self, stage: Stage) -> None:
        self.current_stage = stage
        self.updated_at = utcnow()

    def record_outcome(self, outcome: StageOutcome, invocations: int = 0) -> None:
        """Append an outcome to the history and add adapter invocations to the stage count."""
        self.stage_history = [*self.stage_history, outcome.as_record()]
        if invocations:
            stage_key = outcome.stage.value
            self.attempts = {**self.attempts, stage_key: self.attempts.get(stage_key, 0) + invocations}
        self.updated_at = utcnow()

    def finish(
        self,
        outcome: TaskOutcome,
        *,
        image_url: str | None = None,
        error: str | None = None,
    ) -> None:
        """Set the final outcome.

        Raises:
            ValueError: If the task already has a final outcome
        """
        if self.final_outcome is not None:
            raise ValueError(f"Task {self.id} already finished as {self.final_outcome.value}")
        self.final_outcome = outcome
        self.current_stage = Stage.DONE
        self.is_placeholder = outcome == TaskOutcome.SUCCESS_WITH_PLACEHOLDER
        if image_url is not None:
            self.image_url = image_url
        if error is not None:
            self.error = error[:1000]
        self.updated_at = utcnow()

    def upgrade_placeholder(self, image_url: str) -> None:
        """Replace the placeholder of a finished task with a real image.

        Raises:
            ValueError: If the task did not finish with a placeholder
        """
        if self.final_outcome != TaskOutcome.SUCCESS_WITH_PLACEHOLDER:
            raise ValueError(f"Task {self.id} has no placeholder to replace")
        self.final_outcome = TaskOutcome.SUCCESS
        self.current_stage = Stage.DONE
        self.is_placeholder = False
        self.image_url = image_url
        self.error = None
        self.updated_at = utcnow()

    def last_payload(self, stage: Stage) -> Optional[dict]:
        """Return the payload of the most recent successful outcome for a stage."""
        for record in reversed(self.stage_history):
            if record["stage"] == stage.value and record["status"] == "ok":
                return record["payload"]
        return None
