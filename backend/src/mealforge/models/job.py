"""GenerationJob entity - one user request and its aggregate outcome."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from mealforge.core.timezone import utcnow


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset(
    {
        JobStatus.PARTIALLY_SUCCEEDED,
        JobStatus.SUCCEEDED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }
)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob is owned by the orchestrator until it reaches a terminal status."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: str = Field(max_length=255, index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    item_count: int = Field(ge=1)
    constraints: dict = Field(default_factory=dict, sa_column=Column(JSON))
    requested_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)
    reservation_id: Optional[UUID] = Field(default=None)
    cancel_requested: bool = Field(default=False)
    progress_snapshot: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def mark_running(self) -> None:
        """Transition from pending to running.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark running from {self.status.value}. Job must be in pending state."
            )
        self.status = JobStatus.RUNNING

    def mark_finished(self, status: JobStatus, completed_at: datetime | None = None) -> None:
        """Move the job into a terminal status.

        Args:
            status: Terminal status computed from the task outcomes
            completed_at: Completion time (defaults to now)

        Raises:
            InvalidStateTransition: If the job is already terminal, or the target
                status is not terminal, or a pending job is marked as succeeded
        """
        if status not in TERMINAL_JOB_STATUSES:
            raise InvalidStateTransition(f"{status.value} is not a terminal status.")
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark {status.value} from terminal state {self.status.value}."
            )
        if self.status == JobStatus.PENDING and status not in (
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        ):
            raise InvalidStateTransition(
                f"Cannot mark {status.value} from pending. Job must be running first."
            )
        self.status = status
        self.completed_at = completed_at or utcnow()

    def mark_failed(self, error_dict: dict[str, Any]) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error_dict: Error details to store in error_data field

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        self.mark_finished(JobStatus.FAILED)
        self.error_data = error_dict
