"""GenerationRequest - immutable caller input for a generation job."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerationRequest(BaseModel):
    """Request to generate ``item_count`` recipes (with images) for an account.

    ``constraints`` is opaque to the orchestrator and forwarded to the
    providers as-is (meal types, fitness goal, dietary restrictions, ...).
    The upper bound on ``item_count`` is a deployment setting and is checked
    by the orchestrator at submission.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(min_length=1, max_length=255)
    item_count: int = Field(ge=1)
    constraints: dict[str, Any] = Field(default_factory=dict)
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("account_id")
    @classmethod
    def strip_account_id(cls, v: str) -> str:
        """Reject whitespace-only account ids."""
        v = v.strip()
        if not v:
            raise ValueError("account_id cannot be blank")
        return v
