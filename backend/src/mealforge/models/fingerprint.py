"""ImageFingerprint entity - perceptual hash of an accepted image."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from mealforge.core.timezone import utcnow


class ImageFingerprint(SQLModel, table=True):
    """Record of an accepted image's 64-bit dHash (16 hex chars)."""

    __tablename__ = "image_fingerprints"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    scope_key: str = Field(max_length=255, index=True)
    hash: str = Field(min_length=16, max_length=16)
    source_task_id: str = Field(max_length=64)
    created_at: datetime = Field(default_factory=utcnow)
