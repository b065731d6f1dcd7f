"""Quota entities - per-period usage records and the reservations held against them."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from mealforge.core.timezone import utcnow

UNLIMITED = -1


class QuotaRecord(SQLModel, table=True):
    """Usage of one resource kind by one account in one billing period.

    Invariant: used + reserved <= quota_limit (unless quota_limit is UNLIMITED).
    Only the quota ledger mutates these rows, always with conditional updates.
    """

    __tablename__ = "quota_records"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("account_id", "period_key", "resource_kind", name="uq_quota_record_key"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: str = Field(max_length=255, index=True)
    period_key: str = Field(max_length=16)
    resource_kind: str = Field(max_length=64)
    quota_limit: int = Field(default=0)
    used: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def available(self) -> Optional[int]:
        """Units still reservable, or None when unlimited."""
        if self.quota_limit == UNLIMITED:
            return None
        return max(self.quota_limit - self.used - self.reserved, 0)


class QuotaReservation(SQLModel, table=True):
    """Durable handle for units held against a quota record.

    Invariant: committed + released <= amount.
    """

    __tablename__ = "quota_reservations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: str = Field(max_length=255, index=True)
    period_key: str = Field(max_length=16)
    resource_kind: str = Field(max_length=64)
    amount: int = Field(ge=1)
    committed: int = Field(default=0, ge=0)
    released: int = Field(default=0, ge=0)
    job_id: Optional[UUID] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def outstanding(self) -> int:
        return self.amount - self.committed - self.released
