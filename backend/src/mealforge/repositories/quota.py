"""Quota repositories for MealForge.

All counter changes are single conditional UPDATE statements so two
concurrent writers can never push a record past its limit or commit more
units than a reservation holds.
"""

from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mealforge.core.database import dialect_insert
from mealforge.core.timezone import utcnow
from mealforge.models.quota import UNLIMITED, QuotaRecord, QuotaReservation


class QuotaRecordRepository:
    """Repository for QuotaRecord entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    @staticmethod
    def _key(account_id: str, period_key: str, resource_kind: str):
        return (
            QuotaRecord.account_id == account_id,  # type: ignore[arg-type]
            QuotaRecord.period_key == period_key,  # type: ignore[arg-type]
            QuotaRecord.resource_kind == resource_kind,  # type: ignore[arg-type]
        )

    async def ensure_record(
        self, account_id: str, period_key: str, resource_kind: str, quota_limit: int
    ) -> None:
        """Create the record if missing, otherwise refresh its limit from the tier.

        Query explanation:
        - INSERT: Try to insert a zeroed record
        - ON CONFLICT (account_id, period_key, resource_kind): Record exists
        - DO UPDATE SET quota_limit: Tier changes apply to the current period
        """
        stmt = dialect_insert(self.session, QuotaRecord).values(
            id=uuid4(),
            account_id=account_id,
            period_key=period_key,
            resource_kind=resource_kind,
            quota_limit=quota_limit,
            used=0,
            reserved=0,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "period_key", "resource_kind"],
            set_={"quota_limit": quota_limit},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def try_reserve(
        self, account_id: str, period_key: str, resource_kind: str, amount: int
    ) -> bool:
        """Atomically add ``amount`` to reserved if the limit allows it.

        Query explanation:
        - UPDATE ... SET reserved = reserved + amount
        - WHERE key matches
        - AND (quota_limit = -1 OR used + reserved + amount <= quota_limit)

        Returns:
            True if the row was updated, False if the limit would be exceeded
        """
        result = await self.session.execute(
            update(QuotaRecord)
            .where(*self._key(account_id, period_key, resource_kind))
            .where(
                or_(
                    QuotaRecord.quota_limit == UNLIMITED,  # type: ignore[arg-type]
                    QuotaRecord.used + QuotaRecord.reserved + amount <= QuotaRecord.quota_limit,  # type: ignore[operator]
                )
            )
            .values(reserved=QuotaRecord.reserved + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def move_reserved_to_used(
        self, account_id: str, period_key: str, resource_kind: str, amount: int
    ) -> None:
        await self.session.execute(
            update(QuotaRecord)
            .where(*self._key(account_id, period_key, resource_kind))
            .where(QuotaRecord.reserved >= amount)  # type: ignore[arg-type]
            .values(
                reserved=QuotaRecord.reserved - amount,
                used=QuotaRecord.used + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def return_reserved(
        self, account_id: str, period_key: str, resource_kind: str, amount: int
    ) -> None:
        await self.session.execute(
            update(QuotaRecord)
            .where(*self._key(account_id, period_key, resource_kind))
            .where(QuotaRecord.reserved >= amount)  # type: ignore[arg-type]
            .values(reserved=QuotaRecord.reserved - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def get_record(
        self, account_id: str, period_key: str, resource_kind: str
    ) -> QuotaRecord | None:
        result = await self.session.execute(
            select(QuotaRecord)
            .where(*self._key(account_id, period_key, resource_kind))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class QuotaReservationRepository:
    """Repository for QuotaReservation entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, reservation: QuotaReservation) -> QuotaReservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_by_id(self, reservation_id: UUID) -> QuotaReservation | None:
        result = await self.session.execute(
            select(QuotaReservation)
            .where(QuotaReservation.id == reservation_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def apply(self, reservation_id: UUID, committed: int = 0, released: int = 0) -> bool:
        """Atomically move units out of a reservation's outstanding balance.

        Query explanation:
        - UPDATE ... SET committed = committed + c, released = released + r
        - WHERE id matches AND committed + released + c + r <= amount

        Returns:
            True if the reservation still had enough outstanding units
        """
        total = committed + released
        result = await self.session.execute(
            update(QuotaReservation)
            .where(QuotaReservation.id == reservation_id)  # type: ignore[arg-type]
            .where(
                QuotaReservation.committed + QuotaReservation.released + total  # type: ignore[operator]
                <= QuotaReservation.amount
            )
            .values(
                committed=QuotaReservation.committed + committed,
                released=QuotaReservation.released + released,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_outstanding_for_job(self, job_id: UUID) -> list[QuotaReservation]:
        result = await self.session.execute(
            select(QuotaReservation)
            .where(QuotaReservation.job_id == job_id)  # type: ignore[arg-type]
            .where(
                QuotaReservation.committed + QuotaReservation.released  # type: ignore[operator]
                < QuotaReservation.amount
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def attach_job(self, reservation_id: UUID, job_id: UUID) -> None:
        await self.session.execute(
            update(QuotaReservation)
            .where(QuotaReservation.id == reservation_id)  # type: ignore[arg-type]
            .values(job_id=job_id)
            .execution_options(synchronize_session=False)
        )
