"""Quota ledger: reserve, commit and release usage against tier limits.

Counters live in ``quota_records``; every reservation is a durable
``quota_reservations`` row so a restarted process can still release what a
crashed one held. Checks and increments are single conditional UPDATE
statements (see QuotaRecordRepository), which keeps
``used + reserved <= quota_limit`` under any number of concurrent callers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from mealforge.core.timezone import billing_period_key, utcnow
from mealforge.models.quota import UNLIMITED, QuotaReservation
from mealforge.services.exceptions import QuotaExceededError, ReservationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Handle for units held against one quota record."""

    id: UUID
    account_id: str
    period_key: str
    resource_kind: str
    amount: int

    @classmethod
    def from_row(cls, row: QuotaReservation) -> "Reservation":
        return cls(
            id=row.id,
            account_id=row.account_id,
            period_key=row.period_key,
            resource_kind=row.resource_kind,
            amount=row.amount,
        )


@dataclass(frozen=True)
class QuotaUsage:
    account_id: str
    period_key: str
    resource_kind: str
    limit: int
    used: int
    reserved: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(self.limit - self.used - self.reserved, 0)


class QuotaLedger:
    """Atomic quota accounting per (account, billing period, resource kind)."""

    def __init__(self, uow_factory, tier_source, clock: Callable[[], datetime] = utcnow):
        """Initialize ledger.

        Args:
            uow_factory: Factory for UnitOfWork instances
            tier_source: Object with ``async get_limits(account_id) -> dict``
            clock: Source of "now" for the billing period key
        """
        self._uow_factory = uow_factory
        self._tier_source = tier_source
        self._clock = clock

    def current_period(self) -> str:
        return billing_period_key(self._clock())

    async def try_reserve(
        self,
        account_id: str,
        resource_kind: str,
        amount: int,
        job_id: UUID | None = None,
    ) -> Reservation:
        """Reserve ``amount`` units or fail without changing anything.

        Raises:
            ValueError: If amount is not positive
            QuotaExceededError: If the reservation would exceed the tier limit
        """
        if amount < 1:
            raise ValueError("amount must be >= 1")

        limits = await self._tier_source.get_limits(account_id)
        limit = limits.get(resource_kind, 0)
        period = self.current_period()

        async with await self._uow_factory() as uow:
            await uow.quota_records.ensure_record(account_id, period, resource_kind, limit)
            reserved = await uow.quota_records.try_reserve(account_id, period, resource_kind, amount)
            if not reserved:
                record = await uow.quota_records.get_record(account_id, period, resource_kind)
                logger.info(
                    "quota.exceeded",
                    account_id=account_id,
                    resource_kind=resource_kind,
                    requested=amount,
                    limit=limit,
                    used=record.used if record else 0,
                    reserved=record.reserved if record else 0,
                )
                raise QuotaExceededError(
                    account_id=account_id,
                    resource_kind=resource_kind,
                    limit=limit,
                    used=record.used if record else 0,
                    reserved=record.reserved if record else 0,
                    requested=amount,
                )

            row = await uow.reservations.add(
                QuotaReservation(
                    account_id=account_id,
                    period_key=period,
                    resource_kind=resource_kind,
                    amount=amount,
                    job_id=job_id,
                )
            )
            reservation = Reservation.from_row(row)

        logger.info(
            "quota.reserved",
            account_id=account_id,
            resource_kind=resource_kind,
            amount=amount,
            period=period,
            reservation_id=str(reservation.id),
        )
        return reservation

    async def commit(self, reservation: Reservation, amount: int = 1) -> None:
        """Turn ``amount`` reserved units into used units.

        Raises:
            ReservationError: If fewer than ``amount`` units are outstanding
        """
        async with await self._uow_factory() as uow:
            if not await uow.reservations.apply(reservation.id, committed=amount):
                raise ReservationError(
                    f"Cannot commit {amount} unit(s) on reservation {reservation.id}"
                )
            await uow.quota_records.move_reserved_to_used(
                reservation.account_id, reservation.period_key, reservation.resource_kind, amount
            )
        logger.debug("quota.committed", reservation_id=str(reservation.id), amount=amount)

    async def release(self, reservation: Reservation, amount: int = 1) -> None:
        """Return ``amount`` reserved units to the account.

        Raises:
            ReservationError: If fewer than ``amount`` units are outstanding
        """
        async with await self._uow_factory() as uow:
            if not await uow.reservations.apply(reservation.id, released=amount):
                raise ReservationError(
                    f"Cannot release {amount} unit(s) on reservation {reservation.id}"
                )
            await uow.quota_records.return_reserved(
                reservation.account_id, reservation.period_key, reservation.resource_kind, amount
            )
        logger.debug("quota.released", reservation_id=str(reservation.id), amount=amount)

    async def release_remaining(self, reservation_id: UUID) -> int:
        """Release every unit of a reservation not yet committed or released.

        Returns:
            Number of units released (0 if nothing was outstanding)

        Raises:
            ReservationError: If the reservation does not exist
        """
        async with await self._uow_factory() as uow:
            row = await uow.reservations.get_by_id(reservation_id)
            if row is None:
                raise ReservationError(f"Reservation {reservation_id} not found")
            outstanding = row.outstanding
            if outstanding <= 0:
                return 0
            if not await uow.reservations.apply(reservation_id, released=outstanding):
                raise ReservationError(
                    f"Reservation {reservation_id} changed while releasing remaining units"
                )
            await uow.quota_records.return_reserved(
                row.account_id, row.period_key, row.resource_kind, outstanding
            )

        logger.info(
            "quota.released_remaining", reservation_id=str(reservation_id), amount=outstanding
        )
        return outstanding

    async def usage(self, account_id: str, resource_kind: str) -> QuotaUsage:
        """Report the current period's counters (zeros if nothing was reserved yet)."""
        period = self.current_period()
        async with await self._uow_factory() as uow:
            record = await uow.quota_records.get_record(account_id, period, resource_kind)

        if record is None:
            limits = await self._tier_source.get_limits(account_id)
            return QuotaUsage(
                account_id=account_id,
                period_key=period,
                resource_kind=resource_kind,
                limit=limits.get(resource_kind, 0),
                used=0,
                reserved=0,
            )
        return QuotaUsage(
            account_id=account_id,
            period_key=period,
            resource_kind=resource_kind,
            limit=record.quota_limit,
            used=record.used,
            reserved=record.reserved,
        )
