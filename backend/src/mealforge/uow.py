"""Unit of Work pattern for MealForge.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mealforge.repositories.fingerprint import ImageFingerprintRepository
from mealforge.repositories.item_task import ItemTaskRepository
from mealforge.repositories.job import GenerationJobRepository
from mealforge.repositories.quota import QuotaRecordRepository, QuotaReservationRepository
from mealforge.repositories.recipe import GeneratedRecipeRepository

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Transaction boundary exposing every repository on one session.

    Example:
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)
            job.mark_running()
            await uow.jobs.save(job)
            # Commits on successful exit, rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.jobs = GenerationJobRepository(session)
        self.tasks = ItemTaskRepository(session)
        self.quota_records = QuotaRecordRepository(session)
        self.reservations = QuotaReservationRepository(session)
        self.fingerprints = ImageFingerprintRepository(session)
        self.recipes = GeneratedRecipeRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on success, roll back on exception, always close the session.

        Returns:
            False: Exceptions are re-raised after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Coroutine function creating a UnitOfWork on a fresh session

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.jobs.add(job)
    """

    async def _create_uow():
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
