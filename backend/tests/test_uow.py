"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from mealforge.models.item_task import ItemTask
from mealforge.models.job import GenerationJob


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    job = GenerationJob(account_id="acct-1", item_count=1)

    async with await uow_factory() as uow:
        await uow.jobs.add(job)

    async with await uow_factory() as uow:
        found = await uow.jobs.get_by_id(job.id)
        assert found is not None
        assert found.account_id == "acct-1"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Changes are rolled back and the exception propagates."""
    job = GenerationJob(account_id="acct-1", item_count=1)

    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.jobs.add(job)
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        found = await uow.jobs.get_by_id(job.id)
        assert found is None, "Job should not exist after rollback"


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        assert uow.jobs is not None
        assert uow.tasks is not None
        assert uow.quota_records is not None
        assert uow.reservations is not None
        assert uow.fingerprints is not None
        assert uow.recipes is not None


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """A job and its tasks commit together."""
    job = GenerationJob(account_id="acct-1", item_count=2)
    tasks = [ItemTask(job_id=job.id, ordinal=i) for i in range(2)]

    async with await uow_factory() as uow:
        await uow.jobs.add(job)
        await uow.tasks.add_all(tasks)

    async with await uow_factory() as uow:
        assert await uow.jobs.get_by_id(job.id) is not None
        stored = await uow.tasks.get_by_job(job.id)
        assert [task.ordinal for task in stored] == [0, 1]
