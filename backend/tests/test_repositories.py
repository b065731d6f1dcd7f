"""Repository layer tests for MealForge backend.

Tests focus on complex logic:
- Conditional quota UPDATEs never overshoot the limit
- Reservation balances cannot go negative
- Recipe UPSERT keeps one row per task
- Healing and recovery selection queries

Simple CRUD operations are not tested (trust SQLAlchemy).
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from mealforge.core.timezone import utcnow
from mealforge.models.fingerprint import ImageFingerprint
from mealforge.models.item_task import ItemTask
from mealforge.models.job import GenerationJob, JobStatus
from mealforge.models.quota import QuotaReservation
from mealforge.models.recipe import GeneratedRecipe
from mealforge.models.stages import TaskOutcome
from mealforge.repositories.fingerprint import ImageFingerprintRepository
from mealforge.repositories.item_task import ItemTaskRepository
from mealforge.repositories.job import GenerationJobRepository
from mealforge.repositories.quota import QuotaRecordRepository, QuotaReservationRepository
from mealforge.repositories.recipe import GeneratedRecipeRepository


@pytest.mark.asyncio
async def test_quota_conditional_reserve(session):
    """try_reserve only succeeds while used + reserved + amount <= limit.

    Scenario:
    1. Limit 5, reserve 3 (ok)
    2. Reserve 3 more (rejected, counters unchanged)
    3. Reserve 2 (ok, exactly at limit)
    """
    repo = QuotaRecordRepository(session)
    await repo.ensure_record("acct-1", "2026-10", "ai_generations", 5)

    assert await repo.try_reserve("acct-1", "2026-10", "ai_generations", 3)
    assert not await repo.try_reserve("acct-1", "2026-10", "ai_generations", 3)
    assert await repo.try_reserve("acct-1", "2026-10", "ai_generations", 2)
    await session.commit()

    record = await repo.get_record("acct-1", "2026-10", "ai_generations")
    assert record.reserved == 5
    assert record.used == 0
    assert record.available == 0


@pytest.mark.asyncio
async def test_quota_unlimited_never_rejects(session):
    repo = QuotaRecordRepository(session)
    await repo.ensure_record("acct-1", "2026-10", "ai_generations", -1)

    assert await repo.try_reserve("acct-1", "2026-10", "ai_generations", 10_000)
    record = await repo.get_record("acct-1", "2026-10", "ai_generations")
    assert record.available is None


@pytest.mark.asyncio
async def test_quota_ensure_record_is_upsert(session):
    """A second ensure_record refreshes the limit and keeps the counters."""
    repo = QuotaRecordRepository(session)
    await repo.ensure_record("acct-1", "2026-10", "ai_generations", 5)
    await repo.try_reserve("acct-1", "2026-10", "ai_generations", 2)
    await repo.move_reserved_to_used("acct-1", "2026-10", "ai_generations", 1)

    await repo.ensure_record("acct-1", "2026-10", "ai_generations", 8)
    await session.commit()

    record = await repo.get_record("acct-1", "2026-10", "ai_generations")
    assert record.quota_limit == 8
    assert record.used == 1
    assert record.reserved == 1


@pytest.mark.asyncio
async def test_reservation_apply_guards_balance(session):
    repo = QuotaReservationRepository(session)
    reservation = await repo.add(
        QuotaReservation(
            account_id="acct-1", period_key="2026-10", resource_kind="ai_generations", amount=3
        )
    )

    assert await repo.apply(reservation.id, committed=2)
    assert await repo.apply(reservation.id, released=1)
    assert not await repo.apply(reservation.id, released=1)
    await session.commit()

    stored = await repo.get_by_id(reservation.id)
    assert stored.committed == 2
    assert stored.released == 1
    assert stored.outstanding == 0


@pytest.mark.asyncio
async def test_outstanding_reservations_for_job(session):
    repo = QuotaReservationRepository(session)
    job_id = uuid4()
    open_one = await repo.add(
        QuotaReservation(
            account_id="acct-1", period_key="2026-10", resource_kind="ai_generations", amount=2
        )
    )
    settled = await repo.add(
        QuotaReservation(
            account_id="acct-1",
            period_key="2026-10",
            resource_kind="ai_generations",
            amount=1,
            committed=1,
        )
    )
    await repo.attach_job(open_one.id, job_id)
    await repo.attach_job(settled.id, job_id)
    await session.commit()

    outstanding = await repo.list_outstanding_for_job(job_id)
    assert [r.id for r in outstanding] == [open_one.id]


@pytest.mark.asyncio
async def test_recipe_upsert_keeps_one_row(session):
    """Saving the same task twice updates the row and keeps created_at."""
    repo = GeneratedRecipeRepository(session)
    task_id, job_id = uuid4(), uuid4()

    await repo.upsert(
        GeneratedRecipe(
            task_id=task_id,
            job_id=job_id,
            account_id="acct-1",
            name="Bowl",
            image_url="https://cdn.test/placeholder.png",
            is_placeholder=True,
        )
    )
    await session.commit()
    first = await repo.get_by_task_id(task_id)
    created_at = first.created_at

    await repo.upsert(
        GeneratedRecipe(
            task_id=task_id,
            job_id=job_id,
            account_id="acct-1",
            name="Bowl",
            image_url="https://storage.test/real.png",
            is_placeholder=False,
        )
    )
    await session.commit()
    session.expire_all()

    rows = await repo.get_by_job(job_id)
    assert len(rows) == 1
    assert rows[0].image_url == "https://storage.test/real.png"
    assert rows[0].is_placeholder is False
    assert rows[0].created_at == created_at


@pytest.mark.asyncio
async def test_get_healable_selection(session):
    """Only old placeholder tasks under the attempt limit are selected."""
    job = GenerationJob(account_id="acct-1", item_count=4)
    await GenerationJobRepository(session).add(job)

    old = utcnow() - timedelta(hours=1)
    eligible = ItemTask(job_id=job.id, ordinal=0)
    eligible.finish(TaskOutcome.SUCCESS_WITH_PLACEHOLDER)
    eligible.updated_at = old

    exhausted = ItemTask(job_id=job.id, ordinal=1, heal_attempts=3)
    exhausted.finish(TaskOutcome.SUCCESS_WITH_PLACEHOLDER)
    exhausted.updated_at = old

    fresh = ItemTask(job_id=job.id, ordinal=2)
    fresh.finish(TaskOutcome.SUCCESS_WITH_PLACEHOLDER)

    real = ItemTask(job_id=job.id, ordinal=3)
    real.finish(TaskOutcome.SUCCESS, image_url="https://storage.test/x.png")
    real.updated_at = old

    repo = ItemTaskRepository(session)
    await repo.add_all([eligible, exhausted, fresh, real])
    await session.commit()

    healable = await repo.get_healable(
        max_attempts=3, updated_before=utcnow() - timedelta(minutes=5), limit=10
    )
    assert [task.id for task in healable] == [eligible.id]


@pytest.mark.asyncio
async def test_list_unfinished_jobs(session):
    repo = GenerationJobRepository(session)
    pending = GenerationJob(account_id="acct-1", item_count=1)
    running = GenerationJob(account_id="acct-1", item_count=1, status=JobStatus.RUNNING)
    done = GenerationJob(account_id="acct-1", item_count=1, status=JobStatus.SUCCEEDED)
    for job in (pending, running, done):
        await repo.add(job)
    await session.commit()

    unfinished = await repo.list_unfinished()
    assert {job.id for job in unfinished} == {pending.id, running.id}


@pytest.mark.asyncio
async def test_snapshot_and_cancel_flag_updates(session):
    repo = GenerationJobRepository(session)
    job = GenerationJob(account_id="acct-1", item_count=1)
    await repo.add(job)
    await session.commit()

    await repo.save_snapshot(job.id, {"revision": 7})
    await repo.mark_cancel_requested(job.id)
    await session.commit()
    session.expire_all()

    stored = await repo.get_by_id(job.id)
    assert stored.progress_snapshot == {"revision": 7}
    assert stored.cancel_requested is True


@pytest.mark.asyncio
async def test_fingerprints_by_scope(session):
    repo = ImageFingerprintRepository(session)
    await repo.add(ImageFingerprint(scope_key="acct-1", hash="0f" * 8, source_task_id="t1"))
    await repo.add(ImageFingerprint(scope_key="acct-2", hash="f0" * 8, source_task_id="t2"))
    await session.commit()

    assert [fp.source_task_id for fp in await repo.list_by_scope("acct-1")] == ["t1"]
    assert len(await repo.list_all()) == 2
