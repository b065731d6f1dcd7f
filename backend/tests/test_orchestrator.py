"""End-to-end orchestrator tests with fake providers and the SQLite job store.

Tests:
- Happy path commits one quota unit per item and persists every recipe
- Quota exhaustion rejects a request before a job exists
- Duplicate images and image outages fall back to the placeholder
- Concept and validation failures fail single tasks (partial success)
- Transient failures are retried
- Cooperative cancellation releases every uncommitted unit
- Status and subscription for tracked and pruned jobs
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from fakes import make_image
from sqlmodel import select

from mealforge.core.timezone import utcnow
from mealforge.models.job import GenerationJob, JobStatus
from mealforge.models.request import GenerationRequest
from mealforge.models.stages import Stage, TaskOutcome
from mealforge.services.exceptions import (
    InvalidProviderInputError,
    InvalidRequestError,
    JobNotFoundError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from mealforge.services.generation.orchestrator import aggregate_status
from mealforge.services.resilience.circuit_breaker import CircuitState

PLACEHOLDER = "https://cdn.test/placeholder.png"


async def run_job(services, account_id: str, item_count: int, **constraints):
    orchestrator = services.orchestrator
    job_id = await orchestrator.submit(
        GenerationRequest(account_id=account_id, item_count=item_count, constraints=constraints)
    )
    await asyncio.wait_for(orchestrator.wait(job_id), timeout=10)
    return job_id, await orchestrator.get_status(job_id)


async def usage(services, account_id: str):
    return await services.ledger.usage(account_id, "ai_generations")


@pytest.mark.asyncio
async def test_happy_path(services, providers, uow_factory):
    job_id, snapshot = await run_job(services, "acct-ten", 5, meal_types=["dinner"])

    assert snapshot.status == JobStatus.SUCCEEDED
    assert snapshot.succeeded == 5
    assert snapshot.processed == 5
    assert snapshot.percentage == 100.0

    quota = await usage(services, "acct-ten")
    assert (quota.used, quota.reserved) == (5, 0)

    tasks = await services.job_store.get_tasks(job_id)
    assert [t.final_outcome for t in tasks] == [TaskOutcome.SUCCESS] * 5
    assert all(t.image_url.startswith("https://storage.test/recipes/") for t in tasks)
    assert len(providers.storage.objects) == 5

    async with await uow_factory() as uow:
        recipes = await uow.recipes.get_by_job(job_id)
    assert len(recipes) == 5
    assert all(r.draft["meal_types"] == ["dinner"] for r in recipes)

    job = await services.job_store.get_job(job_id)
    assert job.status == JobStatus.SUCCEEDED
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_quota_exhaustion_rejects_before_job_exists(services, session):
    await run_job(services, "acct-tiny", 3)

    with pytest.raises(QuotaExceededError) as exc_info:
        await services.orchestrator.submit({"account_id": "acct-tiny", "item_count": 2})

    assert exc_info.value.as_dict() == {
        "account_id": "acct-tiny",
        "resource_kind": "ai_generations",
        "limit": 3,
        "used": 3,
        "reserved": 0,
        "requested": 2,
    }
    jobs = (await session.execute(select(GenerationJob))).scalars().all()
    assert len(jobs) == 1


@pytest.mark.asyncio
async def test_duplicate_image_gets_placeholder(services, providers):
    providers.image.same_image = make_image(7)

    job_id, snapshot = await run_job(services, "acct-ten", 2)

    assert snapshot.status == JobStatus.SUCCEEDED
    assert snapshot.succeeded == 1
    assert snapshot.succeeded_with_placeholder == 1
    assert providers.storage.calls == 1

    tasks = await services.job_store.get_tasks(job_id)
    placeholder = next(t for t in tasks if t.is_placeholder)
    assert placeholder.image_url == PLACEHOLDER
    assert placeholder.last_payload(Stage.DEDUPE)["accepted"] is False

    # Placeholder successes are billed
    quota = await usage(services, "acct-ten")
    assert quota.used == 2


@pytest.mark.asyncio
async def test_unpublished_image_does_not_block_later_duplicates(services, providers, uow_factory):
    providers.image.same_image = make_image(7)
    providers.storage.error = ProviderUnavailableError("bucket unavailable")

    _, first = await run_job(services, "acct-ten", 1)

    assert first.succeeded_with_placeholder == 1
    assert services.hash_store.size("acct-ten") == 0
    async with await uow_factory() as uow:
        assert await uow.fingerprints.list_by_scope("acct-ten") == []

    providers.storage.error = None
    job_id, second = await run_job(services, "acct-ten", 1)

    assert second.succeeded == 1
    assert second.succeeded_with_placeholder == 0
    tasks = await services.job_store.get_tasks(job_id)
    assert tasks[0].image_url.startswith("https://storage.test/recipes/")
    assert services.hash_store.size("acct-ten") == 1


@pytest.mark.asyncio
async def test_image_outage_trips_breaker(services, providers):
    providers.image.error = ProviderUnavailableError("image service down")

    job_id, snapshot = await run_job(services, "acct-ten", 5)

    assert snapshot.status == JobStatus.SUCCEEDED
    assert snapshot.succeeded_with_placeholder == 5
    assert "image" in snapshot.degraded
    assert services.breakers.get("image").state == CircuitState.OPEN
    # Open circuit stops the calls well before every attempt is spent
    assert providers.image.calls < 15
    assert providers.storage.calls == 0

    tasks = await services.job_store.get_tasks(job_id)
    assert all(t.image_url == PLACEHOLDER for t in tasks)


@pytest.mark.asyncio
async def test_concept_failure_fails_single_task(services, providers):
    providers.concept.errors[2] = InvalidProviderInputError("content policy violation")

    job_id, snapshot = await run_job(services, "acct-ten", 3)

    assert snapshot.status == JobStatus.PARTIALLY_SUCCEEDED
    assert snapshot.succeeded == 2
    assert snapshot.failed == 1
    assert snapshot.errors[0].stage == "concept"
    assert "content policy violation" in snapshot.errors[0].message

    quota = await usage(services, "acct-ten")
    assert (quota.used, quota.reserved) == (2, 0)


@pytest.mark.asyncio
async def test_all_tasks_failing_fails_job(services, providers):
    for ordinal in range(3):
        providers.concept.errors[ordinal] = InvalidProviderInputError("bad constraints")

    _, snapshot = await run_job(services, "acct-ten", 3)

    assert snapshot.status == JobStatus.FAILED
    assert providers.image.calls == 0
    quota = await usage(services, "acct-ten")
    assert (quota.used, quota.reserved) == (0, 0)


@pytest.mark.asyncio
async def test_transient_concept_errors_are_retried(services, providers):
    providers.concept.transient = [
        ProviderUnavailableError("503"),
        ProviderTimeoutError("timed out"),
    ]

    job_id, snapshot = await run_job(services, "acct-ten", 1)

    assert snapshot.status == JobStatus.SUCCEEDED
    [task] = await services.job_store.get_tasks(job_id)
    assert task.attempts["concept"] == 3
    assert task.attempts["image"] == 1
    statuses = [r["status"] for r in task.stage_history if r["stage"] == "concept"]
    assert statuses == ["ok"]


@pytest.mark.asyncio
async def test_validation_rejection(services, providers):
    providers.nutrition.rejected_names = {"Protein Bowl 1"}

    job_id, snapshot = await run_job(services, "acct-ten", 3)

    assert snapshot.status == JobStatus.PARTIALLY_SUCCEEDED
    assert snapshot.failed == 1
    tasks = await services.job_store.get_tasks(job_id)
    rejected = next(t for t in tasks if t.ordinal == 1)
    assert rejected.final_outcome == TaskOutcome.FAILED
    assert rejected.error.startswith("validation: nutrition validation failed")
    assert "too much sodium" in rejected.error


@pytest.mark.asyncio
async def test_cancellation_releases_quota(services, providers):
    providers.concept.gate = asyncio.Event()
    orchestrator = services.orchestrator

    job_id = await orchestrator.submit({"account_id": "acct-ten", "item_count": 8})

    # Parallelism is 5: five tasks wait inside the concept call
    for _ in range(200):
        if providers.concept.calls == 5:
            break
        await asyncio.sleep(0.01)
    assert providers.concept.calls == 5

    assert await orchestrator.cancel(job_id) is True
    providers.concept.gate.set()
    await asyncio.wait_for(orchestrator.wait(job_id), timeout=10)

    snapshot = await orchestrator.get_status(job_id)
    assert snapshot.status == JobStatus.CANCELLED
    assert snapshot.cancelled == 8
    assert snapshot.cancel_requested
    assert providers.nutrition.calls == 0
    assert providers.concept.calls == 5

    quota = await usage(services, "acct-ten")
    assert (quota.used, quota.reserved) == (0, 0)

    job = await services.job_store.get_job(job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.cancel_requested

    assert await orchestrator.cancel(job_id) is False


@pytest.mark.asyncio
async def test_invalid_requests_rejected(services):
    orchestrator = services.orchestrator

    with pytest.raises(InvalidRequestError):
        await orchestrator.submit({"account_id": "acct-ten", "item_count": 21})
    with pytest.raises(InvalidRequestError):
        await orchestrator.submit({"account_id": "acct-ten", "item_count": 0})
    with pytest.raises(InvalidRequestError):
        await orchestrator.submit({"account_id": "   ", "item_count": 1})

    quota = await usage(services, "acct-ten")
    assert (quota.used, quota.reserved) == (0, 0)


@pytest.mark.asyncio
async def test_unknown_job(services):
    orchestrator = services.orchestrator

    with pytest.raises(JobNotFoundError):
        await orchestrator.get_status(uuid4())
    with pytest.raises(JobNotFoundError):
        await orchestrator.cancel(uuid4())


@pytest.mark.asyncio
async def test_status_after_tracker_pruned(services, providers):
    providers.concept.errors[0] = InvalidProviderInputError("nope")
    job_id, live = await run_job(services, "acct-ten", 2)

    pruned = services.tracker.prune(0, now=utcnow() + timedelta(seconds=1))
    assert pruned == [job_id]

    snapshot = await services.orchestrator.get_status(job_id)
    assert snapshot.status == live.status == JobStatus.PARTIALLY_SUCCEEDED
    assert (snapshot.succeeded, snapshot.failed) == (1, 1)
    assert snapshot.errors[0].stage == "concept"

    received = [s async for s in services.orchestrator.subscribe(job_id)]
    assert len(received) == 1
    assert received[0].terminal


@pytest.mark.asyncio
async def test_subscribe_revisions_strictly_increase(services):
    orchestrator = services.orchestrator
    job_id = await orchestrator.submit({"account_id": "acct-ten", "item_count": 3})

    received = []
    async for snapshot in orchestrator.subscribe(job_id):
        received.append(snapshot)

    revisions = [s.revision for s in received]
    assert revisions == sorted(set(revisions))
    assert received[-1].terminal
    assert sum(1 for s in received if s.terminal) == 1
    assert received[-1].status == JobStatus.SUCCEEDED


def test_aggregate_status():
    ok, placeholder = TaskOutcome.SUCCESS, TaskOutcome.SUCCESS_WITH_PLACEHOLDER
    failed, cancelled = TaskOutcome.FAILED, TaskOutcome.CANCELLED

    assert aggregate_status([ok, placeholder], False) == JobStatus.SUCCEEDED
    assert aggregate_status([ok, failed], False) == JobStatus.PARTIALLY_SUCCEEDED
    assert aggregate_status([failed, cancelled], False) == JobStatus.FAILED
    assert aggregate_status([ok, cancelled], True) == JobStatus.CANCELLED
