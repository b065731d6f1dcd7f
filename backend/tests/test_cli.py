"""Tests for the recovery and healing CLI commands."""

import pytest

from mealforge.cli import heal_placeholders, recover_jobs
from mealforge.models.job import JobStatus
from mealforge.models.request import GenerationRequest
from mealforge.services.job_store import JobStore


def test_recover_jobs_args():
    args = recover_jobs.parse_args([])
    assert (args.limit, args.dry_run, args.verbose) == (1000, False, False)

    args = recover_jobs.parse_args(["--limit", "5", "--dry-run", "-v"])
    assert (args.limit, args.dry_run, args.verbose) == (5, True, True)


def test_heal_placeholders_args():
    assert heal_placeholders.parse_args([]).min_age is None
    assert heal_placeholders.parse_args(["--min-age", "0"]).min_age == 0.0


@pytest.mark.asyncio
async def test_recover_jobs_command(settings, uow_factory, monkeypatch, capsys):
    monkeypatch.setenv("DATABASE_URL", settings.database_url)
    job_store = JobStore(uow_factory)
    job, _ = await job_store.create_job(GenerationRequest(account_id="acct-1", item_count=2))

    exit_code = await recover_jobs.async_main(["--dry-run"])

    assert exit_code == 0
    assert "Jobs recovered: 1" in capsys.readouterr().out
    assert (await job_store.get_job(job.id)).status == JobStatus.PENDING

    exit_code = await recover_jobs.async_main([])

    assert exit_code == 0
    assert (await job_store.get_job(job.id)).status == JobStatus.FAILED
