"""Generation orchestrator: admits jobs, runs their tasks, aggregates outcomes.

Submission is synchronous up to the point where the job is durable: the
request is validated, quota is reserved for every item and the job with its
tasks is written. The job itself then runs in a background asyncio task,
at most ``parallelism`` item tasks at a time. Each finished task commits or
releases exactly one reserved quota unit.
"""

import asyncio
from typing import Any, AsyncIterator
from uuid import UUID

import structlog
from pydantic import ValidationError

from mealforge.models.item_task import ItemTask
from mealforge.models.job import GenerationJob, JobStatus
from mealforge.models.request import GenerationRequest
from mealforge.models.stages import SUCCESSFUL_OUTCOMES, Stage, StageOutcome, TaskOutcome
from mealforge.services.dedupe.store import PerceptualHashStore
from mealforge.services.exceptions import InvalidRequestError
from mealforge.services.generation.pipeline import PipelineListener, StagePipeline, TaskContext
from mealforge.services.job_store import JobStore
from mealforge.services.progress import JobSnapshot, ProgressDelta, ProgressTracker, TaskError
from mealforge.services.quota.ledger import QuotaLedger, Reservation
from mealforge.services.resilience.circuit_breaker import BreakerRegistry

logger = structlog.get_logger(__name__)


def aggregate_status(outcomes: list[TaskOutcome], cancel_requested: bool) -> JobStatus:
    """Compute a job's terminal status from its task outcomes.

    Placeholder successes count as successes.
    """
    if cancel_requested:
        return JobStatus.CANCELLED
    succeeded = sum(1 for outcome in outcomes if outcome in SUCCESSFUL_OUTCOMES)
    if succeeded == len(outcomes):
        return JobStatus.SUCCEEDED
    if succeeded == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIALLY_SUCCEEDED


def snapshot_from_records(job: GenerationJob, tasks: list[ItemTask]) -> JobSnapshot:
    """Rebuild a snapshot for a job that is no longer tracked in memory."""
    counters = {outcome: 0 for outcome in TaskOutcome}
    stage_counts: dict[str, int] = {}
    errors = []
    for task in tasks:
        if task.final_outcome is not None:
            counters[task.final_outcome] += 1
            if task.final_outcome == TaskOutcome.FAILED:
                errors.append(
                    TaskError(
                        task_id=str(task.id),
                        stage=(task.error or "").split(":", 1)[0],
                        message=task.error or "",
                    )
                )
        elif task.current_stage not in (Stage.QUEUED, Stage.DONE):
            stage_counts[task.current_stage.value] = stage_counts.get(task.current_stage.value, 0) + 1

    processed = sum(counters.values())
    running = sum(stage_counts.values())
    persisted = job.progress_snapshot or {}
    terminal = job.is_terminal
    return JobSnapshot(
        job_id=job.id,
        account_id=job.account_id,
        status=job.status,
        revision=persisted.get("revision", 0),
        total=job.item_count,
        queued=max(job.item_count - processed - running, 0),
        running=running,
        succeeded=counters[TaskOutcome.SUCCESS],
        succeeded_with_placeholder=counters[TaskOutcome.SUCCESS_WITH_PLACEHOLDER],
        failed=counters[TaskOutcome.FAILED],
        cancelled=counters[TaskOutcome.CANCELLED],
        stage_counts=stage_counts,
        errors=tuple(errors),
        degraded=(),
        current_step=job.status.value if terminal else f"processed {processed} of {job.item_count}",
        percentage=100.0 if terminal else round(processed / job.item_count * 100, 1),
        started_at=job.created_at,
        updated_at=job.completed_at or job.created_at,
        cancel_requested=job.cancel_requested,
    )


class _JobListener(PipelineListener):
    """Forwards stage transitions of one job's tasks to the tracker and the job store."""

    def __init__(self, orchestrator: "GenerationOrchestrator", job_id: UUID):
        self._orchestrator = orchestrator
        self._job_id = job_id

    async def stage_started(self, task: ItemTask, stage: Stage) -> None:
        await self._orchestrator.tracker.update(
            self._job_id,
            ProgressDelta(
                task_id=str(task.id),
                stage=stage,
                degraded=tuple(self._orchestrator.breakers.degraded()),
            ),
        )

    async def stage_finished(self, task: ItemTask, outcome: StageOutcome) -> None:
        # Durable stage history after every stage
        await self._orchestrator.job_store.save_task(task)


class GenerationOrchestrator:
    """Entry point for submitting, observing and cancelling generation jobs."""

    def __init__(
        self,
        *,
        job_store: JobStore,
        ledger: QuotaLedger,
        tracker: ProgressTracker,
        pipeline: StagePipeline,
        hash_store: PerceptualHashStore,
        breakers: BreakerRegistry,
        resource_kind: str = "ai_generations",
        parallelism: int = 5,
        max_items: int = 50,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.job_store = job_store
        self.ledger = ledger
        self.tracker = tracker
        self.pipeline = pipeline
        self.hash_store = hash_store
        self.breakers = breakers
        self.resource_kind = resource_kind
        self.parallelism = parallelism
        self.max_items = max_items
        self._running: dict[UUID, asyncio.Task] = {}
        self._cancelled: set[UUID] = set()

    def _validate(self, request: GenerationRequest | dict[str, Any]) -> GenerationRequest:
        if not isinstance(request, GenerationRequest):
            try:
                request = GenerationRequest.model_validate(request)
            except ValidationError as e:
                raise InvalidRequestError(f"Invalid generation request: {e}") from e
        if request.item_count > self.max_items:
            raise InvalidRequestError(
                f"item_count {request.item_count} exceeds the maximum of {self.max_items}"
            )
        return request

    async def submit(self, request: GenerationRequest | dict[str, Any]) -> UUID:
        """Admit a request and start its job in the background.

        Returns:
            The new job id

        Raises:
            InvalidRequestError: If the request is malformed or too large
            QuotaExceededError: If the account cannot reserve ``item_count`` units
        """
        request = self._validate(request)
        reservation = await self.ledger.try_reserve(
            request.account_id, self.resource_kind, request.item_count
        )
        try:
            job, tasks = await self.job_store.create_job(request, reservation.id)
        except Exception:
            logger.error("job.create_failed", account_id=request.account_id, exc_info=True)
            await self.ledger.release(reservation, reservation.amount)
            raise

        self.tracker.register(job.id, job.account_id, job.item_count)
        runner = asyncio.create_task(self._run_job(job, tasks, reservation), name=f"job-{job.id}")
        self._running[job.id] = runner
        runner.add_done_callback(lambda _: self._running.pop(job.id, None))

        logger.info(
            "job.submitted",
            job_id=str(job.id),
            account_id=job.account_id,
            item_count=job.item_count,
            reservation_id=str(reservation.id),
        )
        return job.id

    async def wait(self, job_id: UUID) -> None:
        """Wait until a job running in this process has finished."""
        runner = self._running.get(job_id)
        if runner is not None:
            await asyncio.shield(runner)

    async def _run_job(
        self, job: GenerationJob, tasks: list[ItemTask], reservation: Reservation
    ) -> None:
        job_id = job.id
        log = logger.bind(job_id=str(job_id), account_id=job.account_id)
        try:
            job.mark_running()
            await self.job_store.save_job(job)
            await self.tracker.update(job_id, ProgressDelta(status=JobStatus.RUNNING))
            log.info("job.started", parallelism=self.parallelism)

            ctx = TaskContext(
                job_id=job_id,
                account_id=job.account_id,
                constraints=dict(job.constraints),
                scope_key=self.hash_store.scope_key(job.account_id),
                is_cancelled=lambda: job_id in self._cancelled,
            )
            semaphore = asyncio.Semaphore(self.parallelism)
            listener = _JobListener(self, job_id)

            results = await asyncio.gather(
                *(self._run_task(task, ctx, semaphore, listener, reservation) for task in tasks),
                return_exceptions=True,
            )
            outcomes = []
            for task, result in zip(tasks, results):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    log.error("task.bookkeeping_failed", task_id=str(task.id), error=str(result))
                    outcomes.append(task.final_outcome or TaskOutcome.FAILED)
                else:
                    outcomes.append(result)

            status = aggregate_status(outcomes, cancel_requested=job_id in self._cancelled)
            await self.ledger.release_remaining(reservation.id)

            if status == JobStatus.CANCELLED:
                job.cancel_requested = True
            job.mark_finished(status)
            await self.job_store.save_job(job)
            await self.tracker.update(
                job_id,
                ProgressDelta(status=status, degraded=tuple(self.breakers.degraded())),
            )
            log.info(
                "job.finished",
                status=status.value,
                succeeded=sum(1 for o in outcomes if o == TaskOutcome.SUCCESS),
                placeholders=sum(1 for o in outcomes if o == TaskOutcome.SUCCESS_WITH_PLACEHOLDER),
                failed=sum(1 for o in outcomes if o == TaskOutcome.FAILED),
                cancelled=sum(1 for o in outcomes if o == TaskOutcome.CANCELLED),
            )
        except asyncio.CancelledError:
            log.warning("job.interrupted")
            raise
        except Exception as e:
            log.error("job.crashed", error=str(e), exc_info=True)
            await self._fail_job(job, reservation, e)
        finally:
            self._cancelled.discard(job_id)

    async def _fail_job(self, job: GenerationJob, reservation: Reservation, error: Exception) -> None:
        try:
            await self.ledger.release_remaining(reservation.id)
        except Exception:
            logger.error("job.release_failed", job_id=str(job.id), exc_info=True)

        if not job.is_terminal:
            job.mark_failed({"error_type": type(error).__name__, "message": str(error)})
            try:
                await self.job_store.save_job(job)
            except Exception:
                logger.error("job.save_failed", job_id=str(job.id), exc_info=True)
        await self.tracker.update(job.id, ProgressDelta(status=JobStatus.FAILED))

    async def _run_task(
        self,
        task: ItemTask,
        ctx: TaskContext,
        semaphore: asyncio.Semaphore,
        listener: _JobListener,
        reservation: Reservation,
    ) -> TaskOutcome:
        async with semaphore:
            try:
                outcome = await self.pipeline.run(task, ctx, listener)
            except Exception as e:
                logger.error(
                    "task.crashed", task_id=str(task.id), job_id=str(ctx.job_id), exc_info=True
                )
                if not task.is_terminal:
                    task.finish(TaskOutcome.FAILED, error=f"internal error: {e}")
                outcome = task.final_outcome or TaskOutcome.FAILED

            if outcome in SUCCESSFUL_OUTCOMES:
                await self.ledger.commit(reservation, 1)
            else:
                await self.ledger.release(reservation, 1)

            await self.job_store.save_task(task)

            error = None
            if outcome == TaskOutcome.FAILED:
                stage = (task.error or "").split(":", 1)[0]
                error = TaskError(task_id=str(task.id), stage=stage, message=task.error or "")
            await self.tracker.update(
                ctx.job_id,
                ProgressDelta(
                    task_id=str(task.id),
                    outcome=outcome,
                    error=error,
                    degraded=tuple(self.breakers.degraded()),
                ),
            )
            logger.debug(
                "task.finished", task_id=str(task.id), job_id=str(ctx.job_id), outcome=outcome.value
            )
            return outcome

    async def get_status(self, job_id: UUID) -> JobSnapshot:
        """Current snapshot of a job.

        Raises:
            JobNotFoundError: If the job is unknown
        """
        if self.tracker.is_tracked(job_id):
            return self.tracker.snapshot(job_id)
        job = await self.job_store.get_job(job_id)
        tasks = await self.job_store.get_tasks(job_id)
        return snapshot_from_records(job, tasks)

    async def subscribe(self, job_id: UUID) -> AsyncIterator[JobSnapshot]:
        """Stream snapshots until the terminal one.

        Jobs no longer tracked in memory produce a single snapshot.

        Raises:
            JobNotFoundError: If the job is unknown
        """
        if self.tracker.is_tracked(job_id):
            async for snapshot in self.tracker.subscribe(job_id):
                yield snapshot
            return
        yield await self.get_status(job_id)

    async def cancel(self, job_id: UUID) -> bool:
        """Request cooperative cancellation of a job.

        Returns:
            True if the cancel was accepted, False if the job already finished

        Raises:
            JobNotFoundError: If the job is unknown
        """
        if job_id in self._running:
            if job_id not in self._cancelled:
                self._cancelled.add(job_id)
                await self.job_store.mark_cancel_requested(job_id)
                await self.tracker.update(job_id, ProgressDelta(cancel_requested=True))
                logger.info("job.cancel_requested", job_id=str(job_id))
            return True

        job = await self.job_store.get_job(job_id)
        if job.is_terminal:
            return False
        # Owned by no running process here; recovery finishes it
        await self.job_store.mark_cancel_requested(job_id)
        logger.info("job.cancel_requested", job_id=str(job_id), orphaned=True)
        return True

    def running_jobs(self) -> list[UUID]:
        return list(self._running.keys())

    async def shutdown(self) -> None:
        """Cancel every job running in this process and wait for them to stop."""
        runners = list(self._running.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
            logger.info("orchestrator.shutdown", interrupted_jobs=len(runners))
