"""In-process progress tracker for generation jobs.

The tracker is the single owner of live job progress. Every change goes
through ``update()``, which is serialized per job by an asyncio.Lock, builds
a fresh immutable JobSnapshot with the next revision and swaps it in whole.
Readers never lock: ``snapshot()`` returns whatever snapshot is current and
it is always internally consistent.

Subscribers get their own asyncio.Queue of snapshots (fan-out broker), see
revisions strictly increasing and receive the terminal snapshot exactly
once, after which the stream ends.
"""

import asyncio
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Optional
from uuid import UUID

import structlog

from mealforge.core.timezone import utcnow
from mealforge.models.job import TERMINAL_JOB_STATUSES, JobStatus
from mealforge.models.stages import Stage, TaskOutcome
from mealforge.services.exceptions import JobNotFoundError

logger = structlog.get_logger(__name__)

MAX_REPORTED_ERRORS = 50


@dataclass(frozen=True)
class TaskError:
    task_id: str
    stage: str
    message: str


@dataclass(frozen=True)
class JobSnapshot:
    """Point-in-time view of one job's progress."""

    job_id: UUID
    account_id: str
    status: JobStatus
    revision: int
    total: int
    queued: int
    running: int
    succeeded: int = 0
    succeeded_with_placeholder: int = 0
    failed: int = 0
    cancelled: int = 0
    stage_counts: dict[str, int] = field(default_factory=dict)
    errors: tuple[TaskError, ...] = ()
    degraded: tuple[str, ...] = ()
    current_step: str = "queued"
    percentage: float = 0.0
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    cancel_requested: bool = False

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def processed(self) -> int:
        return self.succeeded + self.succeeded_with_placeholder + self.failed + self.cancelled

    def as_dict(self) -> dict[str, Any]:
        """JSON-compatible representation (API responses, persisted snapshots)."""
        data = asdict(self)
        data["job_id"] = str(self.job_id)
        data["status"] = self.status.value
        data["errors"] = [asdict(e) for e in self.errors]
        data["degraded"] = list(self.degraded)
        data["terminal"] = self.terminal
        for key in ("started_at", "updated_at", "estimated_completion"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobSnapshot":
        """Rebuild a snapshot persisted with ``as_dict()``."""

        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            job_id=UUID(data["job_id"]),
            account_id=data["account_id"],
            status=JobStatus(data["status"]),
            revision=data["revision"],
            total=data["total"],
            queued=data["queued"],
            running=data["running"],
            succeeded=data.get("succeeded", 0),
            succeeded_with_placeholder=data.get("succeeded_with_placeholder", 0),
            failed=data.get("failed", 0),
            cancelled=data.get("cancelled", 0),
            stage_counts=dict(data.get("stage_counts", {})),
            errors=tuple(TaskError(**e) for e in data.get("errors", [])),
            degraded=tuple(data.get("degraded", [])),
            current_step=data.get("current_step", ""),
            percentage=data.get("percentage", 0.0),
            started_at=_dt(data.get("started_at")),
            updated_at=_dt(data.get("updated_at")),
            estimated_completion=_dt(data.get("estimated_completion")),
            cancel_requested=data.get("cancel_requested", False),
        )


@dataclass(frozen=True)
class ProgressDelta:
    """One change to apply to a job's progress.

    Any combination of fields may be set; they are applied in this order:
    status, stage entry, task outcome, error, degraded list, cancel request.
    """

    status: Optional[JobStatus] = None
    task_id: Optional[str] = None
    stage: Optional[Stage] = None
    outcome: Optional[TaskOutcome] = None
    error: Optional[TaskError] = None
    degraded: Optional[tuple[str, ...]] = None
    cancel_requested: bool = False


_OUTCOME_COUNTERS = {
    TaskOutcome.SUCCESS: "succeeded",
    TaskOutcome.SUCCESS_WITH_PLACEHOLDER: "succeeded_with_placeholder",
    TaskOutcome.FAILED: "failed",
    TaskOutcome.CANCELLED: "cancelled",
}


class _JobProgress:
    """Mutable bookkeeping behind one job's snapshots (guarded by ``lock``)."""

    def __init__(self, snapshot: JobSnapshot):
        self.snapshot = snapshot
        self.lock = asyncio.Lock()
        self.task_stages: dict[str, Stage] = {}
        self.subscribers: set[asyncio.Queue] = set()


class ProgressTracker:
    """Owns live progress for every job running in this process."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._jobs: dict[UUID, _JobProgress] = {}

    def register(self, job_id: UUID, account_id: str, total: int) -> JobSnapshot:
        """Start tracking a job (idempotent for an already tracked job)."""
        existing = self._jobs.get(job_id)
        if existing is not None:
            return existing.snapshot

        now = self._clock()
        snapshot = JobSnapshot(
            job_id=job_id,
            account_id=account_id,
            status=JobStatus.PENDING,
            revision=0,
            total=total,
            queued=total,
            running=0,
            stage_counts={},
            current_step="queued",
            updated_at=now,
        )
        self._jobs[job_id] = _JobProgress(snapshot)
        logger.debug("progress.registered", job_id=str(job_id), total=total)
        return snapshot

    def is_tracked(self, job_id: UUID) -> bool:
        return job_id in self._jobs

    def active_jobs(self) -> list[UUID]:
        return list(self._jobs.keys())

    def snapshot(self, job_id: UUID) -> JobSnapshot:
        """Current snapshot of a tracked job.

        Raises:
            JobNotFoundError: If the job is not tracked
        """
        state = self._jobs.get(job_id)
        if state is None:
            raise JobNotFoundError(job_id)
        return state.snapshot

    def snapshots(self) -> list[JobSnapshot]:
        return [state.snapshot for state in self._jobs.values()]

    async def update(self, job_id: UUID, delta: ProgressDelta) -> JobSnapshot:
        """Apply a delta and publish the resulting snapshot.

        Updates to a job that already reached a terminal snapshot are ignored.

        Raises:
            JobNotFoundError: If the job is not tracked
        """
        state = self._jobs.get(job_id)
        if state is None:
            raise JobNotFoundError(job_id)

        async with state.lock:
            current = state.snapshot
            if current.terminal:
                logger.debug("progress.update_after_terminal", job_id=str(job_id))
                return current

            new = self._apply(state, current, delta)
            state.snapshot = new
            for queue in state.subscribers:
                queue.put_nowait(new)

        if new.terminal:
            logger.info(
                "progress.terminal",
                job_id=str(job_id),
                status=new.status.value,
                succeeded=new.succeeded,
                placeholders=new.succeeded_with_placeholder,
                failed=new.failed,
                cancelled=new.cancelled,
            )
        return new

    def _apply(self, state: _JobProgress, current: JobSnapshot, delta: ProgressDelta) -> JobSnapshot:
        now = self._clock()
        changes: dict[str, Any] = {}

        status = current.status
        started_at = current.started_at
        if delta.status is not None and delta.status != status:
            status = delta.status
            if status == JobStatus.RUNNING and started_at is None:
                started_at = now
        changes["status"] = status
        changes["started_at"] = started_at

        if delta.task_id is not None and delta.stage is not None and delta.outcome is None:
            state.task_stages[delta.task_id] = delta.stage

        counters = {
            name: getattr(current, name)
            for name in ("succeeded", "succeeded_with_placeholder", "failed", "cancelled")
        }
        if delta.task_id is not None and delta.outcome is not None:
            state.task_stages.pop(delta.task_id, None)
            counters[_OUTCOME_COUNTERS[delta.outcome]] += 1
        changes.update(counters)

        errors = current.errors
        if delta.error is not None and len(errors) < MAX_REPORTED_ERRORS:
            errors = (*errors, delta.error)
        changes["errors"] = errors

        if delta.degraded is not None:
            changes["degraded"] = tuple(delta.degraded)
        changes["cancel_requested"] = current.cancel_requested or delta.cancel_requested

        stage_counts: dict[str, int] = {}
        for stage in state.task_stages.values():
            stage_counts[stage.value] = stage_counts.get(stage.value, 0) + 1
        changes["stage_counts"] = stage_counts

        processed = sum(counters.values())
        running = len(state.task_stages)
        changes["running"] = running
        changes["queued"] = max(current.total - processed - running, 0)

        terminal = status in TERMINAL_JOB_STATUSES
        if terminal:
            changes["percentage"] = 100.0
            changes["current_step"] = status.value
            changes["estimated_completion"] = None
        else:
            changes["percentage"] = round(processed / current.total * 100, 1) if current.total else 0.0
            if status == JobStatus.PENDING:
                changes["current_step"] = "queued"
            else:
                changes["current_step"] = f"processed {processed} of {current.total}"
            if started_at is not None and processed > 0:
                elapsed = (now - started_at).total_seconds()
                changes["estimated_completion"] = started_at + timedelta(
                    seconds=elapsed / processed * current.total
                )

        changes["revision"] = current.revision + 1
        changes["updated_at"] = now
        return replace(current, **changes)

    async def subscribe(self, job_id: UUID) -> AsyncIterator[JobSnapshot]:
        """Stream snapshots of a job until its terminal snapshot.

        Yields the current snapshot first, then every later one in revision
        order. Leaving the loop early detaches the subscriber.

        Raises:
            JobNotFoundError: If the job is not tracked
        """
        state = self._jobs.get(job_id)
        if state is None:
            raise JobNotFoundError(job_id)

        current = state.snapshot
        if current.terminal:
            yield current
            return

        queue: asyncio.Queue[JobSnapshot] = asyncio.Queue()
        state.subscribers.add(queue)
        try:
            yield current
            while True:
                snapshot = await queue.get()
                if snapshot.revision <= current.revision:
                    continue
                current = snapshot
                yield snapshot
                if snapshot.terminal:
                    return
        finally:
            state.subscribers.discard(queue)

    def prune(self, retention_seconds: float, now: datetime | None = None) -> list[UUID]:
        """Stop tracking terminal jobs idle for longer than ``retention_seconds``.

        Returns:
            Ids of the jobs that were dropped
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=retention_seconds)
        expired = [
            job_id
            for job_id, state in self._jobs.items()
            if state.snapshot.terminal
            and state.snapshot.updated_at is not None
            and state.snapshot.updated_at < cutoff
            and not state.subscribers
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info("progress.pruned", jobs=len(expired))
        return expired
