"""Stage pipeline for one item task.

    queued -> concept -> validation -> image -> dedupe -> storage -> persist

Concept and validation failures fail the task. Image failures, duplicate
images and storage exhaustion fall back to the placeholder image and the
task ends ``success_with_placeholder``. A persist failure fails the task.
Cancellation is checked before each stage.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from mealforge.models.item_task import ItemTask
from mealforge.models.stages import (
    ConceptPayload,
    DedupePayload,
    ImagePayload,
    OutcomeStatus,
    PersistPayload,
    RecipeDraft,
    Stage,
    StageOutcome,
    StoragePayload,
    TaskOutcome,
    TaskResult,
    ValidationPayload,
    ValidationReport,
)
from mealforge.services.adapters.base import ServiceAdapter
from mealforge.services.dedupe.store import PerceptualHashStore
from mealforge.services.exceptions import InvalidImageError, MalformedResponseError
from mealforge.services.resilience.circuit_breaker import BreakerRegistry
from mealforge.services.resilience.retry import RetryPolicy

logger = structlog.get_logger(__name__)


# Stage inputs


@dataclass(frozen=True)
class ConceptInput:
    constraints: dict[str, Any]
    ordinal: int


@dataclass(frozen=True)
class ValidationInput:
    draft: RecipeDraft
    constraints: dict[str, Any]


@dataclass(frozen=True)
class ImageInput:
    prompt: str


@dataclass(frozen=True)
class StorageInput:
    data: bytes = field(repr=False)
    key: str = ""


@dataclass(frozen=True)
class PersistInput:
    result: TaskResult


def build_image_prompt(draft: RecipeDraft) -> str:
    prompt = f"Professional food photography of {draft.name}"
    if draft.description:
        prompt += f", {draft.description.rstrip('.')}"
    return prompt + ". Plated dish, natural light, shallow depth of field."


# Adapter construction from providers


def concept_adapter(provider, timeout: float) -> ServiceAdapter:
    def _normalize(raw, _input):
        draft = raw if isinstance(raw, RecipeDraft) else RecipeDraft.model_validate(raw)
        return ConceptPayload(draft=draft)

    return ServiceAdapter(
        name="concept",
        stage=Stage.CONCEPT,
        call=lambda inp: provider.draft(inp.constraints, inp.ordinal),
        normalize=_normalize,
        timeout=timeout,
    )


def validation_adapter(provider, timeout: float) -> ServiceAdapter:
    def _normalize(raw, _input):
        report = raw if isinstance(raw, ValidationReport) else ValidationReport.model_validate(raw)
        return ValidationPayload(report=report)

    return ServiceAdapter(
        name="validation",
        stage=Stage.VALIDATION,
        call=lambda inp: provider.validate(inp.draft, inp.constraints),
        normalize=_normalize,
        timeout=timeout,
    )


def image_adapter(provider, timeout: float) -> ServiceAdapter:
    def _normalize(raw, inp):
        payload = ImagePayload.model_validate(
            {"prompt": inp.prompt, "image_bytes": raw, "size_bytes": len(raw or b"")}
        )
        if not payload.image_bytes:
            raise MalformedResponseError("image provider returned no bytes")
        return payload

    return ServiceAdapter(
        name="image",
        stage=Stage.IMAGE,
        call=lambda inp: provider.generate(inp.prompt),
        normalize=_normalize,
        timeout=timeout,
    )


def storage_adapter(provider, timeout: float) -> ServiceAdapter:
    return ServiceAdapter(
        name="storage",
        stage=Stage.STORAGE,
        call=lambda inp: provider.put(inp.data, inp.key),
        normalize=lambda raw, _input: StoragePayload.model_validate({"url": raw}),
        timeout=timeout,
    )


def persist_adapter(store, timeout: float) -> ServiceAdapter:
    return ServiceAdapter(
        name="persist",
        stage=Stage.PERSIST,
        call=lambda inp: store.save(inp.result),
        normalize=lambda raw, _input: PersistPayload.model_validate({"record_id": str(raw)}),
        timeout=timeout,
    )


@dataclass
class TaskContext:
    """What a pipeline run needs to know about the job owning the task."""

    job_id: UUID
    account_id: str
    constraints: dict[str, Any]
    scope_key: str
    is_cancelled: Callable[[], bool] = lambda: False


class PipelineListener:
    """Receives stage transitions of a task (no-op by default)."""

    async def stage_started(self, task: ItemTask, stage: Stage) -> None:
        pass

    async def stage_finished(self, task: ItemTask, outcome: StageOutcome) -> None:
        pass


class StagePipeline:
    """Runs item tasks through the stages, each external call via retry and breaker."""

    def __init__(
        self,
        *,
        concept: ServiceAdapter,
        validation: ServiceAdapter,
        image: ServiceAdapter,
        storage: ServiceAdapter,
        persist: ServiceAdapter,
        hash_store: PerceptualHashStore,
        breakers: BreakerRegistry,
        retry_policy: RetryPolicy,
        placeholder_url: str,
    ):
        self.concept = concept
        self.validation = validation
        self.image = image
        self.storage = storage
        self.persist = persist
        self.hash_store = hash_store
        self.breakers = breakers
        self.retry_policy = retry_policy
        self.placeholder_url = placeholder_url

    async def _call(
        self,
        task: ItemTask,
        adapter: ServiceAdapter,
        stage_input: Any,
        listener: PipelineListener,
    ) -> StageOutcome:
        task.enter_stage(adapter.stage)
        await listener.stage_started(task, adapter.stage)
        result = await self.retry_policy.execute(
            self.breakers.get(adapter.name), adapter, stage_input
        )
        task.record_outcome(result.outcome, invocations=result.invocations)
        await listener.stage_finished(task, result.outcome)
        if not result.outcome.ok:
            logger.info(
                "task.stage.failed",
                task_id=str(task.id),
                stage=adapter.stage.value,
                status=result.outcome.status.value,
                attempts=result.attempts,
                error=result.outcome.error,
            )
        return result.outcome

    async def _dedupe(
        self,
        task: ItemTask,
        image: ImagePayload,
        ctx: TaskContext,
        listener: PipelineListener,
    ) -> StageOutcome:
        task.enter_stage(Stage.DEDUPE)
        await listener.stage_started(task, Stage.DEDUPE)
        try:
            result = await self.hash_store.record(str(task.id), image.image_bytes, ctx.scope_key)
        except InvalidImageError as e:
            outcome = StageOutcome(stage=Stage.DEDUPE, status=OutcomeStatus.FATAL, error=str(e))
        else:
            outcome = StageOutcome(
                stage=Stage.DEDUPE,
                status=OutcomeStatus.OK,
                payload=DedupePayload(
                    accepted=result.accepted,
                    fingerprint=result.fingerprint,
                    matched_task_id=result.matched_task_id,
                    distance=result.distance,
                ),
            )
        task.record_outcome(outcome)
        await listener.stage_finished(task, outcome)
        return outcome

    def _fail(self, task: ItemTask, outcome: StageOutcome | None, reason: str) -> TaskOutcome:
        stage = outcome.stage.value if outcome is not None else task.current_stage.value
        task.finish(TaskOutcome.FAILED, error=f"{stage}: {reason}")
        return TaskOutcome.FAILED

    def _cancel(self, task: ItemTask) -> TaskOutcome:
        task.finish(TaskOutcome.CANCELLED, error="job cancelled")
        return TaskOutcome.CANCELLED

    async def produce_image(
        self,
        task: ItemTask,
        draft: RecipeDraft,
        ctx: TaskContext,
        listener: PipelineListener,
    ) -> Optional[tuple[str, bool]]:
        """Run image -> dedupe -> storage.

        Returns:
            (image_url, is_placeholder), or None if the job was cancelled
        """
        if ctx.is_cancelled():
            return None
        image = await self._call(task, self.image, ImageInput(build_image_prompt(draft)), listener)
        if not image.ok:
            return self.placeholder_url, True

        if ctx.is_cancelled():
            return None
        dedupe = await self._dedupe(task, image.payload, ctx, listener)
        if not dedupe.ok or not dedupe.payload.accepted:
            return self.placeholder_url, True

        if ctx.is_cancelled():
            await self._release_fingerprint(task, ctx)
            return None
        storage = await self._call(
            task,
            self.storage,
            StorageInput(data=image.payload.image_bytes, key=str(task.id)),
            listener,
        )
        if not storage.ok:
            await self._release_fingerprint(task, ctx)
            return self.placeholder_url, True
        return storage.payload.url, False

    async def _release_fingerprint(self, task: ItemTask, ctx: TaskContext) -> None:
        # The image was accepted by dedupe but never published
        await self.hash_store.discard(str(task.id), ctx.scope_key)

    async def save_result(
        self,
        task: ItemTask,
        draft: RecipeDraft,
        ctx: TaskContext,
        image_url: str,
        is_placeholder: bool,
        listener: PipelineListener,
    ) -> StageOutcome:
        result = TaskResult(
            task_id=str(task.id),
            job_id=str(ctx.job_id),
            account_id=ctx.account_id,
            draft=draft,
            image_url=image_url,
            is_placeholder=is_placeholder,
        )
        return await self._call(task, self.persist, PersistInput(result), listener)

    async def run(
        self,
        task: ItemTask,
        ctx: TaskContext,
        listener: PipelineListener | None = None,
    ) -> TaskOutcome:
        """Drive a queued task to its final outcome.

        Mutates ``task`` (stage, history, attempts, final outcome) and
        returns the final outcome.
        """
        listener = listener or PipelineListener()

        if ctx.is_cancelled():
            return self._cancel(task)
        concept = await self._call(
            task, self.concept, ConceptInput(ctx.constraints, task.ordinal), listener
        )
        if not concept.ok:
            return self._fail(task, concept, concept.error or concept.status.value)
        draft: RecipeDraft = concept.payload.draft

        if ctx.is_cancelled():
            return self._cancel(task)
        validation = await self._call(
            task, self.validation, ValidationInput(draft, ctx.constraints), listener
        )
        if not validation.ok:
            return self._fail(task, validation, validation.error or validation.status.value)
        report: ValidationReport = validation.payload.report
        if not report.passed:
            issues = "; ".join(report.issues) or "rejected"
            return self._fail(task, validation, f"nutrition validation failed: {issues}")

        produced = await self.produce_image(task, draft, ctx, listener)
        if produced is None:
            return self._cancel(task)
        image_url, is_placeholder = produced

        if ctx.is_cancelled():
            return self._cancel(task)
        persist = await self.save_result(task, draft, ctx, image_url, is_placeholder, listener)
        if not persist.ok:
            return self._fail(task, persist, persist.error or persist.status.value)

        outcome = TaskOutcome.SUCCESS_WITH_PLACEHOLDER if is_placeholder else TaskOutcome.SUCCESS
        task.finish(outcome, image_url=image_url)
        return outcome

    async def heal(
        self,
        task: ItemTask,
        draft: RecipeDraft,
        ctx: TaskContext,
        listener: PipelineListener | None = None,
    ) -> bool:
        """Retry the image path of a placeholder task.

        Returns:
            True if the task now has a real image
        """
        listener = listener or PipelineListener()
        produced = await self.produce_image(task, draft, ctx, listener)
        if produced is None or produced[1]:
            task.current_stage = Stage.DONE
            return False
        image_url, _ = produced

        persist = await self.save_result(task, draft, ctx, image_url, False, listener)
        if not persist.ok:
            task.current_stage = Stage.DONE
            return False
        task.upgrade_placeholder(image_url)
        return True
