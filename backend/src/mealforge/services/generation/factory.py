"""Wire the orchestrator and its collaborators from settings."""

from dataclasses import dataclass
from typing import Any, Optional

from mealforge.core.config import Settings
from mealforge.services.dedupe.store import PerceptualHashStore
from mealforge.services.generation.orchestrator import GenerationOrchestrator
from mealforge.services.generation.pipeline import (
    StagePipeline,
    concept_adapter,
    image_adapter,
    persist_adapter,
    storage_adapter,
    validation_adapter,
)
from mealforge.services.job_store import JobStore
from mealforge.services.progress import ProgressTracker
from mealforge.services.providers.http_content import HttpConceptProvider, HttpNutritionValidator
from mealforge.services.providers.pinata_storage import PinataStorageProvider
from mealforge.services.providers.replicate_image import ReplicateImageProvider
from mealforge.services.providers.sql_recipe_store import SqlRecipeStore
from mealforge.services.quota.ledger import QuotaLedger
from mealforge.services.quota.tiers import StaticTierConfigSource
from mealforge.services.resilience.circuit_breaker import BreakerRegistry, CircuitBreaker
from mealforge.services.resilience.retry import RetryPolicy


@dataclass
class GenerationServices:
    """Everything the app and the workers share within one process."""

    settings: Settings
    uow_factory: Any
    job_store: JobStore
    ledger: QuotaLedger
    tracker: ProgressTracker
    hash_store: PerceptualHashStore
    breakers: BreakerRegistry
    pipeline: StagePipeline
    orchestrator: GenerationOrchestrator


def build_breakers(settings: Settings, clock=None) -> BreakerRegistry:
    def _factory(name: str) -> CircuitBreaker:
        kwargs = {"clock": clock} if clock is not None else {}
        return CircuitBreaker(
            name,
            failure_threshold=settings.breaker_failure_threshold,
            min_samples=settings.breaker_min_samples,
            window_size=max(settings.breaker_window_size, settings.breaker_min_samples),
            cooldown=settings.breaker_cooldown_seconds,
            max_cooldown=settings.breaker_max_cooldown_seconds,
            **kwargs,
        )

    return BreakerRegistry(_factory)


def build_retry_policy(settings: Settings, **overrides) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        jitter=settings.retry_jitter_seconds,
        deadline=settings.stage_deadline_seconds,
        **overrides,
    )


def build_services(
    settings: Settings,
    uow_factory,
    *,
    concept_provider: Optional[Any] = None,
    nutrition_validator: Optional[Any] = None,
    image_provider: Optional[Any] = None,
    storage_provider: Optional[Any] = None,
    persistence_store: Optional[Any] = None,
    tier_source: Optional[Any] = None,
    retry_policy: Optional[RetryPolicy] = None,
    breakers: Optional[BreakerRegistry] = None,
) -> GenerationServices:
    """Build the generation stack.

    Providers default to the HTTP, Replicate, Pinata and SQL implementations
    configured by ``settings``; tests pass fakes instead.
    """
    concept_provider = concept_provider or HttpConceptProvider(
        settings.content_service_url,
        token=settings.content_service_token,
        timeout=settings.concept_timeout_seconds,
    )
    nutrition_validator = nutrition_validator or HttpNutritionValidator(
        settings.nutrition_service_url or settings.content_service_url,
        token=settings.content_service_token,
        timeout=settings.validation_timeout_seconds,
    )
    image_provider = image_provider or ReplicateImageProvider(
        settings.replicate_api_token, settings.replicate_model_version
    )
    storage_provider = storage_provider or PinataStorageProvider(
        settings.pinata_jwt,
        gateway_domain=settings.pinata_gateway,
        timeout=settings.storage_timeout_seconds,
    )
    persistence_store = persistence_store or SqlRecipeStore(uow_factory)
    tier_source = tier_source or StaticTierConfigSource(
        settings.account_tiers, default_tier=settings.default_tier
    )

    breakers = breakers or build_breakers(settings)
    hash_store = PerceptualHashStore(
        threshold=settings.dedupe_threshold,
        scope=settings.duplicate_scope,
        uow_factory=uow_factory,
    )
    pipeline = StagePipeline(
        concept=concept_adapter(concept_provider, settings.concept_timeout_seconds),
        validation=validation_adapter(nutrition_validator, settings.validation_timeout_seconds),
        image=image_adapter(image_provider, settings.image_timeout_seconds),
        storage=storage_adapter(storage_provider, settings.storage_timeout_seconds),
        persist=persist_adapter(persistence_store, settings.persist_timeout_seconds),
        hash_store=hash_store,
        breakers=breakers,
        retry_policy=retry_policy or build_retry_policy(settings),
        placeholder_url=settings.placeholder_image_url,
    )

    job_store = JobStore(uow_factory)
    ledger = QuotaLedger(uow_factory, tier_source)
    tracker = ProgressTracker()
    orchestrator = GenerationOrchestrator(
        job_store=job_store,
        ledger=ledger,
        tracker=tracker,
        pipeline=pipeline,
        hash_store=hash_store,
        breakers=breakers,
        resource_kind=settings.quota_resource_kind,
        parallelism=settings.job_parallelism,
        max_items=settings.max_items_per_request,
    )
    return GenerationServices(
        settings=settings,
        uow_factory=uow_factory,
        job_store=job_store,
        ledger=ledger,
        tracker=tracker,
        hash_store=hash_store,
        breakers=breakers,
        pipeline=pipeline,
        orchestrator=orchestrator,
    )
