"""ServiceAdapter outcome classification and stage payload normalization."""

import asyncio

import pytest

from mealforge.models.stages import ConceptPayload, OutcomeStatus, Stage
from mealforge.services.adapters.base import ServiceAdapter
from mealforge.services.exceptions import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderUnavailableError,
)
from mealforge.services.generation.pipeline import (
    ConceptInput,
    ImageInput,
    concept_adapter,
    image_adapter,
    storage_adapter,
    StorageInput,
)

from fakes import FakeConceptProvider, make_recipe


def _adapter(call, normalize=lambda raw, _input: raw, timeout=1.0) -> ServiceAdapter:
    return ServiceAdapter(
        name="concept", stage=Stage.CONCEPT, call=call, normalize=normalize, timeout=timeout
    )


@pytest.mark.asyncio
async def test_ok_outcome_carries_payload_and_latency():
    async def call(_input):
        return "value"

    outcome = await _adapter(call).invoke(None)

    assert outcome.status == OutcomeStatus.OK
    assert outcome.payload == "value"
    assert outcome.stage == Stage.CONCEPT
    assert outcome.latency_ms >= 0


@pytest.mark.asyncio
async def test_timeout_is_retryable():
    async def call(_input):
        await asyncio.sleep(10)

    outcome = await _adapter(call, timeout=0.01).invoke(None)

    assert outcome.status == OutcomeStatus.RETRYABLE
    assert "timeout" in outcome.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, status",
    [
        (ProviderUnavailableError("503"), OutcomeStatus.RETRYABLE),
        (MalformedResponseError("not json"), OutcomeStatus.RETRYABLE),
        (RuntimeError("boom"), OutcomeStatus.RETRYABLE),
        (ProviderAuthError("401"), OutcomeStatus.FATAL),
    ],
)
async def test_error_classification(error, status):
    async def call(_input):
        raise error

    outcome = await _adapter(call).invoke(None)

    assert outcome.status == status
    assert type(error).__name__ in outcome.error


@pytest.mark.asyncio
async def test_concept_adapter_validates_draft():
    adapter = concept_adapter(FakeConceptProvider(), timeout=1.0)

    outcome = await adapter.invoke(ConceptInput(constraints={"meal_types": ["dinner"]}, ordinal=2))

    assert outcome.ok
    assert isinstance(outcome.payload, ConceptPayload)
    assert outcome.payload.draft.name == "Protein Bowl 2"
    assert outcome.payload.draft.meal_types == ["dinner"]


@pytest.mark.asyncio
async def test_concept_adapter_malformed_draft_is_retryable():
    class Broken:
        async def draft(self, constraints, ordinal):
            recipe = make_recipe(ordinal)
            del recipe["ingredients"]
            return recipe

    outcome = await concept_adapter(Broken(), timeout=1.0).invoke(ConceptInput({}, 0))

    assert outcome.status == OutcomeStatus.RETRYABLE
    assert "malformed response" in outcome.error


@pytest.mark.asyncio
async def test_image_adapter_rejects_empty_bytes():
    class Empty:
        async def generate(self, prompt):
            return b""

    outcome = await image_adapter(Empty(), timeout=1.0).invoke(ImageInput("a dish"))

    assert outcome.status == OutcomeStatus.RETRYABLE


@pytest.mark.asyncio
async def test_storage_adapter_requires_url():
    class NoUrl:
        async def put(self, data, key):
            return ""

    outcome = await storage_adapter(NoUrl(), timeout=1.0).invoke(StorageInput(b"x", "k"))

    assert outcome.status == OutcomeStatus.RETRYABLE
