"""HTTP provider tests against httpx.MockTransport (no network)."""

import json

import httpx
import pytest

from mealforge.models.stages import RecipeDraft
from mealforge.services.exceptions import (
    InvalidProviderInputError,
    MalformedResponseError,
    ProviderAuthError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
)
from mealforge.services.providers.http_content import HttpConceptProvider, HttpNutritionValidator
from mealforge.services.providers.pinata_storage import PinataStorageProvider
from mealforge.services.providers.replicate_image import classify_error

from fakes import make_recipe


def _transport(handler):
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_concept_provider_posts_constraints_and_unwraps_recipe():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"recipe": make_recipe(4)})

    provider = HttpConceptProvider(
        "https://content.test/", token="secret", transport=_transport(handler)
    )
    draft = await provider.draft({"meal_types": ["dinner"]}, 4)

    assert seen["path"] == "/recipes/draft"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"constraints": {"meal_types": ["dinner"]}, "ordinal": 4}
    assert draft["name"] == "Protein Bowl 4"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (429, RateLimitError),
        (503, ProviderUnavailableError),
        (401, ProviderAuthError),
        (403, ProviderAuthError),
        (422, InvalidProviderInputError),
    ],
)
async def test_http_status_classification(status, error):
    provider = HttpConceptProvider(
        "https://content.test",
        transport=_transport(lambda request: httpx.Response(status, text="nope")),
    )

    with pytest.raises(error):
        await provider.draft({}, 0)


@pytest.mark.asyncio
async def test_network_errors_are_transient():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderTimeoutError):
        await HttpConceptProvider("https://content.test", transport=_transport(timeout)).draft(
            {}, 0
        )
    with pytest.raises(ProviderUnavailableError):
        await HttpConceptProvider("https://content.test", transport=_transport(refused)).draft(
            {}, 0
        )


@pytest.mark.asyncio
async def test_non_json_body_is_malformed():
    provider = HttpNutritionValidator(
        "https://nutrition.test",
        transport=_transport(lambda request: httpx.Response(200, text="<html>")),
    )
    draft = RecipeDraft.model_validate(make_recipe(0))

    with pytest.raises(MalformedResponseError):
        await provider.validate(draft, {})


@pytest.mark.asyncio
async def test_nutrition_validator_sends_recipe():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"passed": True, "score": 0.8, "issues": []})

    provider = HttpNutritionValidator("https://nutrition.test", transport=_transport(handler))
    report = await provider.validate(
        RecipeDraft.model_validate(make_recipe(1)), {"fitness_goal": "cut"}
    )

    assert seen["path"] == "/nutrition/validate"
    assert seen["body"]["recipe"]["name"] == "Protein Bowl 1"
    assert seen["body"]["constraints"] == {"fitness_goal": "cut"}
    assert report["passed"] is True


@pytest.mark.asyncio
async def test_pinata_put_returns_gateway_url():
    def handler(request):
        assert request.url.path == "/pinning/pinFileToIPFS"
        assert request.headers["Authorization"] == "Bearer jwt"
        return httpx.Response(200, json={"IpfsHash": "bafyrecipe"})

    storage = PinataStorageProvider(
        "jwt", gateway_domain="gw.test", transport=_transport(handler)
    )

    url = await storage.put(b"\x89PNG", "task-1")

    assert url == "https://gw.test/ipfs/bafyrecipe"


@pytest.mark.asyncio
async def test_pinata_requires_jwt():
    with pytest.raises(ProviderAuthError):
        await PinataStorageProvider("").put(b"data", "task-1")


@pytest.mark.asyncio
async def test_pinata_missing_hash_is_malformed():
    storage = PinataStorageProvider(
        "jwt", transport=_transport(lambda request: httpx.Response(200, json={}))
    )
    with pytest.raises(MalformedResponseError):
        await storage.put(b"data", "task-1")


@pytest.mark.parametrize(
    "message, error",
    [
        ("Request timeout", ProviderTimeoutError),
        ("HTTP 429 Too Many Requests", RateLimitError),
        ("503 Service Unavailable", ProviderUnavailableError),
        ("401 Unauthorized", ProviderAuthError),
        ("NSFW content detected", InvalidProviderInputError),
        ("something odd", InvalidProviderInputError),
    ],
)
def test_replicate_error_classification(message, error):
    assert isinstance(classify_error(Exception(message)), error)
