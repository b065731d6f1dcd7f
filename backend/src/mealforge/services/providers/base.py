"""Interfaces of the external collaborators the pipeline calls.

Implementations raise the service error hierarchy
(``mealforge.services.exceptions``): TransientError subclasses for failures
worth retrying, PermanentError subclasses for deterministic rejections.
"""

from typing import Any, Protocol

import httpx

from mealforge.models.stages import RecipeDraft, TaskResult, ValidationReport
from mealforge.services.exceptions import (
    InvalidProviderInputError,
    ProviderAuthError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ServiceError,
)


class ConceptProvider(Protocol):
    async def draft(self, constraints: dict[str, Any], ordinal: int) -> RecipeDraft | dict: ...


class NutritionValidator(Protocol):
    async def validate(
        self, draft: RecipeDraft, constraints: dict[str, Any]
    ) -> ValidationReport | dict: ...


class ImageProvider(Protocol):
    async def generate(self, prompt: str) -> bytes: ...


class StorageProvider(Protocol):
    async def put(self, data: bytes, key: str) -> str: ...


class PersistenceStore(Protocol):
    async def save(self, result: TaskResult) -> str: ...


class TierConfigSource(Protocol):
    async def get_limits(self, account_id: str) -> dict[str, int]: ...


def raise_for_provider_status(response: httpx.Response, service: str) -> None:
    """Map an HTTP error status to the service error hierarchy.

    Classification:
        - 429 -> RateLimitError (transient)
        - 5xx -> ProviderUnavailableError (transient)
        - 401/403 -> ProviderAuthError (permanent)
        - other 4xx -> InvalidProviderInputError (permanent)
    """
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise RateLimitError(f"{service}: rate limit exceeded: {response.text}")
    if status >= 500:
        raise ProviderUnavailableError(f"{service}: service unavailable ({status}): {response.text}")
    if status in (401, 403):
        raise ProviderAuthError(f"{service}: authentication failed ({status}). Check credentials.")
    raise InvalidProviderInputError(f"{service}: bad request ({status}): {response.text}")


def classify_http_error(error: httpx.HTTPError, service: str) -> ServiceError:
    """Map a transport-level httpx error to a transient service error."""
    if isinstance(error, httpx.TimeoutException):
        return ProviderTimeoutError(f"{service}: request timeout: {error}")
    return ProviderUnavailableError(f"{service}: network error: {error}")
