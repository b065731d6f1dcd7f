"""Replicate image provider with error classification."""

import asyncio
import os
from typing import Any, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from mealforge.services.exceptions import (
    InvalidProviderInputError,
    MalformedResponseError,
    ProviderAuthError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ServiceError,
)
from mealforge.services.providers.base import classify_http_error, raise_for_provider_status

DEFAULT_MODEL = "black-forest-labs/flux-schnell"


def classify_error(exception: Exception) -> ServiceError:
    """Classify a Replicate SDK or network exception.

    Classification rules:
        - Timeout errors -> ProviderTimeoutError
        - 429 (rate limit) -> RateLimitError
        - 5xx / service unavailable -> ProviderUnavailableError
        - 401/403 (authentication) -> ProviderAuthError
        - Content policy violations -> InvalidProviderInputError
        - Connection errors -> ProviderUnavailableError
        - Anything else -> InvalidProviderInputError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return ProviderTimeoutError(f"Image generation timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return RateLimitError(f"Rate limit exceeded: {error_message}")

    if (
        "500" in error_message
        or "502" in error_message
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        return ProviderUnavailableError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderAuthError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        return InvalidProviderInputError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return ProviderUnavailableError(f"Connection error: {error_message}")

    return InvalidProviderInputError(f"Image generation failed: {error_message}")


class ReplicateImageProvider:
    """Generate a dish photo with a Replicate model and download the bytes."""

    def __init__(
        self,
        api_token: str,
        model_version: Optional[str] = None,
        download_timeout: float = 30.0,
    ):
        self.api_token = api_token
        self.model = model_version or DEFAULT_MODEL
        self.download_timeout = download_timeout

    def _run(self, prompt: str) -> Any:
        # The SDK is synchronous and reads the token from the environment
        old_token = os.environ.get("REPLICATE_API_TOKEN")
        os.environ["REPLICATE_API_TOKEN"] = self.api_token
        try:
            return replicate.run(self.model, input={"prompt": prompt})
        finally:
            if old_token is not None:
                os.environ["REPLICATE_API_TOKEN"] = old_token
            else:
                os.environ.pop("REPLICATE_API_TOKEN", None)

    async def generate(self, prompt: str) -> bytes:
        """Generate one image for ``prompt``.

        Returns:
            Encoded image bytes

        Raises:
            TransientError: Timeouts, rate limits, unavailability
            PermanentError: Missing/invalid token, content policy rejections
        """
        if not self.api_token:
            raise ProviderAuthError("REPLICATE_API_TOKEN not configured")

        try:
            output = await asyncio.to_thread(self._run, prompt)
        except ReplicateAPIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e

        # Output format varies by model
        if isinstance(output, list) and len(output) > 0:
            image_url = str(output[0])
        elif isinstance(output, str) or hasattr(output, "url"):
            image_url = str(output)
        else:
            raise MalformedResponseError(f"Unexpected output format from Replicate: {type(output)}")

        try:
            async with httpx.AsyncClient(timeout=self.download_timeout) as client:
                response = await client.get(image_url)
        except httpx.HTTPError as e:
            raise classify_http_error(e, "replicate-cdn") from e
        raise_for_provider_status(response, "replicate-cdn")
        return response.content
