"""HTTP clients for the recipe concept service and the nutrition validator."""

from typing import Any, Optional

import httpx

from mealforge.models.stages import RecipeDraft
from mealforge.services.exceptions import MalformedResponseError
from mealforge.services.providers.base import classify_http_error, raise_for_provider_status


class _JsonServiceClient:
    """POST JSON to one endpoint and return the decoded body."""

    service_name = "content"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._transport = transport

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}{path}", headers=self.headers, json=payload
                )
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.service_name) from e

        raise_for_provider_status(response, self.service_name)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{self.service_name}: response is not JSON") from e


class HttpConceptProvider(_JsonServiceClient):
    """Drafts one recipe concept per call.

    Request body: ``{"constraints": {...}, "ordinal": n}``.
    Response body: a recipe draft object, optionally wrapped as ``{"recipe": {...}}``.
    """

    service_name = "concept"

    async def draft(self, constraints: dict[str, Any], ordinal: int) -> dict:
        body = await self._post("/recipes/draft", {"constraints": constraints, "ordinal": ordinal})
        if isinstance(body, dict) and isinstance(body.get("recipe"), dict):
            return body["recipe"]
        return body


class HttpNutritionValidator(_JsonServiceClient):
    """Scores a draft against the request's nutritional constraints.

    Response body: ``{"passed": bool, "score": float?, "issues": [str]}``.
    """

    service_name = "nutrition"

    async def validate(self, draft: RecipeDraft, constraints: dict[str, Any]) -> dict:
        return await self._post(
            "/nutrition/validate",
            {"recipe": draft.model_dump(mode="json"), "constraints": constraints},
        )
