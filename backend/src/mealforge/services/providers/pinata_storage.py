"""Durable image storage through the Pinata pinning service."""

import json
from typing import Optional

import httpx

from mealforge.services.exceptions import MalformedResponseError, ProviderAuthError
from mealforge.services.providers.base import classify_http_error, raise_for_provider_status


class PinataStorageProvider:
    """Upload image bytes to IPFS via Pinata and return a gateway URL."""

    def __init__(
        self,
        jwt_token: str,
        gateway_domain: str = "gateway.pinata.cloud",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Pinata storage.

        Args:
            jwt_token: Pinata API JWT token (from PINATA_JWT env var)
            gateway_domain: Gateway domain for URL generation
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.jwt_token = jwt_token
        self.gateway_domain = gateway_domain
        self.timeout = timeout
        self.base_url = "https://api.pinata.cloud"
        self._transport = transport

    async def put(self, data: bytes, key: str) -> str:
        """Pin image bytes under a semantic filename.

        Args:
            data: Encoded image
            key: Stable object key (the task id), used as filename and metadata

        Returns:
            Public gateway URL of the pinned file

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid JWT (401), forbidden (403), bad request (400)
        """
        if not self.jwt_token:
            raise ProviderAuthError("PINATA_JWT not configured")

        filename = f"recipe-{key}.png"
        pinata_metadata = {"name": filename, "keyvalues": {"task_id": key}}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/pinning/pinFileToIPFS",
                    headers={"Authorization": f"Bearer {self.jwt_token}"},
                    files={"file": (filename, data, "image/png")},
                    data={
                        "pinataOptions": '{"cidVersion": 1}',
                        "pinataMetadata": json.dumps(pinata_metadata),
                    },
                )
        except httpx.HTTPError as e:
            raise classify_http_error(e, "pinata") from e

        raise_for_provider_status(response, "pinata")
        try:
            cid = response.json()["IpfsHash"]
        except (ValueError, KeyError) as e:
            raise MalformedResponseError("pinata: response has no IpfsHash") from e
        return self.get_gateway_url(cid)

    def get_gateway_url(self, cid: str) -> str:
        """Convert CID to gateway URL (e.g. "https://gateway.pinata.cloud/ipfs/<CID>")."""
        return f"https://{self.gateway_domain}/ipfs/{cid}"
