"""HTTP client for the API key endpoints of the platform API."""

from __future__ import annotations

from typing import List
from urllib.parse import quote

from libs.schemas.apikeys import ApiKey, ApiKeyCreate, ApiKeyVerification, ApiKeyVerifyRequest

from .remote import RemoteServiceClient


class ApiKeysClient(RemoteServiceClient):
    """Create, list, verify and revoke API keys."""

    async def create_api_key(self, request: ApiKeyCreate) -> ApiKey:
        """Create a key. The returned model is the only one carrying the secret."""

        return await self._request_json(
            "POST",
            "/v1/apikeys",
            ApiKey,
            json=request.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    async def verify_api_key(self, api_key: str) -> ApiKeyVerification:
        body = ApiKeyVerifyRequest(api_key=api_key)
        return await self._request_json(
            "POST",
            "/v1/apikeys/verify",
            ApiKeyVerification,
            json=body.model_dump(by_alias=True),
        )

    async def list_api_keys(self, org_id: str) -> List[ApiKey]:
        return await self._request_json(
            "GET", f"/v1/orgs/{quote(org_id, safe='')}/apikeys", List[ApiKey]
        )

    async def revoke_api_key(self, key_id: str) -> None:
        await self._request_empty("DELETE", f"/v1/apikeys/{quote(key_id, safe='')}")


__all__ = ["ApiKeysClient"]
