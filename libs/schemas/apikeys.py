"""Pydantic schemas for API key issuance and verification."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyState(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class ApiKey(BaseModel):
    """API key as returned by the platform.

    ``key`` holds the secret and is only present in the creation response.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    key_id: str = Field(..., alias="keyId")
    key: str | None = Field(default=None, repr=False)
    name: str
    scopes: List[str] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    state: ApiKeyState = ApiKeyState.ACTIVE

    def without_secret(self) -> "ApiKey":
        return self.model_copy(update={"key": None})


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=128)
    org_id: str = Field(..., alias="orgId", min_length=1)
    project_id: str | None = Field(default=None, alias="projectId")
    description: str | None = None
    scopes: List[str] = Field(..., min_length=1)
    expires_at: datetime | None = Field(default=None, alias="expiresAt")


class ApiKeyVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)


class ApiKeyVerification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    org_id: str | None = Field(default=None, alias="orgId")
    project_id: str | None = Field(default=None, alias="projectId")
    scopes: List[str] | None = None


__all__ = [
    "ApiKey",
    "ApiKeyCreate",
    "ApiKeyState",
    "ApiKeyVerification",
    "ApiKeyVerifyRequest",
]
