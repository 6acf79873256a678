"""Shared HTTP plumbing for the platform API clients."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class RemoteError(RuntimeError):
    """Raised when the platform API cannot fulfil a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.context = context or {}


def _extract_error_payload(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return response.text


def _interpret_error(response: httpx.Response, *, url: str) -> RemoteError:
    payload = _extract_error_payload(response)
    message = f"Platform API answered with status {response.status_code}."
    if isinstance(payload, dict):
        for key in ("detail", "message", "error"):
            candidate = payload.get(key)
            if isinstance(candidate, str) and candidate.strip():
                message = candidate.strip()
                break
    elif isinstance(payload, str) and payload.strip():
        message = payload.strip()
    return RemoteError(
        message,
        status_code=response.status_code,
        context={"url": url, "payload": payload, "status_code": response.status_code},
    )


@dataclass
class RemoteServiceClient:
    """Tiny async wrapper around the platform HTTP API.

    Every call is a fresh request: nothing is cached and nothing is retried.
    """

    base_url: str
    access_token: str | None = field(default=None, repr=False)
    timeout: float | None = None
    transport: httpx.AsyncBaseTransport | None = None

    def __post_init__(self) -> None:
        headers = {"accept": "application/json"}
        if self.access_token:
            headers["authorization"] = f"Bearer {self.access_token}"
        options: dict[str, Any] = {
            "base_url": self.base_url,
            "headers": headers,
            "transport": self.transport,
        }
        if self.timeout is not None:
            options["timeout"] = self.timeout
        self._client = httpx.AsyncClient(**options)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, object] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Platform API request %s %s failed: %s", method, path, exc)
            raise RemoteError(
                "Unable to reach the platform API.",
                context={"url": path, "error": str(exc)},
            ) from exc
        if response.status_code >= 400:
            error = _interpret_error(response, url=str(response.request.url))
            logger.warning(
                "Platform API request %s %s answered %s: %s",
                method,
                path,
                response.status_code,
                error.message,
            )
            raise error
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        model: type[ModelT] | Any,
        *,
        json: Mapping[str, object] | None = None,
    ) -> ModelT:
        response = await self._send(method, path, json=json)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteError(
                "Platform API returned non JSON payload",
                status_code=response.status_code,
                context={"url": path},
            ) from exc
        try:
            if isinstance(model, type) and issubclass(model, BaseModel):
                return model.model_validate(payload)
            return TypeAdapter(model).validate_python(payload)
        except ValidationError as exc:
            raise RemoteError(
                "Unable to parse platform API payload",
                status_code=response.status_code,
                context={"url": path, "errors": exc.errors(include_url=False)},
            ) from exc

    async def _request_empty(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, object] | None = None,
    ) -> None:
        await self._send(method, path, json=json)


__all__ = ["RemoteError", "RemoteServiceClient"]
