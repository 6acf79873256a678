"""Structured logging helpers shared by the portal services."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

REQUEST_ID_HEADER = "x-request-id"

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_RESERVED_ATTRS = set(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def get_request_id() -> str | None:
    """Return the identifier of the request currently being served."""

    return _request_id_var.get()


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "msg": record.getMessage(),
            "request_id": get_request_id(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(service_name: str, level: str | int | None = None) -> None:
    """Install the JSON formatter on the root logger once per process."""

    resolved = level or os.getenv("LOG_LEVEL", "INFO")
    root = logging.getLogger()
    for handler in root.handlers:
        if getattr(handler, "_portal_service", None) == service_name:
            root.setLevel(resolved)
            return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(service_name))
    handler._portal_service = service_name  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(resolved)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request id to every log line emitted while serving a request."""

    def __init__(self, app, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name
        self._logger = logging.getLogger(f"{service_name}.access")

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = _request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "Unhandled error while serving %s %s", request.method, request.url.path
            )
            raise
        finally:
            _request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        self._logger.info(
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "request_id": request_id,
            },
        )
        return response


__all__ = [
    "JsonFormatter",
    "REQUEST_ID_HEADER",
    "RequestContextMiddleware",
    "configure_logging",
    "get_request_id",
]
