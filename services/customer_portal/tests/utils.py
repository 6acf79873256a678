from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Tuple

import httpx

from services.customer_portal.app.apikeys_client import ApiKeysClient
from services.customer_portal.app.billing_client import BillingClient
from services.customer_portal.app.notifications import NotificationQueue
from services.customer_portal.app.session import PortalSession
from services.customer_portal.app.tokenization import TokenizationError

ORG_ID = "org-1"
BASE_URL = "http://platform.test"

Handler = Callable[[httpx.Request], httpx.Response]


def make_session(org_id: str = ORG_ID) -> PortalSession:
    return PortalSession(org_id=org_id, access_token="token-123", user_email="ops@example.com")


def plan_payload(plan_id: str = "starter") -> dict[str, Any]:
    prices = {"starter": 29, "professional": 99, "enterprise": 299}
    limits = {
        "starter": (10_000, 10, 100),
        "professional": (100_000, 50, 500),
        "enterprise": (1_000_000, 500, 5_000),
    }
    requests, storage, bandwidth = limits[plan_id]
    return {
        "id": plan_id,
        "name": plan_id.capitalize(),
        "price": prices[plan_id],
        "currency": "usd",
        "interval": "month",
        "features": [f"{requests:,} API requests/month"],
        "limits": {"api_requests": requests, "storage_gb": storage, "bandwidth_gb": bandwidth},
    }


def subscription_payload(
    plan_id: str = "starter",
    *,
    status: str = "active",
    cancel_at_period_end: bool = False,
) -> dict[str, Any]:
    return {
        "id": "sub_1",
        "status": status,
        "plan": plan_payload(plan_id),
        "current_period_start": "2025-01-15T00:00:00Z",
        "current_period_end": "2025-02-15T00:00:00Z",
        "cancel_at_period_end": cancel_at_period_end,
    }


def card_payload(
    method_id: str,
    *,
    brand: str = "visa",
    last4: str = "4242",
    is_default: bool = False,
) -> dict[str, Any]:
    return {
        "id": method_id,
        "type": "card",
        "card": {"brand": brand, "last4": last4, "exp_month": 8, "exp_year": 2026},
        "is_default": is_default,
    }


def invoice_payload(
    invoice_id: str = "in_1",
    *,
    status: str = "open",
    amount_paid: int = 0,
    amount_due: int = 2900,
) -> dict[str, Any]:
    return {
        "id": invoice_id,
        "number": "FLR-0001",
        "status": status,
        "amount_paid": amount_paid,
        "amount_due": amount_due,
        "currency": "usd",
        "created": "2025-01-15T00:00:00Z",
        "due_date": "2025-01-22T00:00:00Z",
        "invoice_pdf": f"https://pay.example.com/{invoice_id}.pdf",
    }


def usage_payload(
    api_requests: Tuple[float, float] = (7_450, 10_000),
    storage_gb: Tuple[float, float] = (3.2, 10),
    bandwidth_gb: Tuple[float, float] = (41, 100),
) -> dict[str, Any]:
    return {
        "api_requests": {"current": api_requests[0], "limit": api_requests[1]},
        "storage_gb": {"current": storage_gb[0], "limit": storage_gb[1]},
        "bandwidth_gb": {"current": bandwidth_gb[0], "limit": bandwidth_gb[1]},
    }


@dataclass
class FakePlatform:
    """Route table answering platform API calls and recording every request."""

    routes: Dict[Tuple[str, str], Any] = field(default_factory=dict)
    requests: List[httpx.Request] = field(default_factory=list)

    def on(self, method: str, path: str, response: Any, status_code: int = 200) -> "FakePlatform":
        if callable(response):
            self.routes[(method, path)] = response
        elif isinstance(response, httpx.Response):
            self.routes[(method, path)] = lambda request: httpx.Response(
                response.status_code, headers=response.headers, content=response.content
            )
        else:
            self.routes[(method, path)] = lambda request: httpx.Response(
                status_code, json=response
            )
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str | None = None, path: str | None = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method)
            and (path is None or request.url.path == path)
        ]

    def billing_client(self) -> BillingClient:
        return BillingClient(base_url=BASE_URL, access_token="token-123", transport=self.transport)

    def apikeys_client(self) -> ApiKeysClient:
        return ApiKeysClient(base_url=BASE_URL, access_token="token-123", transport=self.transport)


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content.decode()) if request.content else None


def org_path(suffix: str = "", org_id: str = ORG_ID) -> str:
    return f"/v1/orgs/{org_id}{suffix}"


class FakeTokenizer:
    def __init__(self, *, result: str = "pm_new", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[Tuple[str, str, Mapping[str, Any]]] = []

    async def confirm_setup(
        self, client_secret: str, card_handle: str, billing_details: Mapping[str, Any]
    ) -> str:
        self.calls.append((client_secret, card_handle, billing_details))
        if self.error is not None:
            raise self.error
        return self.result


def messages(queue: NotificationQueue) -> List[Tuple[str, str]]:
    return [(item.kind.value, item.message) for item in queue.active()]
