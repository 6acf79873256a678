"""HTTP client for the billing endpoints of the platform API."""

from __future__ import annotations

from typing import List
from urllib.parse import quote

from libs.schemas.billing import (
    BillingInfo,
    Invoice,
    PaymentMethod,
    PaymentMethodCreate,
    SetupIntent,
    Subscription,
    SubscriptionCancelRequest,
    SubscriptionUpdate,
    UsageMetrics,
)

from .remote import RemoteError, RemoteServiceClient


def _org_path(org_id: str, suffix: str = "") -> str:
    return f"/v1/orgs/{quote(org_id, safe='')}{suffix}"


class BillingClient(RemoteServiceClient):
    """Typed wrapper around payment methods, subscription, invoices and usage."""

    async def get_billing_info(self, org_id: str) -> BillingInfo:
        return await self._request_json("GET", _org_path(org_id, "/billing"), BillingInfo)

    async def update_billing_info(self, org_id: str, info: BillingInfo) -> BillingInfo:
        """Send a partial update; unset fields are left untouched server side."""

        return await self._request_json(
            "PUT",
            _org_path(org_id, "/billing"),
            BillingInfo,
            json=info.model_dump(mode="json", exclude_unset=True),
        )

    async def list_payment_methods(self, org_id: str) -> List[PaymentMethod]:
        return await self._request_json(
            "GET", _org_path(org_id, "/payment-methods"), List[PaymentMethod]
        )

    async def add_payment_method(self, org_id: str, payment_method_id: str) -> PaymentMethod:
        body = PaymentMethodCreate(payment_method_id=payment_method_id)
        return await self._request_json(
            "POST",
            _org_path(org_id, "/payment-methods"),
            PaymentMethod,
            json=body.model_dump(),
        )

    async def remove_payment_method(self, org_id: str, payment_method_id: str) -> None:
        await self._request_empty(
            "DELETE",
            _org_path(org_id, f"/payment-methods/{quote(payment_method_id, safe='')}"),
        )

    async def set_default_payment_method(self, org_id: str, payment_method_id: str) -> None:
        await self._request_empty(
            "PUT",
            _org_path(org_id, f"/payment-methods/{quote(payment_method_id, safe='')}/default"),
        )

    async def get_subscription(self, org_id: str) -> Subscription | None:
        """Return the current subscription, or ``None`` when the org has none."""

        try:
            return await self._request_json(
                "GET", _org_path(org_id, "/subscription"), Subscription
            )
        except RemoteError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def update_subscription(self, org_id: str, plan_id: str) -> Subscription:
        body = SubscriptionUpdate(plan_id=plan_id)
        return await self._request_json(
            "PUT",
            _org_path(org_id, "/subscription"),
            Subscription,
            json=body.model_dump(),
        )

    async def cancel_subscription(
        self, org_id: str, *, cancel_at_period_end: bool = True
    ) -> Subscription:
        body = SubscriptionCancelRequest(cancel_at_period_end=cancel_at_period_end)
        return await self._request_json(
            "POST",
            _org_path(org_id, "/subscription/cancel"),
            Subscription,
            json=body.model_dump(),
        )

    async def list_invoices(self, org_id: str) -> List[Invoice]:
        return await self._request_json("GET", _org_path(org_id, "/invoices"), List[Invoice])

    async def get_usage(self, org_id: str) -> UsageMetrics:
        return await self._request_json("GET", _org_path(org_id, "/usage"), UsageMetrics)

    async def create_setup_intent(self, org_id: str) -> SetupIntent:
        return await self._request_json("POST", _org_path(org_id, "/setup-intent"), SetupIntent)


__all__ = ["BillingClient", "RemoteError"]
