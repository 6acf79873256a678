"""Payment method list actions: set default and remove."""

from __future__ import annotations

import logging
from typing import Iterable, List

from libs.schemas.billing import PaymentMethod

from .billing_client import BillingClient
from .confirmation import ConfirmationPrompt
from .formatting import payment_method_expiry, payment_method_label
from .notifications import NotificationKind, NotificationSink
from .remote import RemoteError
from .schemas import PaymentMethodView
from .session import PortalSession

logger = logging.getLogger(__name__)

REMOVE_CONFIRMATION_PROMPT = "Remove this payment method? This cannot be undone."


def to_payment_method_view(method: PaymentMethod) -> PaymentMethodView:
    return PaymentMethodView(
        id=method.id,
        label=payment_method_label(method),
        expiry=payment_method_expiry(method),
        is_default=method.is_default,
    )


class PaymentMethodsPanel:
    """Holds the rendered list and applies confirmed changes to it locally."""

    def __init__(
        self,
        session: PortalSession,
        client: BillingClient,
        notifications: NotificationSink,
        confirmation: ConfirmationPrompt,
        methods: Iterable[PaymentMethod] = (),
    ) -> None:
        self._session = session
        self._client = client
        self._notifications = notifications
        self._confirmation = confirmation
        self.methods: List[PaymentMethod] = list(methods)
        self.deleting_id: str | None = None

    async def load(self) -> List[PaymentMethod]:
        self.methods = await self._client.list_payment_methods(self._session.org_id)
        return self.methods

    def _require(self, payment_method_id: str) -> None:
        if not any(method.id == payment_method_id for method in self.methods):
            raise KeyError(payment_method_id)

    async def set_default(self, payment_method_id: str) -> bool:
        self._require(payment_method_id)
        try:
            await self._client.set_default_payment_method(
                self._session.org_id, payment_method_id
            )
        except RemoteError as exc:
            logger.warning("Unable to set default payment method %s: %s", payment_method_id, exc)
            self._notifications.add(
                "Failed to update default payment method", NotificationKind.ERROR
            )
            return False
        self.methods = [
            method.model_copy(update={"is_default": method.id == payment_method_id})
            for method in self.methods
        ]
        self._notifications.add("Default payment method updated", NotificationKind.SUCCESS)
        return True

    async def remove(self, payment_method_id: str) -> bool:
        self._require(payment_method_id)
        if not await self._confirmation.confirm(REMOVE_CONFIRMATION_PROMPT):
            return False
        self.deleting_id = payment_method_id
        try:
            await self._client.remove_payment_method(self._session.org_id, payment_method_id)
        except RemoteError as exc:
            logger.warning("Unable to remove payment method %s: %s", payment_method_id, exc)
            self._notifications.add("Failed to remove payment method", NotificationKind.ERROR)
            return False
        finally:
            self.deleting_id = None
        self.methods = [method for method in self.methods if method.id != payment_method_id]
        self._notifications.add("Payment method removed successfully", NotificationKind.SUCCESS)
        return True

    def to_views(self) -> List[PaymentMethodView]:
        return [to_payment_method_view(method) for method in self.methods]


__all__ = ["PaymentMethodsPanel", "to_payment_method_view"]
