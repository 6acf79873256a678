"""Subscription plan selection and cancellation."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from libs.schemas.billing import Plan, Subscription, SubscriptionStatus

from .billing_client import BillingClient
from .confirmation import ConfirmationPrompt
from .formatting import format_compact_number, format_gigabytes, format_plan_price
from .notifications import NotificationKind, NotificationSink
from .plans import PLAN_CATALOG, UnknownPlanError, cheapest_plan, index_catalog
from .remote import RemoteError
from .schemas import PlanChangeSummary, PlanOption, PlanSelectionView
from .session import PortalSession

logger = logging.getLogger(__name__)

UPDATE_SUCCESS_MESSAGE = "Subscription updated successfully!"
UPDATE_FAILURE_MESSAGE = "Failed to update subscription"
CANCEL_SUCCESS_MESSAGE = "Subscription will be canceled at the end of the current period"
CANCEL_FAILURE_MESSAGE = "Failed to cancel subscription"
CANCEL_CONFIRMATION_PROMPT = (
    "Cancel your subscription? It stays active until the end of the current billing period."
)

RefreshCallback = Callable[[], Optional[Awaitable[None]]]


async def _invoke(callback: RefreshCallback | None) -> None:
    if callback is None:
        return
    result = callback()
    if inspect.isawaitable(result):
        await result


def describe_change(current: Plan | None, selected: Plan) -> str:
    if current is not None:
        origin = f"{current.name} ({format_plan_price(current)})"
    else:
        origin = "your current plan"
    return (
        f"You're switching from {origin} to {selected.name} ({format_plan_price(selected)}). "
        "The change will take effect immediately and you'll be prorated for the difference."
    )


def describe_limits(plan: Plan) -> dict[str, str]:
    return {
        "api_requests": f"{format_compact_number(plan.limits.api_requests)}/month",
        "storage_gb": format_gigabytes(plan.limits.storage_gb),
        "bandwidth_gb": format_gigabytes(plan.limits.bandwidth_gb),
    }


class PlanSelection:
    """Local plan picker state plus the submit action.

    Selecting a plan never touches the network; only :meth:`submit` does.
    """

    def __init__(
        self,
        session: PortalSession,
        client: BillingClient,
        notifications: NotificationSink,
        *,
        current_plan_id: str | None = None,
        on_updated: RefreshCallback | None = None,
        catalog: Iterable[Plan] = PLAN_CATALOG,
    ) -> None:
        self._session = session
        self._client = client
        self._notifications = notifications
        self._on_updated = on_updated
        self.plans: List[Plan] = list(catalog)
        self._plans_by_id = index_catalog(self.plans)
        self.current_plan_id = current_plan_id
        self.selected_plan_id = current_plan_id or cheapest_plan(self.plans).id
        self.is_open = True
        self.is_updating = False
        self.error: str | None = None
        self.subscription: Subscription | None = None

    @property
    def current_plan(self) -> Plan | None:
        if self.current_plan_id is None:
            return None
        return self._plans_by_id.get(self.current_plan_id)

    @property
    def selected_plan(self) -> Plan:
        return self._plans_by_id[self.selected_plan_id]

    def select(self, plan_id: str) -> PlanChangeSummary | None:
        if plan_id not in self._plans_by_id:
            raise UnknownPlanError(plan_id)
        self.selected_plan_id = plan_id
        self.error = None
        return self.change_summary

    @property
    def can_submit(self) -> bool:
        return self.selected_plan_id != self.current_plan_id and not self.is_updating

    @property
    def change_summary(self) -> PlanChangeSummary | None:
        if self.selected_plan_id == self.current_plan_id:
            return None
        return PlanChangeSummary(
            current_plan_id=self.current_plan_id,
            selected_plan_id=self.selected_plan_id,
            text=describe_change(self.current_plan, self.selected_plan),
        )

    @property
    def submit_label(self) -> str:
        if self.is_updating:
            return "Updating..."
        if self.selected_plan_id == self.current_plan_id:
            return "Current Plan"
        return "Update Subscription"

    def close(self) -> None:
        self.is_open = False

    async def submit(self) -> Subscription | None:
        """Switch the subscription to the selected plan.

        Returns ``None`` when nothing was submitted or the update failed; the
        picker then stays open with the selection untouched.
        """

        if not self.can_submit:
            return None
        org_id = self._session.org_id
        self.is_updating = True
        try:
            subscription = await self._client.update_subscription(org_id, self.selected_plan_id)
        except RemoteError as exc:
            logger.warning(
                "Plan change to %s failed for org %s: %s", self.selected_plan_id, org_id, exc
            )
            self.error = UPDATE_FAILURE_MESSAGE
            self._notifications.add(UPDATE_FAILURE_MESSAGE, NotificationKind.ERROR)
            return None
        finally:
            self.is_updating = False

        self.subscription = subscription
        self.current_plan_id = subscription.plan.id
        self.error = None
        self._notifications.add(UPDATE_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        await _invoke(self._on_updated)
        self.close()
        return subscription

    def to_view(self) -> PlanSelectionView:
        options = [
            PlanOption(
                id=plan.id,
                name=plan.name,
                price_text=format_plan_price(plan),
                description=plan.description,
                features=list(plan.features),
                limits_text=describe_limits(plan),
                popular=plan.popular,
                is_current=plan.id == self.current_plan_id,
                is_selected=plan.id == self.selected_plan_id,
            )
            for plan in self.plans
        ]
        return PlanSelectionView(
            plans=options,
            current_plan_id=self.current_plan_id,
            selected_plan_id=self.selected_plan_id,
            can_submit=self.can_submit,
            submit_label=self.submit_label,
            summary=self.change_summary,
        )


def can_cancel(subscription: Subscription | None) -> bool:
    return (
        subscription is not None
        and subscription.status is SubscriptionStatus.ACTIVE
        and not subscription.cancel_at_period_end
    )


class SubscriptionCancellation:
    """Cancel at period end, behind a confirmation prompt."""

    def __init__(
        self,
        session: PortalSession,
        client: BillingClient,
        notifications: NotificationSink,
        confirmation: ConfirmationPrompt,
        *,
        on_canceled: RefreshCallback | None = None,
    ) -> None:
        self._session = session
        self._client = client
        self._notifications = notifications
        self._confirmation = confirmation
        self._on_canceled = on_canceled
        self.is_canceling = False

    async def cancel(self, subscription: Subscription) -> Subscription | None:
        """Return the updated subscription, or ``None`` when nothing changed."""

        if not can_cancel(subscription):
            return None
        if not await self._confirmation.confirm(CANCEL_CONFIRMATION_PROMPT):
            return None
        org_id = self._session.org_id
        self.is_canceling = True
        try:
            updated = await self._client.cancel_subscription(org_id, cancel_at_period_end=True)
        except RemoteError as exc:
            logger.warning("Cancellation failed for org %s: %s", org_id, exc)
            self._notifications.add(CANCEL_FAILURE_MESSAGE, NotificationKind.ERROR)
            return None
        finally:
            self.is_canceling = False

        self._notifications.add(CANCEL_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        await _invoke(self._on_canceled)
        return updated


__all__ = [
    "PlanSelection",
    "SubscriptionCancellation",
    "can_cancel",
    "describe_change",
    "describe_limits",
]
