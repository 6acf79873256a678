"""Billing overview: concurrent fetches and the UI state derived from them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, TypeVar

from libs.schemas.billing import (
    Invoice,
    PaymentMethod,
    Subscription,
    UsageCounter,
    UsageMetrics,
)

from . import demo
from .billing_client import BillingClient
from .formatting import (
    format_amount,
    format_date,
    format_plan_price,
    invoice_badge,
    round_half_up,
    subscription_badge,
)
from .payment_methods import to_payment_method_view
from .plan_selection import can_cancel
from .remote import RemoteError
from .schemas import (
    BillingOverview,
    InvoiceView,
    SectionState,
    SectionStatus,
    SubscriptionView,
    UsageMeter,
    UsageSeverity,
    UsageSummary,
)
from .session import PortalSession

logger = logging.getLogger(__name__)

WARNING_RATIO = 0.75
CRITICAL_RATIO = 0.90
ALERT_RATIO = 0.80

USAGE_COUNTERS = (
    ("api_requests", "API Requests", ""),
    ("storage_gb", "Storage", "GB"),
    ("bandwidth_gb", "Bandwidth", "GB"),
)

T = TypeVar("T")


def usage_ratio(counter: UsageCounter) -> float:
    """Uncapped current / limit. A non-positive limit counts as unlimited."""

    if counter.limit <= 0:
        return 0.0
    return counter.current / counter.limit


def classify_severity(ratio: float) -> UsageSeverity:
    if ratio >= CRITICAL_RATIO:
        return UsageSeverity.critical
    if ratio >= WARNING_RATIO:
        return UsageSeverity.warning
    return UsageSeverity.nominal


def build_usage_meter(name: str, label: str, unit: str, counter: UsageCounter) -> UsageMeter:
    ratio = usage_ratio(counter)
    percentage = round_half_up(ratio * 100)
    return UsageMeter(
        name=name,
        label=label,
        unit=unit,
        current=counter.current,
        limit=counter.limit,
        ratio=ratio,
        percentage=percentage,
        bar_width=max(0, min(percentage, 100)),
        severity=classify_severity(ratio),
    )


def summarise_usage(metrics: UsageMetrics) -> UsageSummary:
    meters = [
        build_usage_meter(name, label, unit, getattr(metrics, name))
        for name, label, unit in USAGE_COUNTERS
    ]
    return UsageSummary(
        meters=meters,
        show_alert=any(meter.ratio >= ALERT_RATIO for meter in meters),
    )


def to_subscription_view(subscription: Subscription) -> SubscriptionView:
    end_text = format_date(subscription.current_period_end)
    ending_notice = None
    if subscription.cancel_at_period_end:
        ending_notice = f"Your subscription will end on {end_text}"
    return SubscriptionView(
        id=subscription.id,
        plan_id=subscription.plan.id,
        plan_name=subscription.plan.name,
        price_text=format_plan_price(subscription.plan),
        badge=subscription_badge(subscription.status),
        features=list(subscription.plan.features),
        period_text=f"{format_date(subscription.current_period_start)} - {end_text}",
        next_billing_text="Not scheduled" if subscription.cancel_at_period_end else end_text,
        ending_notice=ending_notice,
        can_cancel=can_cancel(subscription),
    )


def to_invoice_view(invoice: Invoice) -> InvoiceView:
    return InvoiceView(
        id=invoice.id,
        number=invoice.number,
        amount_text=format_amount(invoice.amount, invoice.currency),
        badge=invoice_badge(invoice.status),
        created_text=format_date(invoice.created),
        due_text=format_date(invoice.due_date),
        invoice_pdf=invoice.invoice_pdf,
        hosted_invoice_url=invoice.hosted_invoice_url,
    )


@dataclass
class Section(Generic[T]):
    """Independent load state of one fetched resource."""

    label: str
    state: SectionState = SectionState.loading
    data: T | None = None
    error: str | None = None
    source: str = "live"

    def status(self) -> SectionStatus:
        return SectionStatus(state=self.state, error=self.error, source=self.source)


class RefreshTrigger:
    """Counter bumped by workflows to ask the overview to reload."""

    def __init__(self, value: int = 0) -> None:
        self.value = value

    def bump(self) -> int:
        self.value += 1
        return self.value


class BillingOverviewAggregator:
    """Load subscription, payment methods, invoices and usage side by side."""

    def __init__(
        self,
        session: PortalSession,
        client: BillingClient,
        *,
        demo_fallback: bool = False,
        refresh_trigger: RefreshTrigger | None = None,
    ) -> None:
        self._session = session
        self._client = client
        self.demo_fallback = demo_fallback
        self.refresh_trigger = refresh_trigger or RefreshTrigger()
        self._loaded_trigger: int | None = None
        self.subscription: Section[Subscription] = Section("subscription")
        self.payment_methods: Section[List[PaymentMethod]] = Section("payment methods")
        self.invoices: Section[List[Invoice]] = Section("invoices")
        self.usage: Section[UsageMetrics] = Section("usage metrics")

    @property
    def needs_reload(self) -> bool:
        return self._loaded_trigger != self.refresh_trigger.value

    async def load(self) -> BillingOverview:
        org_id = self._session.org_id
        self._loaded_trigger = self.refresh_trigger.value
        await asyncio.gather(
            self._fetch(
                self.subscription,
                lambda: self._client.get_subscription(org_id),
                demo.fallback_subscription,
            ),
            self._fetch(
                self.payment_methods,
                lambda: self._client.list_payment_methods(org_id),
                demo.fallback_payment_methods,
            ),
            self._fetch(
                self.invoices,
                lambda: self._client.list_invoices(org_id),
                demo.fallback_invoices,
            ),
            self._fetch(self.usage, lambda: self._client.get_usage(org_id), demo.fallback_usage),
        )
        return self.snapshot()

    async def refresh_if_needed(self) -> bool:
        if not self.needs_reload:
            return False
        await self.load()
        return True

    async def _fetch(
        self,
        section: Section[T],
        loader: Callable[[], Awaitable[T | None]],
        fallback: Callable[[], T],
    ) -> None:
        section.state = SectionState.loading
        section.error = None
        try:
            data = await loader()
        except RemoteError as exc:
            self._handle_failure(section, fallback, exc)
            return
        except Exception as exc:  # pragma: no cover
            logger.exception("Unexpected error while loading %s", section.label)
            self._handle_failure(section, fallback, exc)
            return
        section.data = data
        section.source = "live"
        section.state = SectionState.empty if not data else SectionState.ready

    def _handle_failure(
        self, section: Section[T], fallback: Callable[[], T], exc: Exception
    ) -> None:
        if self.demo_fallback:
            logger.warning("Serving demo %s because the platform API failed: %s", section.label, exc)
            section.data = fallback()
            section.source = "fallback"
            section.state = SectionState.ready
            return
        logger.warning("Unable to load %s: %s", section.label, exc)
        section.data = None
        section.source = "live"
        section.error = f"Unable to load {section.label}."
        section.state = SectionState.error

    def snapshot(self) -> BillingOverview:
        subscription = self.subscription.data
        methods = self.payment_methods.data or []
        invoices = self.invoices.data or []
        usage = self.usage.data
        return BillingOverview(
            refresh_trigger=self.refresh_trigger.value,
            subscription=to_subscription_view(subscription) if subscription else None,
            subscription_status=self.subscription.status(),
            payment_methods=[to_payment_method_view(method) for method in methods],
            payment_methods_status=self.payment_methods.status(),
            invoices=[to_invoice_view(invoice) for invoice in invoices],
            invoices_status=self.invoices.status(),
            usage=summarise_usage(usage) if usage else None,
            usage_status=self.usage.status(),
        )


__all__ = [
    "ALERT_RATIO",
    "BillingOverviewAggregator",
    "CRITICAL_RATIO",
    "RefreshTrigger",
    "Section",
    "WARNING_RATIO",
    "build_usage_meter",
    "classify_severity",
    "summarise_usage",
    "to_invoice_view",
    "to_subscription_view",
    "usage_ratio",
]
