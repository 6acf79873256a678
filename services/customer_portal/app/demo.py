"""Canned billing data served when demo fallback is enabled."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

from libs.schemas.billing import (
    CardDetails,
    Invoice,
    InvoiceStatus,
    PaymentMethod,
    PaymentMethodType,
    Subscription,
    SubscriptionStatus,
    UsageCounter,
    UsageMetrics,
)

from .plans import get_plan


def _now() -> datetime:
    return datetime.now(timezone.utc)


def fallback_subscription() -> Subscription:
    start = _now()
    return Subscription(
        id="sub_demo",
        status=SubscriptionStatus.ACTIVE,
        plan=get_plan("starter"),
        current_period_start=start,
        current_period_end=start + timedelta(days=30),
        cancel_at_period_end=False,
    )


def fallback_payment_methods() -> List[PaymentMethod]:
    return [
        PaymentMethod(
            id="pm_1",
            type=PaymentMethodType.CARD,
            card=CardDetails(brand="visa", last4="4242", exp_month=12, exp_year=2025),
            is_default=True,
        ),
        PaymentMethod(
            id="pm_2",
            type=PaymentMethodType.CARD,
            card=CardDetails(brand="mastercard", last4="5555", exp_month=8, exp_year=2026),
            is_default=False,
        ),
    ]


def fallback_invoices() -> List[Invoice]:
    now = _now()
    return [
        Invoice(
            id="in_1",
            number="FLR-0001",
            status=InvoiceStatus.PAID,
            amount_paid=2900,
            amount_due=0,
            currency="usd",
            created=now - timedelta(days=30),
            due_date=now - timedelta(days=23),
        ),
        Invoice(
            id="in_2",
            number="FLR-0002",
            status=InvoiceStatus.PAID,
            amount_paid=2900,
            amount_due=0,
            currency="usd",
            created=now - timedelta(days=60),
            due_date=now - timedelta(days=53),
        ),
        Invoice(
            id="in_3",
            number="FLR-0003",
            status=InvoiceStatus.OPEN,
            amount_paid=0,
            amount_due=2900,
            currency="usd",
            created=now,
            due_date=now + timedelta(days=7),
        ),
    ]


def fallback_usage() -> UsageMetrics:
    return UsageMetrics(
        api_requests=UsageCounter(current=7_450, limit=10_000),
        storage_gb=UsageCounter(current=3.2, limit=10),
        bandwidth_gb=UsageCounter(current=41, limit=100),
    )


__all__ = [
    "fallback_invoices",
    "fallback_payment_methods",
    "fallback_subscription",
    "fallback_usage",
]
