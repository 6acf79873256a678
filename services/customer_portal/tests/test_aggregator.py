from __future__ import annotations

import asyncio

import pytest

from libs.schemas.billing import UsageCounter, UsageMetrics
from services.customer_portal.app.aggregator import (
    BillingOverviewAggregator,
    RefreshTrigger,
    build_usage_meter,
    classify_severity,
    summarise_usage,
    usage_ratio,
)
from services.customer_portal.app.schemas import SectionState, UsageSeverity

from .utils import (
    FakePlatform,
    card_payload,
    invoice_payload,
    make_session,
    org_path,
    subscription_payload,
    usage_payload,
)


def _metrics(**counters) -> UsageMetrics:
    values = {
        "api_requests": (0, 10_000),
        "storage_gb": (0, 10),
        "bandwidth_gb": (0, 100),
    }
    values.update(counters)
    return UsageMetrics(
        **{name: UsageCounter(current=current, limit=limit) for name, (current, limit) in values.items()}
    )


@pytest.mark.parametrize(
    ("ratio", "expected"),
    [
        (0.0, UsageSeverity.nominal),
        (0.7499, UsageSeverity.nominal),
        (0.75, UsageSeverity.warning),
        (0.8999, UsageSeverity.warning),
        (0.90, UsageSeverity.critical),
        (1.4, UsageSeverity.critical),
    ],
)
def test_severity_thresholds(ratio, expected):
    assert classify_severity(ratio) is expected


def test_requests_at_ninety_percent_are_critical_with_banner():
    summary = summarise_usage(_metrics(api_requests=(9_000, 10_000)))

    meter = summary.meters[0]
    assert meter.name == "api_requests"
    assert meter.ratio == pytest.approx(0.9)
    assert meter.severity is UsageSeverity.critical
    assert meter.percentage == 90
    assert meter.bar_width == 90
    assert summary.show_alert is True


def test_banner_uses_highest_uncapped_ratio():
    below = summarise_usage(_metrics(storage_gb=(7.9, 10)))
    at_threshold = summarise_usage(_metrics(bandwidth_gb=(80, 100)))

    assert below.show_alert is False
    assert at_threshold.show_alert is True
    assert at_threshold.meters[2].severity is UsageSeverity.warning


def test_over_usage_caps_bar_but_not_percentage():
    meter = build_usage_meter("storage_gb", "Storage", "GB", UsageCounter(current=15, limit=10))

    assert meter.ratio == pytest.approx(1.5)
    assert meter.percentage == 150
    assert meter.bar_width == 100
    assert meter.severity is UsageSeverity.critical


def test_percentage_rounds_half_up():
    meter = build_usage_meter("api_requests", "API Requests", "", UsageCounter(current=125, limit=1_000))
    assert meter.percentage == 13


def test_zero_limit_counts_as_unlimited():
    assert usage_ratio(UsageCounter(current=50, limit=0)) == 0.0


def _full_platform() -> FakePlatform:
    return (
        FakePlatform()
        .on("GET", org_path("/subscription"), subscription_payload("starter"))
        .on("GET", org_path("/payment-methods"), [card_payload("pm_1", is_default=True)])
        .on("GET", org_path("/invoices"), [invoice_payload("in_3")])
        .on("GET", org_path("/usage"), usage_payload(api_requests=(9_000, 10_000)))
    )


def test_load_populates_every_section():
    aggregator = BillingOverviewAggregator(make_session(), _full_platform().billing_client())

    overview = asyncio.run(aggregator.load())

    assert overview.subscription is not None
    assert overview.subscription.plan_name == "Starter"
    assert overview.subscription.price_text == "$29/month"
    assert overview.subscription.period_text == "Jan 15, 2025 - Feb 15, 2025"
    assert overview.subscription.next_billing_text == "Feb 15, 2025"
    assert overview.subscription.badge.label == "Active"
    assert overview.subscription.can_cancel is True
    assert overview.payment_methods[0].label == "Visa •••• 4242"
    assert overview.invoices[0].amount_text == "$29.00"
    assert overview.invoices[0].badge.label == "Open"
    assert overview.usage is not None and overview.usage.show_alert is True
    for status in (
        overview.subscription_status,
        overview.payment_methods_status,
        overview.invoices_status,
        overview.usage_status,
    ):
        assert status.state is SectionState.ready
        assert status.source == "live"


def test_one_failing_section_does_not_block_the_others():
    platform = _full_platform().on("GET", org_path("/invoices"), {"detail": "down"}, status_code=503)
    aggregator = BillingOverviewAggregator(make_session(), platform.billing_client())

    overview = asyncio.run(aggregator.load())

    assert overview.invoices == []
    assert overview.invoices_status.state is SectionState.error
    assert overview.invoices_status.error == "Unable to load invoices."
    assert overview.subscription_status.state is SectionState.ready
    assert overview.usage_status.state is SectionState.ready
    assert len(platform.requests) == 4


def test_demo_fallback_substitutes_canned_data():
    platform = _full_platform().on("GET", org_path("/payment-methods"), {"detail": "down"}, status_code=500)
    aggregator = BillingOverviewAggregator(
        make_session(), platform.billing_client(), demo_fallback=True
    )

    overview = asyncio.run(aggregator.load())

    assert overview.payment_methods_status.source == "fallback"
    assert overview.payment_methods_status.state is SectionState.ready
    assert [view.id for view in overview.payment_methods] == ["pm_1", "pm_2"]
    assert overview.subscription_status.source == "live"


def test_missing_subscription_and_empty_lists_render_empty_state():
    platform = (
        FakePlatform()
        .on("GET", org_path("/payment-methods"), [])
        .on("GET", org_path("/invoices"), [])
        .on("GET", org_path("/usage"), usage_payload())
    )
    aggregator = BillingOverviewAggregator(make_session(), platform.billing_client())

    overview = asyncio.run(aggregator.load())

    assert overview.subscription is None
    assert overview.subscription_status.state is SectionState.empty
    assert overview.payment_methods_status.state is SectionState.empty
    assert overview.invoices_status.state is SectionState.empty
    assert overview.usage_status.state is SectionState.ready


def test_ending_subscription_shows_notice_instead_of_next_billing():
    platform = _full_platform().on(
        "GET", org_path("/subscription"), subscription_payload(cancel_at_period_end=True)
    )
    aggregator = BillingOverviewAggregator(make_session(), platform.billing_client())

    overview = asyncio.run(aggregator.load())

    assert overview.subscription is not None
    assert overview.subscription.ending_notice == "Your subscription will end on Feb 15, 2025"
    assert overview.subscription.next_billing_text == "Not scheduled"
    assert overview.subscription.can_cancel is False


def test_refresh_trigger_drives_reloads():
    platform = _full_platform()
    trigger = RefreshTrigger()
    aggregator = BillingOverviewAggregator(
        make_session(), platform.billing_client(), refresh_trigger=trigger
    )

    async def scenario():
        first = await aggregator.refresh_if_needed()
        second = await aggregator.refresh_if_needed()
        trigger.bump()
        third = await aggregator.refresh_if_needed()
        return first, second, third

    assert asyncio.run(scenario()) == (True, False, True)
    assert len(platform.requests) == 8
    assert aggregator.snapshot().refresh_trigger == 1
