"""Display helpers turning raw billing values into UI strings."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from libs.schemas.billing import (
    InvoiceStatus,
    PaymentMethod,
    Plan,
    SubscriptionStatus,
)

from .schemas import BadgeTone, StatusBadge

CURRENCY_SYMBOLS = {
    "usd": "$",
    "cad": "CA$",
    "aud": "A$",
    "eur": "€",
    "gbp": "£",
    "jpy": "¥",
}
ZERO_DECIMAL_CURRENCIES = {"jpy", "krw", "vnd", "clp"}


class CardBrand(str, Enum):
    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    DINERS = "diners"
    JCB = "jcb"
    UNIONPAY = "unionpay"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "CardBrand":
        if not value:
            return cls.UNKNOWN
        normalised = value.strip().lower().replace(" ", "").replace("_", "")
        normalised = _BRAND_ALIASES.get(normalised, normalised)
        try:
            return cls(normalised)
        except ValueError:
            return cls.UNKNOWN


_BRAND_ALIASES = {
    "americanexpress": "amex",
    "dinersclub": "diners",
    "master": "mastercard",
}

CARD_BRAND_LABELS = {
    CardBrand.VISA: "Visa",
    CardBrand.MASTERCARD: "Mastercard",
    CardBrand.AMEX: "American Express",
    CardBrand.DISCOVER: "Discover",
    CardBrand.DINERS: "Diners Club",
    CardBrand.JCB: "JCB",
    CardBrand.UNIONPAY: "UnionPay",
    CardBrand.UNKNOWN: "Card",
}

SUBSCRIPTION_BADGE_TONES = {
    SubscriptionStatus.ACTIVE: BadgeTone.SUCCESS,
    SubscriptionStatus.CANCELED: BadgeTone.DANGER,
    SubscriptionStatus.PAST_DUE: BadgeTone.WARNING,
    SubscriptionStatus.TRIALING: BadgeTone.INFO,
    SubscriptionStatus.INCOMPLETE: BadgeTone.NEUTRAL,
}

INVOICE_BADGE_TONES = {
    InvoiceStatus.PAID: BadgeTone.SUCCESS,
    InvoiceStatus.OPEN: BadgeTone.WARNING,
    InvoiceStatus.DRAFT: BadgeTone.NEUTRAL,
    InvoiceStatus.UNCOLLECTIBLE: BadgeTone.DANGER,
    InvoiceStatus.VOID: BadgeTone.NEUTRAL,
}


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def currency_symbol(currency: str) -> str:
    code = (currency or "usd").lower()
    return CURRENCY_SYMBOLS.get(code, f"{code.upper()} ")


def format_amount(amount_minor: int, currency: str) -> str:
    """Format an amount given in minor units, e.g. 2900 usd -> ``$29.00``."""

    code = (currency or "usd").lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        value = Decimal(amount_minor)
        text = f"{value:,.0f}"
    else:
        value = Decimal(amount_minor) / 100
        text = f"{value:,.2f}"
    if text.startswith("-"):
        return f"-{currency_symbol(code)}{text[1:]}"
    return f"{currency_symbol(code)}{text}"


def format_plan_price(plan: Plan) -> str:
    """``$29/month`` style price used by the plan picker and summaries."""

    price = Decimal(str(plan.price))
    if price == price.to_integral_value():
        amount = f"{int(price)}"
    else:
        amount = f"{price:.2f}"
    return f"{currency_symbol(plan.currency)}{amount}/{plan.interval.value}"


def format_compact_number(value: int) -> str:
    """10000 -> ``10K``, 1000000 -> ``1M``."""

    if value >= 1_000_000:
        return f"{_trim(value / 1_000_000)}M"
    if value >= 1_000:
        return f"{_trim(value / 1_000)}K"
    return str(value)


def format_gigabytes(value: float) -> str:
    """500 -> ``500GB``, 5000 -> ``5TB``."""

    if value >= 1_000:
        return f"{_trim(value / 1_000)}TB"
    return f"{_trim(value)}GB"


def _trim(value: float) -> str:
    return f"{value:.1f}".rstrip("0").rstrip(".")


def format_date(value: datetime | None) -> str:
    """``Jan 5, 2025``; empty string when the date is missing."""

    if value is None:
        return ""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def humanise_status(value: str) -> str:
    text = value.replace("_", " ")
    return text[:1].upper() + text[1:]


def subscription_badge(status: SubscriptionStatus) -> StatusBadge:
    return StatusBadge(
        label=humanise_status(status.value),
        tone=SUBSCRIPTION_BADGE_TONES.get(status, BadgeTone.NEUTRAL),
    )


def invoice_badge(status: InvoiceStatus) -> StatusBadge:
    return StatusBadge(
        label=humanise_status(status.value),
        tone=INVOICE_BADGE_TONES.get(status, BadgeTone.NEUTRAL),
    )


def payment_method_label(method: PaymentMethod) -> str:
    if method.card is not None:
        brand = CARD_BRAND_LABELS[CardBrand.parse(method.card.brand)]
        return f"{brand} •••• {method.card.last4}"
    return f"Bank Account •••• {method.last4}"


def payment_method_expiry(method: PaymentMethod) -> str | None:
    if method.card is None:
        return None
    return f"Expires {method.card.exp_month:02d}/{method.card.exp_year}"


__all__ = [
    "CARD_BRAND_LABELS",
    "CardBrand",
    "currency_symbol",
    "format_amount",
    "format_compact_number",
    "format_date",
    "format_gigabytes",
    "format_plan_price",
    "humanise_status",
    "invoice_badge",
    "payment_method_expiry",
    "payment_method_label",
    "round_half_up",
    "subscription_badge",
]
