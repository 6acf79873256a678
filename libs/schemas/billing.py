"""Pydantic schemas for the billing contracts exposed by the platform API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PaymentMethodType(str, Enum):
    """Kind of instrument registered as a payment method."""

    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class CardDetails(BaseModel):
    brand: str
    last4: str = Field(..., min_length=4, max_length=4)
    exp_month: int = Field(..., ge=1, le=12)
    exp_year: int


class BankAccountDetails(BaseModel):
    last4: str = Field(..., min_length=4, max_length=4)
    bank_name: str | None = None


class PaymentMethod(BaseModel):
    """Payment instrument attached to an organisation."""

    id: str
    type: PaymentMethodType
    card: CardDetails | None = None
    bank_account: BankAccountDetails | None = None
    is_default: bool = False

    @model_validator(mode="after")
    def _validate_details(self) -> Self:
        if self.type is PaymentMethodType.CARD:
            if self.card is None or self.bank_account is not None:
                raise ValueError("card payment methods must only carry card details")
        elif self.bank_account is None or self.card is not None:
            raise ValueError("bank account payment methods must only carry bank details")
        return self

    @property
    def last4(self) -> str:
        if self.card is not None:
            return self.card.last4
        if self.bank_account is not None:
            return self.bank_account.last4
        raise ValueError(f"payment method {self.id} has no instrument details")


class PaymentMethodCreate(BaseModel):
    """Body used to register a tokenised payment method."""

    payment_method_id: str = Field(..., min_length=1)


class PlanInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class PlanLimits(BaseModel):
    api_requests: int = Field(..., ge=0)
    storage_gb: int = Field(..., ge=0)
    bandwidth_gb: int = Field(..., ge=0)


class Plan(BaseModel):
    """Catalog tier describing price, interval and usage limits."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: float = Field(..., ge=0, description="Price in major currency units")
    currency: str = "usd"
    interval: PlanInterval = PlanInterval.MONTH
    description: str | None = None
    features: List[str] = Field(default_factory=list)
    limits: PlanLimits
    popular: bool = False


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class Subscription(BaseModel):
    """Subscription of an organisation to a catalog plan."""

    id: str
    status: SubscriptionStatus
    plan: Plan
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False

    @model_validator(mode="after")
    def _validate_period(self) -> Self:
        if self.current_period_start > self.current_period_end:
            raise ValueError("current_period_start must not be after current_period_end")
        return self


class SubscriptionUpdate(BaseModel):
    plan_id: str = Field(..., min_length=1)


class SubscriptionCancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class InvoiceStatus(str, Enum):
    PAID = "paid"
    OPEN = "open"
    DRAFT = "draft"
    UNCOLLECTIBLE = "uncollectible"
    VOID = "void"


class Invoice(BaseModel):
    """Invoice issued by the billing cycle. Amounts are in minor units."""

    id: str
    number: str | None = None
    status: InvoiceStatus
    amount_paid: int = Field(default=0, ge=0)
    amount_due: int = Field(default=0, ge=0)
    currency: str = "usd"
    created: datetime
    due_date: datetime | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None

    @property
    def amount(self) -> int:
        """Return the amount that matters for the invoice status."""

        if self.status is InvoiceStatus.PAID:
            return self.amount_paid or self.amount_due
        return self.amount_due or self.amount_paid


class UsageCounter(BaseModel):
    current: float = Field(..., ge=0)
    limit: float


class UsageMetrics(BaseModel):
    """Current consumption against plan limits. Over-usage is representable."""

    api_requests: UsageCounter
    storage_gb: UsageCounter
    bandwidth_gb: UsageCounter


class BillingAddress(BaseModel):
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class BillingInfo(BaseModel):
    """Billing contact attached to an organisation."""

    email: str | None = None
    name: str | None = None
    address: BillingAddress | None = None
    tax_id: str | None = None


class SetupIntent(BaseModel):
    """Handshake token allowing one client-side tokenisation attempt."""

    client_secret: str = Field(..., min_length=1)


__all__ = [
    "BankAccountDetails",
    "BillingAddress",
    "BillingInfo",
    "CardDetails",
    "Invoice",
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentMethodCreate",
    "PaymentMethodType",
    "Plan",
    "PlanInterval",
    "PlanLimits",
    "SetupIntent",
    "Subscription",
    "SubscriptionCancelRequest",
    "SubscriptionStatus",
    "SubscriptionUpdate",
    "UsageCounter",
    "UsageMetrics",
]
