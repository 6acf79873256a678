"""Data models for the customer portal views and JSON endpoints."""

from __future__ import annotations

from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, Field


class BadgeTone(str, Enum):
    """Colour family used when rendering a status badge."""

    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    INFO = "info"
    NEUTRAL = "neutral"


class StatusBadge(BaseModel):
    label: str
    tone: BadgeTone = BadgeTone.NEUTRAL


class UsageSeverity(str, Enum):
    """Categorise how close a counter is to its plan limit."""

    nominal = "nominal"
    warning = "warning"
    critical = "critical"


class UsageMeter(BaseModel):
    """Derived state for one usage counter."""

    name: str = Field(..., description="Counter identifier, e.g. api_requests")
    label: str
    current: float
    limit: float
    unit: str = ""
    ratio: float = Field(..., description="Uncapped current / limit")
    percentage: int = Field(..., description="Rounded percentage, may exceed 100")
    bar_width: int = Field(..., ge=0, le=100, description="Progress bar width, capped at 100")
    severity: UsageSeverity


class UsageSummary(BaseModel):
    meters: List[UsageMeter] = Field(default_factory=list)
    show_alert: bool = Field(False, description="Whether the over-usage banner is visible")


class SectionState(str, Enum):
    loading = "loading"
    ready = "ready"
    empty = "empty"
    error = "error"


class SectionStatus(BaseModel):
    state: SectionState = SectionState.loading
    error: str | None = None
    source: Literal["live", "fallback"] = "live"


class SubscriptionView(BaseModel):
    id: str
    plan_id: str
    plan_name: str
    price_text: str
    badge: StatusBadge
    features: List[str] = Field(default_factory=list)
    period_text: str
    next_billing_text: str
    ending_notice: str | None = Field(
        default=None, description="Shown once the subscription is set to end"
    )
    can_cancel: bool = False


class PaymentMethodView(BaseModel):
    id: str
    label: str
    expiry: str | None = None
    is_default: bool = False


class InvoiceView(BaseModel):
    id: str
    number: str | None = None
    amount_text: str
    badge: StatusBadge
    created_text: str
    due_text: str
    invoice_pdf: str | None = None
    hosted_invoice_url: str | None = None


class BillingOverview(BaseModel):
    """Everything the billing page renders, one section per fetch."""

    refresh_trigger: int = 0
    subscription: SubscriptionView | None = None
    subscription_status: SectionStatus = Field(default_factory=SectionStatus)
    payment_methods: List[PaymentMethodView] = Field(default_factory=list)
    payment_methods_status: SectionStatus = Field(default_factory=SectionStatus)
    invoices: List[InvoiceView] = Field(default_factory=list)
    invoices_status: SectionStatus = Field(default_factory=SectionStatus)
    usage: UsageSummary | None = None
    usage_status: SectionStatus = Field(default_factory=SectionStatus)


class PlanOption(BaseModel):
    id: str
    name: str
    price_text: str
    description: str | None = None
    features: List[str] = Field(default_factory=list)
    limits_text: dict[str, str] = Field(default_factory=dict)
    popular: bool = False
    is_current: bool = False
    is_selected: bool = False


class PlanChangeSummary(BaseModel):
    current_plan_id: str | None = None
    selected_plan_id: str
    text: str


class PlanSelectionView(BaseModel):
    plans: List[PlanOption]
    current_plan_id: str | None = None
    selected_plan_id: str
    can_submit: bool
    submit_label: str
    summary: PlanChangeSummary | None = None


class PlanChangeRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    current_plan_id: str | None = None


class BillingContactPayload(BaseModel):
    name: str = ""
    email: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "US"


class EnrollmentRequest(BillingContactPayload):
    card_token: str = Field("", description="Payment method handle produced by the card widget")


class EnrollmentResponse(BaseModel):
    state: str
    payment_method: PaymentMethodView | None = None
    error: str | None = None


class ApiKeyCreateRequest(BaseModel):
    name: str = ""
    description: str = ""
    scopes: List[str] = Field(default_factory=lambda: ["artifacts:read"])
    expires_in_days: int = Field(30, ge=0)


class ApiKeyVerifyPayload(BaseModel):
    api_key: str = Field(..., min_length=1)


class ApiKeyView(BaseModel):
    id: str
    key_id: str
    name: str
    scopes: List[str]
    state: str
    created_text: str
    expires_text: str | None = None
    secret: str | None = Field(default=None, description="Only set right after creation")


__all__ = [
    "ApiKeyCreateRequest",
    "ApiKeyVerifyPayload",
    "ApiKeyView",
    "BadgeTone",
    "BillingContactPayload",
    "BillingOverview",
    "EnrollmentRequest",
    "EnrollmentResponse",
    "InvoiceView",
    "PaymentMethodView",
    "PlanChangeRequest",
    "PlanChangeSummary",
    "PlanOption",
    "PlanSelectionView",
    "SectionState",
    "SectionStatus",
    "StatusBadge",
    "SubscriptionView",
    "UsageMeter",
    "UsageSeverity",
    "UsageSummary",
]
