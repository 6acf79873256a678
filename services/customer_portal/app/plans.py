"""Static catalog of subscription tiers."""

from __future__ import annotations

from typing import Dict, Iterable, List

from libs.schemas.billing import Plan, PlanInterval, PlanLimits

PLAN_CATALOG: List[Plan] = [
    Plan(
        id="starter",
        name="Starter",
        price=29,
        currency="usd",
        interval=PlanInterval.MONTH,
        description="Perfect for small teams and projects",
        features=[
            "10,000 API requests/month",
            "10GB storage",
            "100GB bandwidth",
            "Basic support",
            "Standard uptime (99.5%)",
        ],
        limits=PlanLimits(api_requests=10_000, storage_gb=10, bandwidth_gb=100),
    ),
    Plan(
        id="professional",
        name="Professional",
        price=99,
        currency="usd",
        interval=PlanInterval.MONTH,
        description="For growing businesses with higher demands",
        features=[
            "100,000 API requests/month",
            "50GB storage",
            "500GB bandwidth",
            "Priority support",
            "Enhanced uptime (99.9%)",
            "Advanced analytics",
            "Custom CDN rules",
        ],
        limits=PlanLimits(api_requests=100_000, storage_gb=50, bandwidth_gb=500),
        popular=True,
    ),
    Plan(
        id="enterprise",
        name="Enterprise",
        price=299,
        currency="usd",
        interval=PlanInterval.MONTH,
        description="For enterprise-scale applications",
        features=[
            "1,000,000 API requests/month",
            "500GB storage",
            "5TB bandwidth",
            "24/7 dedicated support",
            "Premium uptime (99.99%)",
            "Advanced analytics",
            "Custom CDN rules",
            "White-label options",
            "SLA guarantee",
        ],
        limits=PlanLimits(api_requests=1_000_000, storage_gb=500, bandwidth_gb=5_000),
    ),
]


class UnknownPlanError(ValueError):
    """Raised when a plan id is not part of the catalog."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Unknown plan: {plan_id}")
        self.plan_id = plan_id


def index_catalog(plans: Iterable[Plan]) -> Dict[str, Plan]:
    return {plan.id: plan for plan in plans}


def cheapest_plan(plans: Iterable[Plan]) -> Plan:
    candidates = list(plans)
    if not candidates:
        raise ValueError("The plan catalog is empty")
    return min(candidates, key=lambda plan: plan.price)


def get_plan(plan_id: str, plans: Iterable[Plan] = PLAN_CATALOG) -> Plan:
    for plan in plans:
        if plan.id == plan_id:
            return plan
    raise UnknownPlanError(plan_id)


__all__ = ["PLAN_CATALOG", "UnknownPlanError", "cheapest_plan", "get_plan", "index_catalog"]
