"""
Thumbnail Studio Plan Catalog
---
The fixed plan / billing-period / credit tables the webhook reconciler grants
from. Credits are never computed ad hoc: every grant is a lookup here.

Features:
- Closed set of plans and billing periods
- Billing-period synonym normalization ("annually" → "annual")
- Two-tier plan resolution: processor product ID first, checkout metadata second
- Calendar-correct subscription period end dates
"""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


# ── Plans & billing periods ──────────────────────────────────────────────────

class Plan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    CREATOR_MONTHLY = "creator-monthly"
    CREATOR_YEARLY = "creator-yearly"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    INACTIVE = "inactive"
    TRIALING = "trialing"


@dataclass(frozen=True)
class PlanConfig:
    plan: Plan
    name: str
    credits_monthly: int
    credits_annual: int
    default_period: BillingPeriod = BillingPeriod.MONTHLY


PLAN_CATALOG: dict[Plan, PlanConfig] = {
    Plan.FREE: PlanConfig(Plan.FREE, "Free", credits_monthly=0, credits_annual=0),
    # Legacy tiers still carried by older subscriptions
    Plan.STARTER: PlanConfig(Plan.STARTER, "Starter", credits_monthly=30, credits_annual=360),
    Plan.PRO: PlanConfig(Plan.PRO, "Pro", credits_monthly=100, credits_annual=1200),
    Plan.CREATOR_MONTHLY: PlanConfig(
        Plan.CREATOR_MONTHLY, "Creator Monthly", credits_monthly=50, credits_annual=50,
    ),
    Plan.CREATOR_YEARLY: PlanConfig(
        Plan.CREATOR_YEARLY, "Creator Yearly", credits_monthly=600, credits_annual=600,
        default_period=BillingPeriod.ANNUAL,
    ),
}

# Granted when a (plan, period) pair is missing from the catalog: smallest paid grant
DEFAULT_CREDITS = 30

_PERIOD_SYNONYMS = {
    "monthly": BillingPeriod.MONTHLY,
    "month": BillingPeriod.MONTHLY,
    "annual": BillingPeriod.ANNUAL,
    "annually": BillingPeriod.ANNUAL,
    "yearly": BillingPeriod.ANNUAL,
    "year": BillingPeriod.ANNUAL,
}


def parse_plan(value: Optional[str]) -> Optional[Plan]:
    if not value:
        return None
    try:
        return Plan(value.strip().lower())
    except ValueError:
        return None


def normalize_billing_period(value: Optional[str]) -> Optional[BillingPeriod]:
    """Map processor/checkout spellings onto the closed billing-period set."""
    if not value:
        return None
    return _PERIOD_SYNONYMS.get(str(value).strip().lower())


def default_billing_period(plan: Plan) -> BillingPeriod:
    return PLAN_CATALOG[plan].default_period


def credits_for(plan: Plan, period: BillingPeriod) -> int:
    """Credits granted by one billing cycle of ``plan``. Always a table lookup."""
    config = PLAN_CATALOG.get(plan)
    if config is None:
        logger.warning("No catalog entry for plan=%s; granting default %d credits", plan, DEFAULT_CREDITS)
        return DEFAULT_CREDITS
    if period == BillingPeriod.ANNUAL:
        return config.credits_annual
    return config.credits_monthly


# ── Plan resolution ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlanResolution:
    plan: Optional[Plan]
    source: str  # "product" | "metadata" | "none"

    @property
    def resolved(self) -> bool:
        return self.plan is not None


def resolve_plan(
    product_id: Optional[str],
    metadata_plan_id: Optional[str],
    product_map: dict[str, str],
) -> PlanResolution:
    """Resolve the purchased plan.

    The processor's product ID is authoritative. Checkout metadata is
    attacker-influenced, so it is only used when the product is unknown,
    and that fallback is logged as lower confidence.
    """
    if product_id and product_id in product_map:
        plan = parse_plan(product_map[product_id])
        if plan is not None:
            metadata_plan = parse_plan(metadata_plan_id)
            if metadata_plan is not None and metadata_plan != plan:
                logger.warning(
                    "Checkout metadata plan %s disagrees with product %s → %s; using product",
                    metadata_plan.value, product_id, plan.value,
                )
            return PlanResolution(plan, "product")
        logger.error("Product map entry %s → %r is not a known plan", product_id, product_map[product_id])

    plan = parse_plan(metadata_plan_id)
    if plan is not None:
        logger.warning(
            "Plan resolved from checkout metadata (lower confidence): plan=%s product=%s",
            plan.value, product_id,
        )
        return PlanResolution(plan, "metadata")

    return PlanResolution(None, "none")


# ── Billing period arithmetic ────────────────────────────────────────────────

def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end(start: datetime, period: BillingPeriod) -> datetime:
    """End of one billing cycle starting at ``start`` (clamped to month end)."""
    if period == BillingPeriod.ANNUAL:
        return _add_months(start, 12)
    return _add_months(start, 1)
