"""
Entitlement Reconciler
---
Interprets one payment-processor lifecycle event and converges the user's
entitlement row and subscription history to match it.

Event families:
- activation      subscription.active / .renewed / .plan_changed → grant plan + credits
- cancellation    subscription.cancelled / .canceled             → status cancelled, balance kept
- payment failure payment.failed, subscription.failed / .on_hold → status past_due
- payment success payment.succeeded                              → customer id only
- update          subscription.updated                           → plan / credits / period
- expiry          subscription.expired                           → status inactive

Anything else is acknowledged and ignored.

Once a subscription ID is bound to a user, that binding (not the event's
metadata) decides whose row is touched. An activation whose metadata names a
different user is a conflict and leaves every entitlement untouched.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.repository import EntitlementRepository, SubscriptionHistoryRepository
from src.db.tables import utcnow
from src.services.pricing import (
    SubscriptionStatus,
    credits_for,
    default_billing_period,
    normalize_billing_period,
    resolve_plan,
    period_end,
)

logger = logging.getLogger(__name__)

# ── Event families ───────────────────────────────────────────────────────────

ACTIVATION = "activation"
CANCELLATION = "cancellation"
PAYMENT_FAILURE = "payment_failure"
PAYMENT_SUCCESS = "payment_success"
UPDATE = "update"
EXPIRY = "expiry"

EVENT_FAMILIES: dict[str, str] = {
    "subscription.active": ACTIVATION,
    "subscription.renewed": ACTIVATION,
    "subscription.plan_changed": ACTIVATION,
    "subscription.cancelled": CANCELLATION,
    "subscription.canceled": CANCELLATION,
    "payment.failed": PAYMENT_FAILURE,
    "subscription.failed": PAYMENT_FAILURE,
    "subscription.on_hold": PAYMENT_FAILURE,
    "payment.succeeded": PAYMENT_SUCCESS,
    "subscription.updated": UPDATE,
    "subscription.expired": EXPIRY,
}

# ── Outcomes ─────────────────────────────────────────────────────────────────

APPLIED = "applied"
UNRESOLVED = "unresolved"
CONFLICT = "conflict"
IGNORED = "ignored"


def event_family(event_type: Optional[str]) -> Optional[str]:
    if not event_type:
        return None
    return EVENT_FAMILIES.get(event_type)


def _dig(data: dict, *path: str) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first(*values: Any) -> Optional[str]:
    for value in values:
        if value not in (None, ""):
            return str(value)
    return None


# Column widths of the stores the identifiers land in
MAX_USER_ID_LENGTH = 64
MAX_EXTERNAL_ID_LENGTH = 255


def _bounded(name: str, value: Optional[str], limit: int) -> Optional[str]:
    """An identifier that cannot be stored is treated as absent."""
    if value is not None and len(value) > limit:
        logger.warning("Ignoring %s longer than %d characters", name, limit)
        return None
    return value


def _currency(value: Any) -> str:
    code = str(value).strip().upper() if value not in (None, "") else ""
    if len(code) == 3 and code.isascii() and code.isalpha():
        return code
    if code:
        logger.warning("Unrecognized currency %r; recording USD", value)
    return "USD"


@dataclass(frozen=True)
class EventFields:
    """The processor fields the engine reads, pulled from their alternative locations."""
    subscription_id: Optional[str]
    product_id: Optional[str]
    customer_id: Optional[str]
    user_id: Optional[str]
    plan_id: Optional[str]
    billing_period: Optional[str]
    amount: Optional[float]
    currency: str

    @classmethod
    def from_data(cls, data: dict, *, bare_id_is_subscription: bool) -> "EventFields":
        # On payment.* events the bare "id" is the payment, not the subscription
        bare_id = data.get("id") if bare_id_is_subscription else None
        amount = next(
            (data[k] for k in ("amount", "amount_paid", "total_amount") if data.get(k) is not None),
            None,
        )
        try:
            amount = float(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None
        if amount is not None and not math.isfinite(amount):
            amount = None
        subscription_id = _first(data.get("subscription_id"), _dig(data, "subscription", "id"), bare_id)
        product_id = _first(data.get("product_id"), _dig(data, "subscription", "product_id"))
        customer_id = _first(
            data.get("customer_id"),
            _dig(data, "customer", "customer_id"),
            _dig(data, "customer", "id"),
        )
        user_id = _first(_dig(data, "metadata", "user_id"), _dig(data, "customer", "metadata", "user_id"))
        return cls(
            subscription_id=_bounded("subscription_id", subscription_id, MAX_EXTERNAL_ID_LENGTH),
            product_id=_bounded("product_id", product_id, MAX_EXTERNAL_ID_LENGTH),
            customer_id=_bounded("customer_id", customer_id, MAX_EXTERNAL_ID_LENGTH),
            user_id=_bounded("user_id", user_id, MAX_USER_ID_LENGTH),
            plan_id=_first(_dig(data, "metadata", "plan_id")),
            billing_period=_first(_dig(data, "metadata", "billing_period")),
            amount=amount,
            currency=_currency(data.get("currency")),
        )


@dataclass
class TransitionResult:
    outcome: str
    family: Optional[str]
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    credits_assigned: Optional[int] = None
    detail: str = ""


class EntitlementReconciler:
    """State transition engine over the entitlement and history stores.

    Runs inside the caller's transaction; it flushes but never commits.
    """

    def __init__(self, session: AsyncSession, product_map: Optional[dict[str, str]] = None):
        self.session = session
        self.product_map = product_map or {}
        self.entitlements = EntitlementRepository(session)
        self.history = SubscriptionHistoryRepository(session)

    async def apply(self, event_type: str, data: dict) -> TransitionResult:
        family = event_family(event_type)
        if family is None:
            logger.info("Unhandled webhook event type: %s", event_type, extra={"event_type": event_type})
            return TransitionResult(IGNORED, None, detail="event type not handled")

        fields = EventFields.from_data(
            data if isinstance(data, dict) else {},
            bare_id_is_subscription=event_type.startswith("subscription."),
        )
        handler = {
            ACTIVATION: self._activate,
            CANCELLATION: self._cancel,
            PAYMENT_FAILURE: self._payment_failed,
            PAYMENT_SUCCESS: self._payment_succeeded,
            UPDATE: self._update,
            EXPIRY: self._expire,
        }[family]
        result = await handler(event_type, fields)
        self._log_result(event_type, result)
        return result

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _log_result(self, event_type: str, result: TransitionResult) -> None:
        extra = {
            "event_type": event_type,
            "subscription_id": result.subscription_id,
            "user_id": result.user_id,
            "outcome": result.outcome,
        }
        if result.outcome == CONFLICT:
            logger.error("OWNERSHIP CONFLICT on %s: %s — entitlements left untouched",
                         event_type, result.detail, extra=extra)
        elif result.outcome == UNRESOLVED:
            logger.warning("Unresolvable %s event: %s — needs manual reconciliation",
                           event_type, result.detail, extra=extra)
        else:
            logger.info("Webhook %s → %s %s", event_type, result.outcome, result.detail, extra=extra)

    async def _bound_owners(self, subscription_id: str) -> set[str]:
        """Users already bound to ``subscription_id`` (normally zero or one)."""
        owners: set[str] = set()
        row = await self.entitlements.get_by_subscription_id(subscription_id)
        if row is not None:
            owners.add(row.user_id)
        history = await self.history.get(subscription_id)
        if history is not None:
            owners.add(history.user_id)
        return owners

    async def _set_status(
        self, family: str, fields: EventFields, status: SubscriptionStatus
    ) -> TransitionResult:
        sid = fields.subscription_id
        if not sid:
            return TransitionResult(UNRESOLVED, family, user_id=fields.user_id, detail="no subscription_id")
        row = await self.entitlements.get_by_subscription_id(sid)
        if row is None:
            return TransitionResult(
                UNRESOLVED, family, user_id=fields.user_id, subscription_id=sid,
                detail="no entitlement bound to subscription",
            )
        self._warn_metadata_mismatch(fields, row.user_id)
        await self.entitlements.update(row.user_id, subscription_status=status.value)
        return TransitionResult(
            APPLIED, family, user_id=row.user_id, subscription_id=sid,
            detail=f"status → {status.value}",
        )

    def _warn_metadata_mismatch(self, fields: EventFields, owner: str) -> None:
        if fields.user_id and fields.user_id != owner:
            logger.warning(
                "Event metadata user %s differs from subscription owner %s; using owner",
                fields.user_id, owner,
                extra={"subscription_id": fields.subscription_id, "user_id": owner},
            )

    # ── Transitions ──────────────────────────────────────────────────────────

    async def _activate(self, event_type: str, fields: EventFields) -> TransitionResult:
        sid = fields.subscription_id
        if not sid:
            return TransitionResult(UNRESOLVED, ACTIVATION, user_id=fields.user_id, detail="no subscription_id")

        owners = await self._bound_owners(sid)
        if len(owners) > 1:
            return TransitionResult(
                CONFLICT, ACTIVATION, subscription_id=sid,
                detail=f"subscription bound to several users: {sorted(owners)}",
            )
        owner = next(iter(owners), None)
        if owner and fields.user_id and fields.user_id != owner:
            return TransitionResult(
                CONFLICT, ACTIVATION, user_id=fields.user_id, subscription_id=sid,
                detail=f"subscription owned by {owner}, event names {fields.user_id}",
            )

        user_id = owner or fields.user_id
        if not user_id:
            return TransitionResult(UNRESOLVED, ACTIVATION, subscription_id=sid, detail="no user_id resolvable")

        resolution = resolve_plan(fields.product_id, fields.plan_id, self.product_map)
        if not resolution.resolved:
            return TransitionResult(
                UNRESOLVED, ACTIVATION, user_id=user_id, subscription_id=sid,
                detail=f"no known plan for product {fields.product_id!r}",
            )
        plan = resolution.plan
        period = normalize_billing_period(fields.billing_period)
        if period is None:
            if fields.billing_period:
                logger.warning("Unknown billing period %r; using plan default", fields.billing_period)
            period = default_billing_period(plan)
        credits = credits_for(plan, period)
        now = utcnow()
        ends_at = period_end(now, period)

        # History first: the ownership check runs against whichever row won
        inserted = await self.history.insert(
            subscription_id=sid,
            user_id=user_id,
            product_id=fields.product_id,
            billing_period=period.value,
            status=SubscriptionStatus.ACTIVE.value,
            amount_paid=fields.amount or 0,
            currency=fields.currency,
            started_at=now,
            ends_at=ends_at,
        )
        if inserted is None:
            existing = await self.history.get(sid)
            if existing is not None and existing.user_id != user_id:
                return TransitionResult(
                    CONFLICT, ACTIVATION, user_id=user_id, subscription_id=sid,
                    detail=f"subscription owned by {existing.user_id}, event resolves to {user_id}",
                )
            await self.history.update_where(
                sid, None,
                status=SubscriptionStatus.ACTIVE.value,
                product_id=fields.product_id,
                billing_period=period.value,
                ends_at=ends_at,
                cancelled_at=None,
            )

        current = await self.entitlements.get_or_create(user_id)
        if current.subscription_id and current.subscription_id != sid:
            # The entitlement follows one subscription; the one it leaves is over
            superseded = await self.history.update_where(
                current.subscription_id, SubscriptionStatus.ACTIVE.value,
                status=SubscriptionStatus.CANCELLED.value,
                cancelled_at=now,
            )
            if superseded:
                logger.info(
                    "Subscription %s superseded by %s for user %s",
                    current.subscription_id, sid, user_id,
                    extra={"subscription_id": current.subscription_id, "user_id": user_id},
                )
        await self.entitlements.update(
            user_id,
            plan=plan.value,
            credits=credits,
            subscription_id=sid,
            subscription_status=SubscriptionStatus.ACTIVE.value,
            subscription_product_id=fields.product_id,
            billing_period=period.value,
            subscription_started_at=now,
            subscription_ends_at=ends_at,
            payment_customer_id=fields.customer_id or current.payment_customer_id,
        )
        return TransitionResult(
            APPLIED, ACTIVATION, user_id=user_id, subscription_id=sid, credits_assigned=credits,
            detail=f"plan={plan.value} period={period.value} via {resolution.source}",
        )

    async def _cancel(self, event_type: str, fields: EventFields) -> TransitionResult:
        sid = fields.subscription_id
        if not sid:
            return TransitionResult(UNRESOLVED, CANCELLATION, user_id=fields.user_id, detail="no subscription_id")

        now = utcnow()
        history_rows = await self.history.update_where(
            sid, SubscriptionStatus.ACTIVE.value,
            status=SubscriptionStatus.CANCELLED.value,
            cancelled_at=now,
        )
        row = await self.entitlements.get_by_subscription_id(sid)
        if row is None:
            history = await self.history.get(sid)
            if history is not None:
                detail = "history cancelled" if history_rows else "history already closed"
                return TransitionResult(
                    APPLIED, CANCELLATION, user_id=history.user_id, subscription_id=sid,
                    detail=f"{detail}; entitlement already moved to another subscription",
                )
            return TransitionResult(
                UNRESOLVED, CANCELLATION, user_id=fields.user_id, subscription_id=sid,
                detail="no entitlement bound to subscription",
            )

        self._warn_metadata_mismatch(fields, row.user_id)
        # Takes effect at period end: plan and remaining credits are kept
        await self.entitlements.update(row.user_id, subscription_status=SubscriptionStatus.CANCELLED.value)
        return TransitionResult(APPLIED, CANCELLATION, user_id=row.user_id, subscription_id=sid,
                                detail="status → cancelled")

    async def _payment_failed(self, event_type: str, fields: EventFields) -> TransitionResult:
        return await self._set_status(PAYMENT_FAILURE, fields, SubscriptionStatus.PAST_DUE)

    async def _expire(self, event_type: str, fields: EventFields) -> TransitionResult:
        return await self._set_status(EXPIRY, fields, SubscriptionStatus.INACTIVE)

    async def _payment_succeeded(self, event_type: str, fields: EventFields) -> TransitionResult:
        """Records the customer ID only; grants happen on activation events."""
        sid = fields.subscription_id
        row = await self.entitlements.get_by_subscription_id(sid) if sid else None
        if row is not None:
            self._warn_metadata_mismatch(fields, row.user_id)
        user_id = row.user_id if row is not None else fields.user_id
        if not user_id:
            return TransitionResult(UNRESOLVED, PAYMENT_SUCCESS, subscription_id=sid, detail="no user_id resolvable")
        if not fields.customer_id:
            return TransitionResult(IGNORED, PAYMENT_SUCCESS, user_id=user_id, subscription_id=sid,
                                    detail="no customer id to record")

        await self.entitlements.get_or_create(user_id)
        await self.entitlements.update(user_id, payment_customer_id=fields.customer_id)
        return TransitionResult(APPLIED, PAYMENT_SUCCESS, user_id=user_id, subscription_id=sid,
                                detail="customer id recorded")

    async def _update(self, event_type: str, fields: EventFields) -> TransitionResult:
        sid = fields.subscription_id
        if not sid:
            return TransitionResult(UNRESOLVED, UPDATE, user_id=fields.user_id, detail="no subscription_id")
        row = await self.entitlements.get_by_subscription_id(sid)
        if row is None:
            return TransitionResult(UNRESOLVED, UPDATE, user_id=fields.user_id, subscription_id=sid,
                                    detail="no entitlement bound to subscription")
        self._warn_metadata_mismatch(fields, row.user_id)

        resolution = resolve_plan(fields.product_id, fields.plan_id, self.product_map)
        if not resolution.resolved:
            return TransitionResult(UNRESOLVED, UPDATE, user_id=row.user_id, subscription_id=sid,
                                    detail="no known plan in update")
        plan = resolution.plan
        period = (
            normalize_billing_period(fields.billing_period)
            or normalize_billing_period(row.billing_period)
            or default_billing_period(plan)
        )
        credits = credits_for(plan, period)
        await self.entitlements.update(
            row.user_id, plan=plan.value, credits=credits, billing_period=period.value,
        )
        return TransitionResult(
            APPLIED, UPDATE, user_id=row.user_id, subscription_id=sid, credits_assigned=credits,
            detail=f"plan={plan.value} period={period.value} via {resolution.source}",
        )
