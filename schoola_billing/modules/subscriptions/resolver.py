"""Subscription status derivation and renewal.

Status is a pure function of the counters, the deadline settings and ``now``.
Rules are checked in a fixed order and the first match wins:

1. all sessions used               -> expired (regardless of payment)
2. nothing left to pay             -> active_fully_paid
3. exactly one session remaining   -> due_soon
4. past deadline + grace, unpaid   -> on_hold
5. otherwise                       -> active_partially_paid
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

from schoola_billing.core.config import settings
from schoola_billing.modules.subscriptions.models import PlanType, Subscription, SubscriptionStatus
from schoola_billing.shared.utils.dates import add_months, to_date
from schoola_billing.shared.utils.money import ZERO, to_decimal


def effective_deadline(subscription: Subscription) -> date | None:
    """Payment deadline pushed out by the grace period, None without a deadline."""
    if subscription.payment_deadline is None:
        return None
    return subscription.payment_deadline + timedelta(days=subscription.grace_days or 0)


def resolve_status(subscription: Subscription, now: date | datetime) -> SubscriptionStatus:
    sessions_used = subscription.sessions_used or 0
    if sessions_used >= subscription.sessions_total:
        return SubscriptionStatus.EXPIRED

    amount_paid = to_decimal(subscription.amount_paid or ZERO)
    plan_price = to_decimal(subscription.plan_price)
    if plan_price - amount_paid <= 0:
        return SubscriptionStatus.ACTIVE_FULLY_PAID

    if subscription.sessions_total - sessions_used == 1:
        return SubscriptionStatus.DUE_SOON

    deadline = effective_deadline(subscription)
    if deadline is not None and to_date(now) > deadline and amount_paid < plan_price:
        return SubscriptionStatus.ON_HOLD

    return SubscriptionStatus.ACTIVE_PARTIALLY_PAID


def renewal_months(plan_type: str) -> int:
    if plan_type == PlanType.MONTHLY.value:
        return settings.renewal_months_monthly
    return settings.renewal_months_level


def build_renewal(subscription: Subscription, now: date | datetime) -> Subscription:
    """
    A fresh subscription continuing the same plan from ``now``.

    The original record is left untouched; the new one starts with no sessions
    used and nothing paid. The payment deadline is not carried over.
    """
    start = to_date(now)
    return Subscription(
        student_id=subscription.student_id,
        plan_type=subscription.plan_type,
        plan_name=subscription.plan_name,
        currency=subscription.currency,
        sessions_total=subscription.sessions_total,
        sessions_used=0,
        amount_paid=Decimal("0.00"),
        plan_price=subscription.plan_price,
        start_date=start,
        end_date=add_months(start, renewal_months(subscription.plan_type)),
        payment_deadline=None,
        grace_days=subscription.grace_days,
        renewed_from_id=subscription.id,
    )
