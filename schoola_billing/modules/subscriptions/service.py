"""Service for Subscriptions module."""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.audit.service import AuditAction, AuditService
from schoola_billing.core.config import settings
from schoola_billing.core.exceptions import NotFoundError, ValidationError
from schoola_billing.modules.subscriptions.models import Subscription, SubscriptionStatus
from schoola_billing.modules.subscriptions.resolver import build_renewal, resolve_status
from schoola_billing.modules.subscriptions.schemas import (
    SubscriptionCreate,
    SubscriptionFilters,
    SubscriptionResponse,
)
from schoola_billing.shared.utils.dates import utc_now
from schoola_billing.shared.utils.money import round_money

logger = logging.getLogger(__name__)


def to_response(subscription: Subscription, now: date | datetime) -> SubscriptionResponse:
    """Response model with the status resolved for ``now``."""
    return SubscriptionResponse(
        id=subscription.id,
        student_id=subscription.student_id,
        plan_type=subscription.plan_type,
        plan_name=subscription.plan_name,
        currency=subscription.currency,
        sessions_total=subscription.sessions_total,
        sessions_used=subscription.sessions_used,
        sessions_remaining=subscription.sessions_remaining,
        amount_paid=subscription.amount_paid,
        plan_price=subscription.plan_price,
        balance_due=subscription.balance_due,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        payment_deadline=subscription.payment_deadline,
        grace_days=subscription.grace_days,
        renewed_from_id=subscription.renewed_from_id,
        status=resolve_status(subscription, now),
    )


class SubscriptionService:
    """Service for subscriptions. Counters change only through payments and session use."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        """Enroll a student on a plan."""
        subscription = Subscription(
            student_id=data.student_id,
            plan_type=data.plan_type.value,
            plan_name=data.plan_name,
            currency=(data.currency or settings.default_currency).upper(),
            sessions_total=data.sessions_total,
            sessions_used=data.sessions_used,
            amount_paid=round_money(data.amount_paid),
            plan_price=round_money(data.plan_price),
            start_date=data.start_date,
            end_date=data.end_date,
            payment_deadline=data.payment_deadline,
            grace_days=data.grace_days if data.grace_days is not None else settings.default_grace_days,
        )
        self.db.add(subscription)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="Subscription",
            entity_id=subscription.id,
            actor_id=data.student_id,
            new_values={
                "plan_type": subscription.plan_type,
                "sessions_total": subscription.sessions_total,
                "plan_price": str(subscription.plan_price),
            },
        )

        await self.db.commit()
        return subscription

    async def get_subscription(self, subscription_id: int, for_update: bool = False) -> Subscription:
        """Get subscription by ID."""
        stmt = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    async def list_subscriptions(
        self, filters: SubscriptionFilters, now: date | datetime | None = None
    ) -> list[Subscription]:
        """List subscriptions; the status filter is applied to the derived status."""
        now = now or utc_now()
        query = select(Subscription).order_by(Subscription.id.desc())
        if filters.student_id:
            query = query.where(Subscription.student_id == filters.student_id)

        result = await self.db.execute(query)
        subscriptions = list(result.scalars().all())
        if filters.status:
            subscriptions = [s for s in subscriptions if resolve_status(s, now) == filters.status]
        return subscriptions

    def _ensure_not_expired(self, subscription: Subscription, now: date | datetime) -> None:
        if resolve_status(subscription, now) == SubscriptionStatus.EXPIRED:
            raise ValidationError(
                f"Subscription {subscription.id} is expired and can no longer change"
            )

    async def apply_payment(
        self,
        subscription_id: int,
        amount: Decimal,
        now: date | datetime | None = None,
        reference: str | None = None,
    ) -> Subscription:
        """Add a received amount to the subscription. Flushes, the caller commits."""
        now = now or utc_now()
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", field="amount")

        subscription = await self.get_subscription(subscription_id, for_update=True)
        self._ensure_not_expired(subscription, now)

        old_paid = subscription.amount_paid
        subscription.amount_paid = round_money(subscription.amount_paid + amount)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="Subscription",
            entity_id=subscription.id,
            entity_identifier=reference,
            old_values={"amount_paid": str(old_paid)},
            new_values={
                "amount_paid": str(subscription.amount_paid),
                "status": resolve_status(subscription, now).value,
            },
        )
        return subscription

    async def record_payment(
        self, subscription_id: int, amount: Decimal, now: date | datetime | None = None
    ) -> Subscription:
        """Record a payment received directly against a subscription."""
        subscription = await self.apply_payment(subscription_id, amount, now)
        await self.db.commit()
        logger.info(
            "Subscription %s received %s, paid %s of %s",
            subscription.id,
            amount,
            subscription.amount_paid,
            subscription.plan_price,
        )
        return subscription

    async def consume_session(
        self, subscription_id: int, now: date | datetime | None = None
    ) -> Subscription:
        """Mark one session as attended."""
        now = now or utc_now()
        subscription = await self.get_subscription(subscription_id, for_update=True)
        self._ensure_not_expired(subscription, now)

        subscription.sessions_used += 1
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CONSUME_SESSION,
            entity_type="Subscription",
            entity_id=subscription.id,
            new_values={
                "sessions_used": subscription.sessions_used,
                "status": resolve_status(subscription, now).value,
            },
        )
        await self.db.commit()
        return subscription

    async def renew(self, subscription_id: int, now: date | datetime | None = None) -> Subscription:
        """Create the next subscription for the same plan. The original stays as history."""
        now = now or utc_now()
        original = await self.get_subscription(subscription_id)

        renewal = build_renewal(original, now)
        self.db.add(renewal)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.RENEW_SUBSCRIPTION,
            entity_type="Subscription",
            entity_id=renewal.id,
            actor_id=renewal.student_id,
            new_values={
                "renewed_from_id": original.id,
                "start_date": renewal.start_date.isoformat(),
                "end_date": renewal.end_date.isoformat(),
            },
        )
        await self.db.commit()
        logger.info("Subscription %s renewed as %s", original.id, renewal.id)
        return renewal
