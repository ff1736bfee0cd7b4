"""Subscription model."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from schoola_billing.core.database.base import TimestampedModel


class PlanType(StrEnum):
    """Recurring-period plan or fixed-lecture-count plan."""

    MONTHLY = "monthly"
    LEVEL = "level"


class SubscriptionStatus(StrEnum):
    """Derived lifecycle status. Never persisted."""

    ACTIVE_FULLY_PAID = "active_fully_paid"
    ACTIVE_PARTIALLY_PAID = "active_partially_paid"
    DUE_SOON = "due_soon"
    EXPIRED = "expired"
    ON_HOLD = "on_hold"


class Subscription(TimestampedModel):
    """A student's enrollment plan tracked by session count and amount paid."""

    __tablename__ = "subscriptions"

    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    plan_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EGP")

    # Counters
    sessions_total: Mapped[int] = mapped_column(Integer, nullable=False)
    sessions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    plan_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Timing
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    grace_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    renewed_from_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("subscriptions.id"), nullable=True
    )

    @property
    def sessions_remaining(self) -> int:
        return max(0, self.sessions_total - (self.sessions_used or 0))

    @property
    def balance_due(self) -> Decimal:
        return max(Decimal("0.00"), self.plan_price - (self.amount_paid or Decimal("0.00")))
