"""Schemas for Subscriptions module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from schoola_billing.modules.subscriptions.models import PlanType, SubscriptionStatus
from schoola_billing.shared.schemas.base import Money


class SubscriptionCreate(BaseModel):
    """Schema for enrolling a student on a plan."""

    student_id: str = Field(..., min_length=1, max_length=64)
    plan_type: PlanType
    plan_name: str | None = Field(None, max_length=100)
    currency: str | None = Field(None, min_length=3, max_length=3)
    sessions_total: int = Field(..., ge=1)
    sessions_used: int = Field(0, ge=0)
    amount_paid: Decimal = Field(Decimal("0.00"), ge=0)
    plan_price: Decimal = Field(..., ge=0)
    start_date: date
    end_date: date
    payment_deadline: date | None = None
    grace_days: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_counters(self):
        """Sessions used cannot exceed the plan and the period must not be inverted."""
        if self.sessions_used > self.sessions_total:
            raise ValueError("sessions_used cannot exceed sessions_total")
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SubscriptionPaymentCreate(BaseModel):
    """Amount received against a subscription."""

    amount: Decimal = Field(..., gt=0)


class SubscriptionResponse(BaseModel):
    """Subscription with its status derived at response time."""

    id: int
    student_id: str
    plan_type: str
    plan_name: str | None
    currency: str
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    amount_paid: Money
    plan_price: Money
    balance_due: Money
    start_date: date
    end_date: date
    payment_deadline: date | None
    grace_days: int | None
    renewed_from_id: int | None
    status: SubscriptionStatus

    model_config = {"from_attributes": True}


class SubscriptionFilters(BaseModel):
    student_id: str | None = None
    status: SubscriptionStatus | None = None
