"""Schemas for Payments module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from schoola_billing.modules.payments.models import PaymentMethod
from schoola_billing.modules.subscriptions.models import SubscriptionStatus
from schoola_billing.shared.schemas.base import Money


class PaymentCreate(BaseModel):
    """Schema for recording a payment against an invoice."""

    invoice_id: int
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    payment_date: date | None = None
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    id: int
    payment_number: str
    invoice_id: int
    subscription_id: int | None
    student_id: str
    amount: Money
    currency: str
    payment_method: str
    payment_date: date
    reference: str | None
    notes: str | None
    received_by: str | None

    model_config = {"from_attributes": True}


class PaymentResult(BaseModel):
    """Recorded payment with the state it left the invoice and subscription in."""

    payment: PaymentResponse
    invoice_status: str
    invoice_total: Money
    invoice_paid_total: Money
    subscription_status: SubscriptionStatus | None = None
