"""Schemas for Invoices module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from schoola_billing.modules.discounts.models import DiscountType
from schoola_billing.modules.invoices.models import InvoiceStatus
from schoola_billing.shared.schemas.base import Money


# --- Invoice Line Schemas ---


class InvoiceItemCreate(BaseModel):
    """Schema for adding an item to an invoice."""

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(Decimal("1"), ge=0)
    unit_price: Decimal = Field(..., ge=0)
    course_id: str | None = None
    session_id: str | None = None
    subscription_id: int | None = None


class InvoiceItemResponse(BaseModel):
    id: int
    position: int
    description: str
    course_id: str | None
    session_id: str | None
    subscription_id: int | None
    quantity: Decimal
    unit_price: Money
    total_price: Money
    currency: str

    model_config = {"from_attributes": True}


class InvoiceDiscountCreate(BaseModel):
    """
    Schema for a manual discount entry.

    Without applied_amount the amount is derived from the invoice subtotal
    (percentage) or taken as the value itself (fixed amount).
    """

    discount_type: DiscountType
    value: Decimal = Field(..., ge=0)
    description: str | None = Field(None, max_length=500)
    applied_amount: Decimal | None = Field(None, ge=0)


class InvoiceDiscountResponse(BaseModel):
    id: int
    position: int
    discount_type: str
    value: Decimal
    description: str | None
    applied_amount: Money
    currency: str
    discount_code: str | None
    usage_committed: bool

    model_config = {"from_attributes": True}


class InvoiceTaxCreate(BaseModel):
    """Tax entry; without applied_amount the rate is applied to the discounted subtotal."""

    name: str = Field(..., min_length=1, max_length=100)
    rate: Decimal = Field(..., ge=0, le=100)
    applied_amount: Decimal | None = Field(None, ge=0)


class InvoiceTaxResponse(BaseModel):
    id: int
    position: int
    name: str
    rate: Decimal
    applied_amount: Money
    currency: str

    model_config = {"from_attributes": True}


class InvoiceDiscountCodeApply(BaseModel):
    """Apply a promotional code to an invoice."""

    code: str = Field(..., min_length=1, max_length=50)
    user_id: str | None = None


# --- Invoice Schemas ---


class InvoiceCreate(BaseModel):
    """Schema for creating a draft invoice."""

    student_id: str = Field(..., min_length=1, max_length=64)
    subscription_id: int | None = None
    group_id: str | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    sequence_scope: str | None = Field(None, max_length=20)
    due_date: date | None = None
    notes: str | None = None
    items: list[InvoiceItemCreate] = Field(default_factory=list)
    discounts: list[InvoiceDiscountCreate] = Field(default_factory=list)
    taxes: list[InvoiceTaxCreate] = Field(default_factory=list)


class InvoiceIssueRequest(BaseModel):
    issue_date: date | None = None
    due_date: date | None = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    id: int
    invoice_number: str | None
    sequence_scope: str
    student_id: str
    subscription_id: int | None
    group_id: str | None
    currency: str
    status: str
    issue_date: date | None
    due_date: date | None
    paid_at: datetime | None
    subtotal: Money
    total_discounts: Money
    total_taxes: Money
    total_amount: Money
    formatted_total: str
    notes: str | None
    items: list[InvoiceItemResponse] = Field(default_factory=list)
    discounts: list[InvoiceDiscountResponse] = Field(default_factory=list)
    taxes: list[InvoiceTaxResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class OverdueInvoiceResponse(BaseModel):
    """Brief invoice summary with aging."""

    id: int
    invoice_number: str | None
    student_id: str
    total_amount: Money
    formatted_total: str
    due_date: date | None
    days_overdue: int


class InvoiceFilters(BaseModel):
    student_id: str | None = None
    subscription_id: int | None = None
    status: InvoiceStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(100, ge=1, le=500)
