"""Schemas for Discounts module."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from schoola_billing.modules.discounts.models import DiscountApplicableTo, DiscountType
from schoola_billing.shared.schemas.base import Money


class DiscountCreate(BaseModel):
    """Schema for creating a discount code."""

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    discount_type: DiscountType
    value: Decimal = Field(..., ge=0)
    max_usage: int | None = Field(None, ge=1)
    max_usage_per_user: int | None = Field(None, ge=1)
    min_order_amount: Decimal | None = Field(None, ge=0)
    max_discount_amount: Decimal | None = Field(None, ge=0)
    applicable_to: DiscountApplicableTo = DiscountApplicableTo.ALL
    applicable_ids: list[str] = []
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Codes are matched case-insensitively, store them upper-cased."""
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_definition(self):
        """Validate percentage range and validity window."""
        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        if self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be before valid_from")
        return self


class DiscountUpdate(BaseModel):
    """Schema for updating a discount code. Usage counters are not editable."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    value: Decimal | None = Field(None, ge=0)
    max_usage: int | None = Field(None, ge=1)
    max_usage_per_user: int | None = Field(None, ge=1)
    min_order_amount: Decimal | None = Field(None, ge=0)
    max_discount_amount: Decimal | None = Field(None, ge=0)
    applicable_ids: list[str] | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool | None = None


class DiscountUsageResponse(BaseModel):
    """Ledger entry for one user."""

    user_id: str
    usage_count: int
    first_used_at: datetime
    last_used_at: datetime
    transaction_ids: list[str]

    model_config = {"from_attributes": True}


class DiscountResponse(BaseModel):
    """Schema for discount response."""

    id: int
    code: str
    name: str
    description: str | None
    discount_type: str
    value: Decimal
    formatted_value: str
    max_usage: int | None
    max_usage_per_user: int | None
    min_order_amount: Money | None
    max_discount_amount: Money | None
    applicable_to: str
    applicable_ids: list[str]
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    current_usage: int
    remaining_usage: int | None
    is_usage_limit_reached: bool
    usages: list[DiscountUsageResponse] = []

    model_config = {"from_attributes": True}


class DiscountEvaluateRequest(BaseModel):
    """Proposed charge to evaluate a code against."""

    user_id: str | None = None
    proposed_amount: Decimal = Field(..., ge=0)
    target_entity_id: str | None = None
    at: datetime | None = None


class DiscountEvaluationResponse(BaseModel):
    code: str
    valid: bool
    reason: str | None
    amount: Money
    requires_manual_benefit: bool

    model_config = {"from_attributes": True}


class DiscountRedeemRequest(BaseModel):
    """Record one redemption of a code in the usage ledger."""

    user_id: str = Field(..., min_length=1, max_length=64)
    transaction_id: str = Field(..., min_length=1, max_length=64)


class DiscountTypeStatistics(BaseModel):
    discount_type: str
    total: int
    active: int
    total_usage: int
