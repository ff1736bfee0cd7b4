"""Promotional discount code and usage ledger models."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoola_billing.core.database.base import BigIntPK, TimestampedModel
from schoola_billing.shared.utils.money import round_money


class DiscountType(StrEnum):
    """How the discount amount is computed."""

    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE = "percentage"
    BUY_X_GET_Y = "buy_x_get_y"


class DiscountApplicableTo(StrEnum):
    """Which kind of entity the applicable ids refer to."""

    ALL = "all"
    COURSES = "courses"
    GROUPS = "groups"
    SUBSCRIPTIONS = "subscriptions"


class Discount(TimestampedModel):
    """Promotional discount code."""

    __tablename__ = "discounts"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Limits
    max_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_usage_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_order_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    # Scope
    applicable_to: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DiscountApplicableTo.ALL.value
    )
    applicable_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Validity window
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Global counter, always equal to the sum of usages.usage_count
    current_usage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Optimistic concurrency: every UPDATE checks and bumps this column
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    usages: Mapped[list["DiscountUsage"]] = relationship(
        "DiscountUsage",
        back_populates="discount",
        cascade="all, delete-orphan",
        order_by="DiscountUsage.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_usage_limit_reached(self) -> bool:
        if not self.max_usage:
            return False
        return (self.current_usage or 0) >= self.max_usage

    @property
    def remaining_usage(self) -> int | None:
        """Redemptions left before the global cap, None when uncapped."""
        if not self.max_usage:
            return None
        return max(0, self.max_usage - (self.current_usage or 0))

    @property
    def formatted_value(self) -> str:
        if self.discount_type == DiscountType.PERCENTAGE.value:
            return f"{self.value.normalize():f}%"
        if self.discount_type == DiscountType.FIXED_AMOUNT.value:
            return f"{round_money(self.value):.2f}"
        if self.discount_type == DiscountType.BUY_X_GET_Y.value:
            return f"Buy {self.value.normalize():f} Get Y"
        return str(self.value)

    def usage_for(self, user_id: str) -> "DiscountUsage | None":
        """Ledger entry for a user, if the user has redeemed this code."""
        for usage in self.usages:
            if usage.user_id == user_id:
                return usage
        return None

    def ledger_total(self) -> int:
        return sum(usage.usage_count for usage in self.usages)


class DiscountUsage(TimestampedModel):
    """Per-user redemption ledger entry for a discount code."""

    __tablename__ = "discount_usages"

    discount_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    transaction_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    discount: Mapped["Discount"] = relationship("Discount", back_populates="usages")

    __table_args__ = (
        UniqueConstraint("discount_id", "user_id", name="uq_discount_usage_discount_user"),
    )
