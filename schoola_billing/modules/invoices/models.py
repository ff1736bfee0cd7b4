"""Invoice, InvoiceItem, InvoiceDiscount and InvoiceTax models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoola_billing.core.database.base import TimestampedModel
from schoola_billing.shared.utils.money import format_money


class InvoiceStatus(StrEnum):
    """Invoice status enumeration."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELED = "canceled"


class Invoice(TimestampedModel):
    """Invoice for a student, holding items, discounts and taxes."""

    __tablename__ = "invoices"

    # Assigned on issue; unique within sequence_scope
    invoice_number: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    sequence_scope: Mapped[str] = mapped_column(String(20), nullable=False)

    # Relations
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    subscription_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("subscriptions.id"), nullable=True, index=True
    )
    group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EGP")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True
    )

    # Dates
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Amounts, always written together by recompute()
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    total_discounts: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    total_taxes: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Relationships
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )
    discounts: Mapped[list["InvoiceDiscount"]] = relationship(
        "InvoiceDiscount",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceDiscount.position",
    )
    taxes: Mapped[list["InvoiceTax"]] = relationship(
        "InvoiceTax",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceTax.position",
    )

    __table_args__ = (
        UniqueConstraint("sequence_scope", "invoice_number", name="uq_invoice_scope_number"),
    )

    @property
    def is_dirty(self) -> bool:
        """True after a line was added and before totals were recomputed."""
        return getattr(self, "_totals_dirty", False)

    @property
    def is_editable(self) -> bool:
        """Check if invoice can be edited (add lines, discounts, taxes)."""
        return self.status == InvoiceStatus.DRAFT.value

    @property
    def can_receive_payment(self) -> bool:
        return self.status in (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value)

    @property
    def can_be_canceled(self) -> bool:
        return self.status in (
            InvoiceStatus.DRAFT.value,
            InvoiceStatus.SENT.value,
            InvoiceStatus.OVERDUE.value,
        )

    @property
    def formatted_total(self) -> str:
        return format_money(self.total_amount or Decimal("0.00"), self.currency or "EGP")


class InvoiceItem(TimestampedModel):
    """Billable line on an invoice."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # What is billed
    course_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")


class InvoiceDiscount(TimestampedModel):
    """Discount entry on an invoice, manual or from a promotional code."""

    __tablename__ = "invoice_discounts"

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Set for promotional codes; the ledger is written when the invoice is issued
    discount_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    redeemed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    usage_committed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="discounts")

    @property
    def is_pending_commit(self) -> bool:
        return bool(self.discount_code) and not self.usage_committed


class InvoiceTax(TimestampedModel):
    """Tax entry on an invoice."""

    __tablename__ = "invoice_taxes"

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="taxes")
