"""Payment model."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from schoola_billing.core.database.base import TimestampedModel


class PaymentMethod(StrEnum):
    """Payment method options."""

    CASH = "cash"
    CARD = "card"
    ONLINE = "online"


class Payment(TimestampedModel):
    """
    Payment received against an issued invoice.

    Recording a payment recomputes the invoice, commits any promotional codes
    applied to it and adds the amount to the linked subscription.
    """

    __tablename__ = "payments"

    payment_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=False, index=True
    )
    subscription_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("subscriptions.id"), nullable=True, index=True
    )
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)  # gateway / receipt ref
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
