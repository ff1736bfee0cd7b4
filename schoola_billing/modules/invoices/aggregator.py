"""
Invoice totals and aging.

An invoice carries three ordered sequences (items, discount entries, tax
entries) and four stored totals derived from them:

    subtotal        = sum of item total_price
    total_discounts = sum of discount applied_amount
    total_taxes     = sum of tax applied_amount
    total_amount    = max(0, subtotal + total_taxes - total_discounts)

Appending to any sequence marks the invoice dirty; ``recompute`` derives all
four totals in one step and clears the flag. Over-discounting forgives the
remainder instead of producing a negative invoice.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from schoola_billing.core.exceptions import InvariantViolationError
from schoola_billing.modules.invoices.models import (
    Invoice,
    InvoiceDiscount,
    InvoiceItem,
    InvoiceStatus,
    InvoiceTax,
)
from schoola_billing.shared.utils.dates import to_date
from schoola_billing.shared.utils.money import ZERO, MoneyLike, round_money, sum_money, to_decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    total_discounts: Decimal
    total_taxes: Decimal
    total_amount: Decimal


def _require_non_negative(value: MoneyLike, field: str) -> Decimal:
    amount = to_decimal(value)
    if amount < 0:
        raise InvariantViolationError(
            f"Invoice {field} cannot be negative", details={"field": field, "value": str(amount)}
        )
    return amount


def _mark_dirty(invoice: Invoice) -> None:
    invoice._totals_dirty = True


def compute_totals(invoice: Invoice) -> InvoiceTotals:
    """Derive the four totals without touching the invoice."""
    subtotal = sum_money(item.total_price for item in invoice.items)
    if subtotal < 0:
        raise InvariantViolationError(
            "Invoice items produce a negative subtotal",
            details={"invoice_id": invoice.id, "subtotal": str(subtotal)},
        )
    total_discounts = sum_money(entry.applied_amount for entry in invoice.discounts)
    total_taxes = sum_money(entry.applied_amount for entry in invoice.taxes)
    total_amount = max(ZERO, round_money(subtotal + total_taxes - total_discounts))
    return InvoiceTotals(
        subtotal=subtotal,
        total_discounts=total_discounts,
        total_taxes=total_taxes,
        total_amount=total_amount,
    )


def recompute(invoice: Invoice) -> InvoiceTotals:
    """Assign all four totals from the current sequences. Idempotent."""
    totals = compute_totals(invoice)
    invoice.subtotal = totals.subtotal
    invoice.total_discounts = totals.total_discounts
    invoice.total_taxes = totals.total_taxes
    invoice.total_amount = totals.total_amount
    invoice._totals_dirty = False
    return totals


def add_item(
    invoice: Invoice,
    description: str,
    quantity: MoneyLike,
    unit_price: MoneyLike,
    course_id: str | None = None,
    session_id: str | None = None,
    subscription_id: int | None = None,
) -> InvoiceItem:
    quantity = _require_non_negative(quantity, "quantity")
    unit_price = _require_non_negative(unit_price, "unit_price")

    item = InvoiceItem(
        position=len(invoice.items) + 1,
        description=description,
        course_id=course_id,
        session_id=session_id,
        subscription_id=subscription_id,
        quantity=quantity,
        unit_price=round_money(unit_price),
        total_price=round_money(quantity * unit_price),
        currency=invoice.currency,
    )
    invoice.items.append(item)
    _mark_dirty(invoice)
    return item


def add_discount_entry(
    invoice: Invoice,
    discount_type: str,
    value: MoneyLike,
    applied_amount: MoneyLike,
    description: str | None = None,
    discount_code: str | None = None,
    redeemed_by: str | None = None,
) -> InvoiceDiscount:
    value = _require_non_negative(value, "discount value")
    applied_amount = _require_non_negative(applied_amount, "discount amount")

    entry = InvoiceDiscount(
        position=len(invoice.discounts) + 1,
        discount_type=discount_type,
        value=value,
        description=description,
        applied_amount=round_money(applied_amount),
        currency=invoice.currency,
        discount_code=discount_code,
        redeemed_by=redeemed_by,
        usage_committed=False,
    )
    invoice.discounts.append(entry)
    _mark_dirty(invoice)
    return entry


def add_tax_entry(
    invoice: Invoice, name: str, rate: MoneyLike, applied_amount: MoneyLike
) -> InvoiceTax:
    rate = _require_non_negative(rate, "tax rate")
    applied_amount = _require_non_negative(applied_amount, "tax amount")

    entry = InvoiceTax(
        position=len(invoice.taxes) + 1,
        name=name,
        rate=rate,
        applied_amount=round_money(applied_amount),
        currency=invoice.currency,
    )
    invoice.taxes.append(entry)
    _mark_dirty(invoice)
    return entry


def is_overdue(invoice: Invoice, now: date | datetime) -> bool:
    """Sent, past due and not marked paid."""
    if invoice.status != InvoiceStatus.SENT.value:
        return False
    if invoice.paid_at is not None or invoice.due_date is None:
        return False
    return invoice.due_date < to_date(now)


def days_overdue(invoice: Invoice, now: date | datetime) -> int:
    if not is_overdue(invoice, now):
        return 0
    if isinstance(now, datetime):
        due = datetime.combine(invoice.due_date, datetime.min.time(), tzinfo=now.tzinfo)
        return math.ceil((now - due).total_seconds() / 86400)
    return (now - invoice.due_date).days
