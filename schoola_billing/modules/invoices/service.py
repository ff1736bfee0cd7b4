"""Service for Invoices module."""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from schoola_billing.core.audit.service import AuditAction, AuditService
from schoola_billing.core.config import settings
from schoola_billing.core.documents.number_generator import DocumentNumberGenerator
from schoola_billing.core.exceptions import (
    AppException,
    DiscountNotApplicableError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from schoola_billing.modules.discounts.evaluator import EvaluationContext, evaluate
from schoola_billing.modules.discounts.models import Discount, DiscountApplicableTo, DiscountType
from schoola_billing.modules.discounts.service import DiscountService
from schoola_billing.modules.invoices import aggregator
from schoola_billing.modules.invoices.models import (
    Invoice,
    InvoiceDiscount,
    InvoiceItem,
    InvoiceStatus,
    InvoiceTax,
)
from schoola_billing.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceDiscountCreate,
    InvoiceFilters,
    InvoiceItemCreate,
    InvoiceTaxCreate,
)
from schoola_billing.modules.subscriptions.models import Subscription
from schoola_billing.shared.utils.dates import to_date, utc_now
from schoola_billing.shared.utils.money import ZERO, percentage_of, round_money

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for managing invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Helper Methods ---

    def _ensure_editable(self, invoice: Invoice) -> None:
        if not invoice.is_editable:
            raise ValidationError(
                f"Cannot change invoice with status '{invoice.status}', only drafts are editable"
            )

    def _manual_discount_amount(self, invoice: Invoice, data: InvoiceDiscountCreate) -> Decimal:
        if data.applied_amount is not None:
            return round_money(data.applied_amount)
        if data.discount_type == DiscountType.PERCENTAGE:
            if data.value > 100:
                raise ValidationError("Percentage discount cannot exceed 100", field="value")
            return round_money(percentage_of(invoice.subtotal, data.value))
        if data.discount_type == DiscountType.FIXED_AMOUNT:
            return round_money(data.value)
        raise ValidationError(
            "buy_x_get_y discounts have no computable amount, pass applied_amount",
            field="applied_amount",
        )

    def _tax_amount(self, invoice: Invoice, data: InvoiceTaxCreate) -> Decimal:
        if data.applied_amount is not None:
            return round_money(data.applied_amount)
        taxable = max(ZERO, invoice.subtotal - invoice.total_discounts)
        return round_money(percentage_of(taxable, data.rate))

    def _discount_target(self, invoice: Invoice, discount: Discount) -> str | None:
        """Entity id the code's scope is checked against."""
        if discount.applicable_to == DiscountApplicableTo.SUBSCRIPTIONS.value:
            return str(invoice.subscription_id) if invoice.subscription_id else None
        if discount.applicable_to == DiscountApplicableTo.GROUPS.value:
            return invoice.group_id
        if discount.applicable_to == DiscountApplicableTo.COURSES.value:
            course_ids = [item.course_id for item in invoice.items if item.course_id]
            for course_id in course_ids:
                if course_id in (discount.applicable_ids or []):
                    return course_id
            return course_ids[0] if course_ids else None
        return None

    def _append_manual_discount(self, invoice: Invoice, data: InvoiceDiscountCreate) -> InvoiceDiscount:
        return aggregator.add_discount_entry(
            invoice,
            discount_type=data.discount_type.value,
            value=data.value,
            applied_amount=self._manual_discount_amount(invoice, data),
            description=data.description,
        )

    def _append_tax(self, invoice: Invoice, data: InvoiceTaxCreate) -> InvoiceTax:
        return aggregator.add_tax_entry(
            invoice, name=data.name, rate=data.rate, applied_amount=self._tax_amount(invoice, data)
        )

    def _append_item(self, invoice: Invoice, data: InvoiceItemCreate) -> InvoiceItem:
        return aggregator.add_item(
            invoice,
            description=data.description,
            quantity=data.quantity,
            unit_price=data.unit_price,
            course_id=data.course_id,
            session_id=data.session_id,
            subscription_id=data.subscription_id,
        )

    # --- Invoice CRUD ---

    async def create_invoice(self, data: InvoiceCreate, created_by: str | None = None) -> Invoice:
        """Create a draft invoice. The number is assigned when it is issued."""
        currency = (data.currency or settings.default_currency).upper()
        if data.subscription_id is not None:
            result = await self.db.execute(
                select(Subscription).where(Subscription.id == data.subscription_id)
            )
            subscription = result.scalar_one_or_none()
            if not subscription:
                raise NotFoundError("Subscription", data.subscription_id)
            if data.currency is None:
                currency = subscription.currency

        invoice = Invoice(
            sequence_scope=(data.sequence_scope or settings.invoice_sequence_scope).upper(),
            student_id=data.student_id,
            subscription_id=data.subscription_id,
            group_id=data.group_id,
            currency=currency,
            status=InvoiceStatus.DRAFT.value,
            due_date=data.due_date,
            notes=data.notes,
            created_by=created_by,
            subtotal=ZERO,
            total_discounts=ZERO,
            total_taxes=ZERO,
            total_amount=ZERO,
            items=[],
            discounts=[],
            taxes=[],
        )

        # Discounts and taxes are priced against the running totals
        for item_data in data.items:
            self._append_item(invoice, item_data)
        aggregator.recompute(invoice)
        for discount_data in data.discounts:
            self._append_manual_discount(invoice, discount_data)
        aggregator.recompute(invoice)
        for tax_data in data.taxes:
            self._append_tax(invoice, tax_data)
        aggregator.recompute(invoice)

        self.db.add(invoice)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_id=created_by,
            new_values={
                "student_id": invoice.student_id,
                "subscription_id": invoice.subscription_id,
                "total_amount": str(invoice.total_amount),
            },
        )

        await self.db.commit()
        return await self.get_invoice(invoice.id)

    async def get_invoice(self, invoice_id: int, for_update: bool = False) -> Invoice:
        """Get invoice by ID with items, discounts and taxes loaded."""
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(
                selectinload(Invoice.items),
                selectinload(Invoice.discounts),
                selectinload(Invoice.taxes),
            )
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices(self, filters: InvoiceFilters) -> tuple[list[Invoice], int]:
        """List invoices with filters."""
        query = (
            select(Invoice)
            .options(
                selectinload(Invoice.items),
                selectinload(Invoice.discounts),
                selectinload(Invoice.taxes),
            )
            .order_by(Invoice.id.desc())
        )

        if filters.student_id is not None:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.subscription_id is not None:
            query = query.where(Invoice.subscription_id == filters.subscription_id)
        if filters.status is not None:
            query = query.where(Invoice.status == filters.status.value)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        offset = (filters.page - 1) * filters.limit
        result = await self.db.execute(query.offset(offset).limit(filters.limit))
        return list(result.scalars().all()), total

    # --- Lines ---

    async def add_item(
        self, invoice_id: int, data: InvoiceItemCreate, actor_id: str | None = None
    ) -> Invoice:
        """Append an item to a draft invoice and recompute its totals."""
        invoice = await self.get_invoice(invoice_id)
        self._ensure_editable(invoice)

        item = self._append_item(invoice, data)
        aggregator.recompute(invoice)

        await self.audit.log(
            action=AuditAction.UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_id=actor_id,
            comment=f"Item added: {item.description}",
            new_values={"total_price": str(item.total_price), "subtotal": str(invoice.subtotal)},
        )
        await self.db.commit()
        return await self.get_invoice(invoice_id)

    async def add_discount_entry(
        self, invoice_id: int, data: InvoiceDiscountCreate, actor_id: str | None = None
    ) -> Invoice:
        """Append a manual discount entry to a draft invoice."""
        invoice = await self.get_invoice(invoice_id)
        self._ensure_editable(invoice)
        aggregator.recompute(invoice)

        entry = self._append_manual_discount(invoice, data)
        aggregator.recompute(invoice)

        await self.audit.log(
            action=AuditAction.UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_id=actor_id,
            comment="Discount entry added",
            new_values={
                "discount_type": entry.discount_type,
                "applied_amount": str(entry.applied_amount),
                "total_amount": str(invoice.total_amount),
            },
        )
        await self.db.commit()
        return await self.get_invoice(invoice_id)

    async def remove_discount_entry(
        self, invoice_id: int, entry_id: int, actor_id: str | None = None
    ) -> Invoice:
        """Drop a discount entry from a draft, e.g. a code that can no longer be redeemed."""
        invoice = await self.get_invoice(invoice_id)
        self._ensure_editable(invoice)

        entry = next((e for e in invoice.discounts if e.id == entry_id), None)
        if entry is None:
            raise NotFoundError("Invoice discount", entry_id)

        invoice.discounts.remove(entry)
        for position, remaining in enumerate(invoice.discounts, start=1):
            remaining.position = position
        aggregator.recompute(invoice)

        await self.audit.log(
            action=AuditAction.UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_id=actor_id,
            comment="Discount entry removed",
            old_values={
                "discount_code": entry.discount_code,
                "applied_amount": str(entry.applied_amount),
            },
            new_values={"total_amount": str(invoice.total_amount)},
        )
        await self.db.commit()
        return await self.get_invoice(invoice_id)

    async def add_tax_entry(
        self, invoice_id: int, data: InvoiceTaxCreate, actor_id: str | None = None
    ) -> Invoice:
        """Append a tax entry to a draft invoice."""
        invoice = await self.get_invoice(invoice_id)
        self._ensure_editable(invoice)
        aggregator.recompute(invoice)

        entry = self._append_tax(invoice, data)
        aggregator.recompute(invoice)

        await self.audit.log(
            action=AuditAction.UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_id=actor_id,
            comment=f"Tax added: {entry.name}",
            new_values={
                "rate": str(entry.rate),
                "applied_amount": str(entry.applied_amount),
                "total_amount": str(invoice.total_amount),
            },
        )
        await self.db.commit()
        return await self.get_invoice(invoice_id)

    async def apply_discount_code(
        self,
        invoice_id: int,
        code: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """
        Apply a promotional code to a draft invoice.

        The code is evaluated against the invoice subtotal and appended as a
        pending entry. The usage ledger is only written when the invoice is issued.
        """
        now = now or utc_now()
        invoice = await self.get_invoice(invoice_id)
        self._ensure_editable(invoice)
        aggregator.recompute(invoice)

        discount = await DiscountService(self.db).get_discount_by_code(code)
        if any(entry.discount_code == discount.code for entry in invoice.discounts):
            raise DuplicateError("Invoice discount", "discount_code", discount.code)

        redeemer = user_id or invoice.student_id
        evaluation = evaluate(
            discount,
            EvaluationContext(
                now=now,
                user_id=redeemer,
                proposed_amount=invoice.subtotal,
                target_entity_id=self._discount_target(invoice, discount),
            ),
        )
        if not evaluation.valid:
            raise DiscountNotApplicableError(discount.code, evaluation.reason)
        if evaluation.requires_manual_benefit:
            raise ValidationError(
                f"Discount '{discount.code}' is a buy_x_get_y code and cannot be applied to an invoice",
                field="code",
            )

        entry = aggregator.add_discount_entry(
            invoice,
            discount_type=discount.discount_type,
            value=discount.value,
            applied_amount=evaluation.amount,
            description=discount.name,
            discount_code=discount.code,
            redeemed_by=redeemer,
        )
        aggregator.recompute(invoice)

        await self.audit.log(
            action=AuditAction.APPLY_DISCOUNT,
            entity_type="Invoice",
            entity_id=invoice.id,
            entity_identifier=discount.code,
            actor_id=redeemer,
            new_values={
                "applied_amount": str(entry.applied_amount),
                "total_amount": str(invoice.total_amount),
            },
        )
        await self.db.commit()
        logger.info(
            "Discount %s applied to invoice %s for %s", discount.code, invoice.id, entry.applied_amount
        )
        return await self.get_invoice(invoice_id)

    # --- Lifecycle ---

    async def issue_invoice(
        self,
        invoice_id: int,
        issue_date: date | None = None,
        due_date: date | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """
        Issue a draft invoice: assign its number and mark it sent.

        Promotional codes applied to the draft are written to their usage
        ledgers here, with the invoice number as the transaction id. A code
        that can no longer be redeemed aborts the issue and the invoice stays a
        draft. An invoice discounted down to zero has nothing to collect and is
        settled immediately.
        """
        now = now or utc_now()
        try:
            return await self._issue_invoice(invoice_id, issue_date, due_date, actor_id, now)
        except AppException:
            await self.db.rollback()
            raise

    async def _issue_invoice(
        self,
        invoice_id: int,
        issue_date: date | None,
        due_date: date | None,
        actor_id: str | None,
        now: datetime,
    ) -> Invoice:
        invoice = await self.get_invoice(invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise ValidationError("Only draft invoices can be issued")
        if not invoice.items:
            raise ValidationError("Cannot issue an invoice with no items")

        aggregator.recompute(invoice)
        issue_date = issue_date or to_date(now)

        number_gen = DocumentNumberGenerator(self.db)
        invoice.invoice_number = await number_gen.issue_number(
            invoice.sequence_scope, issue_date.year
        )
        committed_codes = await self._commit_discount_codes(invoice, now)

        invoice.issue_date = issue_date
        invoice.due_date = due_date or invoice.due_date or (issue_date + timedelta(days=30))
        if invoice.total_amount == ZERO:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = now
        else:
            invoice.status = InvoiceStatus.SENT.value

        await self.audit.log(
            action=AuditAction.ISSUE_INVOICE,
            entity_type="Invoice",
            entity_id=invoice.id,
            entity_identifier=invoice.invoice_number,
            actor_id=actor_id,
            new_values={
                "status": invoice.status,
                "total_amount": str(invoice.total_amount),
                "due_date": invoice.due_date.isoformat(),
                "committed_discount_codes": committed_codes,
            },
        )
        await self.db.commit()
        logger.info(
            "Invoice %s issued as %s (%s)", invoice.id, invoice.invoice_number, invoice.status
        )
        return await self.get_invoice(invoice_id)

    async def _commit_discount_codes(self, invoice: Invoice, now: datetime) -> list[str]:
        """Record one redemption per pending code entry. The caller commits."""
        committed = []
        discounts = DiscountService(self.db)
        for entry in invoice.discounts:
            if not entry.is_pending_commit:
                continue
            await discounts.commit_usage(
                entry.discount_code,
                user_id=entry.redeemed_by or invoice.student_id,
                transaction_id=invoice.invoice_number,
                now=now,
                commit=False,
            )
            entry.usage_committed = True
            committed.append(entry.discount_code)
        return committed

    async def cancel_invoice(self, invoice_id: int, actor_id: str | None = None) -> Invoice:
        """Cancel an unpaid invoice. An issued number stays consumed."""
        invoice = await self.get_invoice(invoice_id)
        if not invoice.can_be_canceled:
            raise ValidationError(f"Cannot cancel invoice with status '{invoice.status}'")

        old_status = invoice.status
        invoice.status = InvoiceStatus.CANCELED.value

        await self.audit.log(
            action=AuditAction.CANCEL,
            entity_type="Invoice",
            entity_id=invoice.id,
            entity_identifier=invoice.invoice_number,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": InvoiceStatus.CANCELED.value},
        )
        await self.db.commit()
        return await self.get_invoice(invoice_id)

    async def list_overdue(self, now: date | datetime | None = None) -> list[tuple[Invoice, int]]:
        """Sent invoices past their due date, with days overdue, oldest first."""
        now = now or utc_now()
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.paid_at.is_(None),
                Invoice.due_date < to_date(now),
            )
            .order_by(Invoice.due_date, Invoice.id)
        )
        return [
            (invoice, aggregator.days_overdue(invoice, now))
            for invoice in result.scalars().all()
            if aggregator.is_overdue(invoice, now)
        ]
