"""Service for Payments module."""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.audit.service import AuditAction, AuditService
from schoola_billing.core.config import settings
from schoola_billing.core.documents.number_generator import DocumentNumberGenerator
from schoola_billing.core.exceptions import AppException, NotFoundError, ValidationError
from schoola_billing.modules.invoices import aggregator
from schoola_billing.modules.invoices.models import Invoice, InvoiceStatus
from schoola_billing.modules.invoices.service import InvoiceService
from schoola_billing.modules.payments.models import Payment
from schoola_billing.modules.payments.schemas import PaymentCreate, PaymentResponse, PaymentResult
from schoola_billing.modules.subscriptions.resolver import resolve_status
from schoola_billing.modules.subscriptions.service import SubscriptionService
from schoola_billing.shared.utils.dates import to_date, utc_now
from schoola_billing.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


class PaymentService:
    """Records payments and propagates them to invoices, discount codes and subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_payment(self, payment_id: int) -> Payment:
        """Get payment by ID."""
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def get_paid_total(self, invoice_id: int) -> Decimal:
        """Sum of all payments recorded against an invoice."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.invoice_id == invoice_id
            )
        )
        return round_money(result.scalar() or ZERO)

    async def record_payment(
        self,
        data: PaymentCreate,
        received_by: str | None = None,
        now: datetime | None = None,
    ) -> PaymentResult:
        """
        Record a payment against an issued invoice.

        In one transaction the invoice is recomputed and marked paid once fully
        covered, and the amount is added to the linked subscription.
        Promotional codes on the invoice were already redeemed when it was issued.
        Any failure rolls the whole payment back.
        """
        now = now or utc_now()
        try:
            return await self._record_payment(data, received_by, now)
        except AppException:
            await self.db.rollback()
            raise

    async def _record_payment(
        self, data: PaymentCreate, received_by: str | None, now: datetime
    ) -> PaymentResult:
        invoice = await InvoiceService(self.db).get_invoice(data.invoice_id, for_update=True)
        self._ensure_payable(invoice)

        aggregator.recompute(invoice)
        paid_before = await self.get_paid_total(invoice.id)
        remaining = round_money(invoice.total_amount - paid_before)
        if data.amount > remaining:
            raise ValidationError(
                f"Payment of {data.amount} exceeds the remaining balance {remaining}",
                field="amount",
            )

        payment_date = data.payment_date or to_date(now)
        number_gen = DocumentNumberGenerator(self.db)
        payment_number = await number_gen.generate(
            settings.payment_number_prefix, payment_date.year
        )

        payment = Payment(
            payment_number=payment_number,
            invoice_id=invoice.id,
            subscription_id=invoice.subscription_id,
            student_id=invoice.student_id,
            amount=round_money(data.amount),
            currency=invoice.currency,
            payment_method=data.payment_method.value,
            payment_date=payment_date,
            reference=data.reference,
            notes=data.notes,
            received_by=received_by,
        )
        self.db.add(payment)
        await self.db.flush()

        paid_total = round_money(paid_before + payment.amount)
        if paid_total >= invoice.total_amount:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = now

        subscription_status = None
        if invoice.subscription_id is not None:
            subscription = await SubscriptionService(self.db).apply_payment(
                invoice.subscription_id, payment.amount, now=now, reference=payment_number
            )
            subscription_status = resolve_status(subscription, now)

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="Payment",
            entity_id=payment.id,
            entity_identifier=payment_number,
            actor_id=received_by,
            new_values={
                "invoice_id": invoice.id,
                "amount": str(payment.amount),
                "invoice_status": invoice.status,
            },
        )

        await self.db.commit()
        logger.info(
            "Payment %s of %s recorded for invoice %s (%s/%s paid)",
            payment_number,
            payment.amount,
            invoice.id,
            paid_total,
            invoice.total_amount,
        )

        return PaymentResult(
            payment=PaymentResponse.model_validate(payment),
            invoice_status=invoice.status,
            invoice_total=invoice.total_amount,
            invoice_paid_total=paid_total,
            subscription_status=subscription_status,
        )

    def _ensure_payable(self, invoice: Invoice) -> None:
        if invoice.status == InvoiceStatus.DRAFT.value:
            raise ValidationError("Cannot record a payment against a draft invoice")
        if invoice.status == InvoiceStatus.CANCELED.value:
            raise ValidationError("Cannot record a payment against a canceled invoice")
        if not invoice.can_receive_payment:
            raise ValidationError(f"Invoice with status '{invoice.status}' cannot receive payments")
