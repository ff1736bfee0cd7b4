"""Service for Discounts module."""

import logging
from datetime import datetime, timezone

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from schoola_billing.core.audit.service import AuditAction, AuditService
from schoola_billing.core.exceptions import (
    ConcurrencyConflictError,
    DiscountNotApplicableError,
    DuplicateError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from schoola_billing.modules.discounts.evaluator import (
    DiscountEvaluation,
    EvaluationContext,
    check_redeemable,
    evaluate,
)
from schoola_billing.modules.discounts.models import Discount, DiscountType, DiscountUsage
from schoola_billing.modules.discounts.schemas import (
    DiscountCreate,
    DiscountTypeStatistics,
    DiscountUpdate,
)
from schoola_billing.shared.utils.dates import as_utc, utc_now

logger = logging.getLogger(__name__)


class DiscountService:
    """Service for discount codes and their usage ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Definition Methods ---

    async def create_discount(self, data: DiscountCreate, created_by: str | None = None) -> Discount:
        """Create a new discount code."""
        existing = await self.db.execute(select(Discount.id).where(Discount.code == data.code))
        if existing.scalar_one_or_none():
            raise DuplicateError("Discount", "code", data.code)

        discount = Discount(
            code=data.code,
            name=data.name,
            description=data.description,
            discount_type=data.discount_type.value,
            value=data.value,
            max_usage=data.max_usage,
            max_usage_per_user=data.max_usage_per_user,
            min_order_amount=data.min_order_amount,
            max_discount_amount=data.max_discount_amount,
            applicable_to=data.applicable_to.value,
            applicable_ids=list(data.applicable_ids),
            valid_from=data.valid_from,
            valid_until=data.valid_until,
            is_active=data.is_active,
            current_usage=0,
            created_by=created_by,
        )
        self.db.add(discount)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="Discount",
            entity_id=discount.id,
            entity_identifier=discount.code,
            actor_id=created_by,
            new_values={
                "discount_type": discount.discount_type,
                "value": str(discount.value),
                "max_usage": discount.max_usage,
            },
        )

        await self.db.commit()
        return await self.get_discount_by_code(discount.code)

    async def get_discount_by_code(self, code: str, for_update: bool = False) -> Discount:
        """Get discount by code (case-insensitive) with its usage ledger."""
        stmt = (
            select(Discount)
            .where(Discount.code == code.strip().upper())
            .options(selectinload(Discount.usages))
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        discount = result.scalar_one_or_none()
        if not discount:
            raise NotFoundError("Discount", code)
        return discount

    async def list_discounts(
        self,
        active_only: bool = False,
        discount_type: str | None = None,
        search: str | None = None,
        active_at: datetime | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[Discount], int]:
        """
        List discount codes, newest first.

        ``active_only`` checks the flag alone. ``active_at`` keeps only codes that
        are switched on and inside their validity window at that moment.
        ``search`` matches code, name or description, case-insensitively.
        """
        query = select(Discount).options(selectinload(Discount.usages))
        if active_only:
            query = query.where(Discount.is_active == True)  # noqa: E712
        if active_at is not None:
            moment = as_utc(active_at).astimezone(timezone.utc)
            query = query.where(
                Discount.is_active == True,  # noqa: E712
                Discount.valid_from <= moment,
                Discount.valid_until >= moment,
            )
        if discount_type:
            query = query.where(Discount.discount_type == discount_type)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Discount.code.ilike(pattern),
                    Discount.name.ilike(pattern),
                    Discount.description.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Discount.id.desc()).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_discount(
        self, code: str, data: DiscountUpdate, updated_by: str | None = None
    ) -> Discount:
        """Update a discount definition. The usage ledger is never touched here."""
        discount = await self.get_discount_by_code(code)
        changes = data.model_dump(exclude_unset=True)

        valid_from = changes.get("valid_from") or discount.valid_from
        valid_until = changes.get("valid_until") or discount.valid_until
        if as_utc(valid_until) < as_utc(valid_from):
            raise ValidationError("valid_until must not be before valid_from", field="valid_until")

        value = changes.get("value", discount.value)
        is_percentage = discount.discount_type == DiscountType.PERCENTAGE.value
        if is_percentage and value is not None and value > 100:
            raise ValidationError("Percentage discount cannot exceed 100%", field="value")

        old_values = {}
        new_values = {}
        for field, new_value in changes.items():
            current = getattr(discount, field)
            if new_value == current:
                continue
            old_values[field] = str(current) if current is not None else None
            new_values[field] = str(new_value) if new_value is not None else None
            setattr(discount, field, new_value)

        if new_values:
            await self.audit.log(
                action=AuditAction.UPDATE,
                entity_type="Discount",
                entity_id=discount.id,
                entity_identifier=discount.code,
                actor_id=updated_by,
                old_values=old_values,
                new_values=new_values,
            )

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrencyConflictError("Discount", discount.code)
        return await self.get_discount_by_code(discount.code)

    # --- Evaluation ---

    async def evaluate_code(self, code: str, context: EvaluationContext) -> DiscountEvaluation:
        """
        Evaluate a code against a proposed charge.

        Unknown codes raise NotFoundError; known but inapplicable codes return
        a structured result with ``valid=False`` and the reason.
        """
        discount = await self.get_discount_by_code(code)
        return evaluate(discount, context)

    # --- Usage Ledger ---

    async def commit_usage(
        self,
        code: str,
        user_id: str,
        transaction_id: str,
        now: datetime | None = None,
        commit: bool = True,
    ) -> Discount:
        """
        Record one redemption of a code by a user.

        The discount row is read under SELECT FOR UPDATE and written with a
        version check, so two concurrent redemptions cannot both pass the caps.
        The global counter and the user's ledger entry change in the same flush.
        With ``commit=False`` the caller owns the transaction.
        """
        now = now or utc_now()
        discount = await self.get_discount_by_code(code, for_update=True)

        if discount.ledger_total() != (discount.current_usage or 0):
            logger.error(
                "Ledger for discount %s diverged: current_usage=%s ledger_total=%s",
                discount.code,
                discount.current_usage,
                discount.ledger_total(),
            )
            raise InvariantViolationError(
                f"Usage ledger for discount '{discount.code}' does not match its usage counter",
                details={
                    "code": discount.code,
                    "current_usage": discount.current_usage,
                    "ledger_total": discount.ledger_total(),
                },
            )

        reason = check_redeemable(discount, now, user_id)
        if reason:
            raise DiscountNotApplicableError(discount.code, reason)

        usage = discount.usage_for(user_id)
        if usage is None:
            usage = DiscountUsage(
                user_id=user_id,
                usage_count=0,
                first_used_at=now,
                last_used_at=now,
                transaction_ids=[],
            )
            discount.usages.append(usage)

        usage.usage_count += 1
        usage.last_used_at = now
        # JSON columns are not mutation-tracked, assign a new list
        usage.transaction_ids = [*usage.transaction_ids, transaction_id]
        discount.current_usage = (discount.current_usage or 0) + 1

        try:
            await self.db.flush()
        except StaleDataError:
            await self.db.rollback()
            logger.warning(
                "Concurrent redemption of discount %s by %s lost the race", discount.code, user_id
            )
            raise ConcurrencyConflictError("Discount", discount.code)

        await self.audit.log(
            action=AuditAction.REDEEM_DISCOUNT,
            entity_type="Discount",
            entity_id=discount.id,
            entity_identifier=discount.code,
            actor_id=user_id,
            new_values={
                "transaction_id": transaction_id,
                "current_usage": discount.current_usage,
                "user_usage_count": usage.usage_count,
            },
        )

        if commit:
            await self.db.commit()
        logger.info(
            "Discount %s redeemed by %s (transaction %s), usage %s/%s",
            discount.code,
            user_id,
            transaction_id,
            discount.current_usage,
            discount.max_usage if discount.max_usage is not None else "unlimited",
        )
        return discount

    # --- Reporting ---

    async def get_statistics(self) -> list[DiscountTypeStatistics]:
        """Per-type totals: how many codes, how many active, total redemptions."""
        result = await self.db.execute(
            select(
                Discount.discount_type,
                func.count(Discount.id),
                func.sum(case((Discount.is_active == True, 1), else_=0)),  # noqa: E712
                func.coalesce(func.sum(Discount.current_usage), 0),
            )
            .group_by(Discount.discount_type)
            .order_by(func.count(Discount.id).desc(), Discount.discount_type)
        )
        return [
            DiscountTypeStatistics(
                discount_type=row[0],
                total=row[1],
                active=row[2] or 0,
                total_usage=row[3] or 0,
            )
            for row in result.all()
        ]
