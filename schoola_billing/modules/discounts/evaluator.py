"""Discount code evaluation.

Pure functions: nothing here touches the database or mutates the discount.
Validity checks run in a fixed order and the first failing check supplies the
reason, so a caller always gets one unambiguous message:

1. active flag
2. validity window
3. global usage cap
4. per-user usage cap
5. minimum order amount
6. applicable entity scope

buy_x_get_y codes are reported valid with a zero amount. Which items become
free depends on the order contents, which the evaluator does not see, so the
caller has to grant that benefit itself (``requires_manual_benefit``).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from schoola_billing.modules.discounts.models import Discount, DiscountType
from schoola_billing.shared.utils.dates import as_utc
from schoola_billing.shared.utils.money import ZERO, percentage_of, round_money, to_decimal

REASON_INACTIVE = "Discount is not active"
REASON_NOT_YET_VALID = "Discount not yet valid"
REASON_EXPIRED = "Discount has expired"
REASON_USAGE_LIMIT = "Discount usage limit exceeded"
REASON_USER_USAGE_LIMIT = "User usage limit exceeded"
REASON_BELOW_MINIMUM = "Order amount below minimum"
REASON_OUT_OF_SCOPE = "Discount does not apply to this item"


@dataclass(frozen=True)
class EvaluationContext:
    """Everything the evaluator needs to know about the proposed charge."""

    now: datetime
    user_id: str | None
    proposed_amount: Decimal
    target_entity_id: str | None = None


@dataclass(frozen=True)
class DiscountEvaluation:
    valid: bool
    amount: Decimal
    reason: str | None = None
    requires_manual_benefit: bool = False

    @classmethod
    def rejected(cls, reason: str) -> "DiscountEvaluation":
        return cls(valid=False, amount=ZERO, reason=reason)


def check_redeemable(discount: Discount, now: datetime, user_id: str | None) -> str | None:
    """Activity, window and usage-cap checks. Returns the failure reason or None."""
    if not discount.is_active:
        return REASON_INACTIVE

    now = as_utc(now)
    if now < as_utc(discount.valid_from):
        return REASON_NOT_YET_VALID
    if now > as_utc(discount.valid_until):
        return REASON_EXPIRED

    if discount.max_usage is not None and (discount.current_usage or 0) >= discount.max_usage:
        return REASON_USAGE_LIMIT

    if discount.max_usage_per_user is not None and user_id is not None:
        usage = discount.usage_for(user_id)
        if usage is not None and usage.usage_count >= discount.max_usage_per_user:
            return REASON_USER_USAGE_LIMIT

    return None


def calculate_amount(discount: Discount, proposed_amount: Decimal) -> Decimal:
    """Discount amount for a valid code, clamped and rounded."""
    value = to_decimal(discount.value)
    if discount.discount_type == DiscountType.FIXED_AMOUNT.value:
        amount = value
    elif discount.discount_type == DiscountType.PERCENTAGE.value:
        amount = percentage_of(proposed_amount, value)
    else:
        amount = ZERO

    if discount.max_discount_amount is not None:
        amount = min(amount, to_decimal(discount.max_discount_amount))

    return round_money(amount)


def evaluate(discount: Discount, context: EvaluationContext) -> DiscountEvaluation:
    """Decide whether the discount applies to the proposed charge and by how much."""
    reason = check_redeemable(discount, context.now, context.user_id)
    if reason:
        return DiscountEvaluation.rejected(reason)

    proposed = to_decimal(context.proposed_amount)
    if discount.min_order_amount is not None and proposed < to_decimal(discount.min_order_amount):
        return DiscountEvaluation.rejected(REASON_BELOW_MINIMUM)

    # No ids means the code applies to everything within its scope
    applicable_ids = discount.applicable_ids or []
    if applicable_ids and context.target_entity_id not in applicable_ids:
        return DiscountEvaluation.rejected(REASON_OUT_OF_SCOPE)

    return DiscountEvaluation(
        valid=True,
        amount=calculate_amount(discount, proposed),
        requires_manual_benefit=discount.discount_type == DiscountType.BUY_X_GET_Y.value,
    )
