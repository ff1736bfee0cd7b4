from datetime import timedelta
from decimal import Decimal

from schoola_billing.modules.discounts.evaluator import (
    REASON_BELOW_MINIMUM,
    REASON_EXPIRED,
    REASON_INACTIVE,
    REASON_NOT_YET_VALID,
    REASON_OUT_OF_SCOPE,
    REASON_USAGE_LIMIT,
    REASON_USER_USAGE_LIMIT,
    EvaluationContext,
    evaluate,
)
from schoola_billing.modules.discounts.models import DiscountType, DiscountUsage
from tests.factories import NOW, make_discount


def context(amount="1000", user_id="student-1", target=None, now=NOW) -> EvaluationContext:
    return EvaluationContext(
        now=now, user_id=user_id, proposed_amount=Decimal(amount), target_entity_id=target
    )


def usage(user_id: str, count: int) -> DiscountUsage:
    return DiscountUsage(
        user_id=user_id,
        usage_count=count,
        first_used_at=NOW,
        last_used_at=NOW,
        transaction_ids=[f"tx-{i}" for i in range(count)],
    )


class TestDiscountAmount:
    """Amount computation for valid codes."""

    def test_percentage(self):
        result = evaluate(make_discount(value=Decimal("10")), context("250"))
        assert result.valid is True
        assert result.reason is None
        assert result.amount == Decimal("25.00")

    def test_percentage_clamped_to_max_discount(self):
        discount = make_discount(value=Decimal("10"), max_discount_amount=Decimal("20"))
        result = evaluate(discount, context("1000"))
        assert result.amount == Decimal("20.00")

    def test_fixed_amount(self):
        discount = make_discount(discount_type=DiscountType.FIXED_AMOUNT.value, value=Decimal("50"))
        result = evaluate(discount, context("140"))
        assert result.valid is True
        assert result.amount == Decimal("50.00")

    def test_fixed_amount_clamped_to_max_discount(self):
        discount = make_discount(
            discount_type=DiscountType.FIXED_AMOUNT.value,
            value=Decimal("75"),
            max_discount_amount=Decimal("60"),
        )
        assert evaluate(discount, context("140")).amount == Decimal("60.00")

    def test_percentage_rounds_half_up(self):
        discount = make_discount(value=Decimal("15"))
        assert evaluate(discount, context("33.33")).amount == Decimal("5.00")

    def test_buy_x_get_y_requires_manual_benefit(self):
        discount = make_discount(discount_type=DiscountType.BUY_X_GET_Y.value, value=Decimal("2"))
        result = evaluate(discount, context("500"))
        assert result.valid is True
        assert result.amount == Decimal("0.00")
        assert result.requires_manual_benefit is True


class TestDiscountValidity:
    """Each check produces its own reason; the first failing check wins."""

    def test_inactive(self):
        result = evaluate(make_discount(is_active=False), context())
        assert result.valid is False
        assert result.reason == REASON_INACTIVE
        assert result.amount == Decimal("0.00")

    def test_not_yet_valid(self):
        discount = make_discount(valid_from=NOW + timedelta(days=1))
        assert evaluate(discount, context()).reason == REASON_NOT_YET_VALID

    def test_expired(self):
        discount = make_discount(valid_until=NOW - timedelta(seconds=1))
        assert evaluate(discount, context()).reason == REASON_EXPIRED

    def test_window_bounds_are_inclusive(self):
        discount = make_discount(valid_from=NOW, valid_until=NOW)
        assert evaluate(discount, context()).valid is True

    def test_naive_window_is_treated_as_utc(self):
        discount = make_discount(
            valid_from=(NOW - timedelta(days=1)).replace(tzinfo=None),
            valid_until=(NOW + timedelta(days=1)).replace(tzinfo=None),
        )
        assert evaluate(discount, context()).valid is True

    def test_global_usage_limit(self):
        discount = make_discount(max_usage=3, current_usage=3)
        assert evaluate(discount, context()).reason == REASON_USAGE_LIMIT

    def test_user_usage_limit(self):
        discount = make_discount(
            max_usage_per_user=1, current_usage=1, usages=[usage("student-1", 1)]
        )
        assert evaluate(discount, context(user_id="student-1")).reason == REASON_USER_USAGE_LIMIT
        assert evaluate(discount, context(user_id="student-2")).valid is True

    def test_below_minimum_order(self):
        discount = make_discount(min_order_amount=Decimal("200"))
        assert evaluate(discount, context("199.99")).reason == REASON_BELOW_MINIMUM
        assert evaluate(discount, context("200")).valid is True

    def test_out_of_scope(self):
        discount = make_discount(applicable_ids=["group-a", "group-b"])
        assert evaluate(discount, context(target="group-c")).reason == REASON_OUT_OF_SCOPE
        assert evaluate(discount, context(target=None)).reason == REASON_OUT_OF_SCOPE
        assert evaluate(discount, context(target="group-b")).valid is True

    def test_empty_scope_applies_to_everything(self):
        assert evaluate(make_discount(applicable_ids=[]), context(target="anything")).valid is True

    def test_check_order_inactive_before_expired(self):
        discount = make_discount(is_active=False, valid_until=NOW - timedelta(days=1))
        assert evaluate(discount, context()).reason == REASON_INACTIVE

    def test_check_order_expired_before_usage_limit(self):
        discount = make_discount(
            valid_until=NOW - timedelta(days=1), max_usage=1, current_usage=1
        )
        assert evaluate(discount, context()).reason == REASON_EXPIRED

    def test_check_order_usage_limit_before_minimum(self):
        discount = make_discount(max_usage=1, current_usage=1, min_order_amount=Decimal("500"))
        assert evaluate(discount, context("10")).reason == REASON_USAGE_LIMIT


class TestEvaluateIsPure:
    def test_repeated_evaluation_does_not_change_the_discount(self):
        discount = make_discount(max_usage=5, current_usage=2, usages=[usage("student-1", 2)])

        results = [evaluate(discount, context()) for _ in range(10)]

        assert len(set(results)) == 1
        assert discount.current_usage == 2
        assert discount.usage_for("student-1").usage_count == 2
        assert len(discount.usages) == 1
