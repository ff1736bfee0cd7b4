"""API endpoints for Discounts module."""

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.database.session import get_db
from schoola_billing.modules.discounts.evaluator import EvaluationContext
from schoola_billing.modules.discounts.models import DiscountType
from schoola_billing.modules.discounts.schemas import (
    DiscountCreate,
    DiscountEvaluateRequest,
    DiscountEvaluationResponse,
    DiscountRedeemRequest,
    DiscountResponse,
    DiscountTypeStatistics,
    DiscountUpdate,
)
from schoola_billing.modules.discounts.service import DiscountService
from schoola_billing.shared.schemas.base import ApiResponse, PaginatedResponse
from schoola_billing.shared.utils.dates import utc_now

router = APIRouter(prefix="/discounts", tags=["Discounts"])


@router.post(
    "",
    response_model=ApiResponse[DiscountResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_discount(
    data: DiscountCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Create a new discount code."""
    service = DiscountService(db)
    discount = await service.create_discount(data, created_by=actor_id)
    return ApiResponse(
        success=True,
        message="Discount created successfully",
        data=DiscountResponse.model_validate(discount),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[DiscountResponse]],
)
async def list_discounts(
    active_only: bool = Query(False),
    discount_type: DiscountType | None = Query(None),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List discount codes. ``search`` matches code, name or description."""
    service = DiscountService(db)
    discounts, total = await service.list_discounts(
        active_only=active_only,
        discount_type=discount_type.value if discount_type else None,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[DiscountResponse.model_validate(d) for d in discounts],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/active",
    response_model=ApiResponse[PaginatedResponse[DiscountResponse]],
)
async def list_active_discounts(
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Codes that are switched on and inside their validity window right now."""
    service = DiscountService(db)
    discounts, total = await service.list_discounts(
        search=search, active_at=utc_now(), page=page, limit=limit
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[DiscountResponse.model_validate(d) for d in discounts],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/statistics",
    response_model=ApiResponse[list[DiscountTypeStatistics]],
)
async def get_statistics(db: AsyncSession = Depends(get_db)):
    """Code counts and redemptions per discount type."""
    service = DiscountService(db)
    return ApiResponse(success=True, data=await service.get_statistics())


@router.get(
    "/{code}",
    response_model=ApiResponse[DiscountResponse],
)
async def get_discount(code: str, db: AsyncSession = Depends(get_db)):
    """Get discount by code, including its usage ledger."""
    service = DiscountService(db)
    discount = await service.get_discount_by_code(code)
    return ApiResponse(success=True, data=DiscountResponse.model_validate(discount))


@router.patch(
    "/{code}",
    response_model=ApiResponse[DiscountResponse],
)
async def update_discount(
    code: str,
    data: DiscountUpdate,
    db: AsyncSession = Depends(get_db),
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    """Update a discount definition."""
    service = DiscountService(db)
    discount = await service.update_discount(code, data, updated_by=actor_id)
    return ApiResponse(
        success=True,
        message="Discount updated successfully",
        data=DiscountResponse.model_validate(discount),
    )


@router.post(
    "/{code}/evaluate",
    response_model=ApiResponse[DiscountEvaluationResponse],
)
async def evaluate_discount(
    code: str,
    data: DiscountEvaluateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Check a code against a proposed charge. Never changes usage counters."""
    service = DiscountService(db)
    evaluation = await service.evaluate_code(
        code,
        EvaluationContext(
            now=data.at or utc_now(),
            user_id=data.user_id,
            proposed_amount=data.proposed_amount,
            target_entity_id=data.target_entity_id,
        ),
    )
    return ApiResponse(
        success=True,
        data=DiscountEvaluationResponse(
            code=code.strip().upper(),
            valid=evaluation.valid,
            reason=evaluation.reason,
            amount=evaluation.amount,
            requires_manual_benefit=evaluation.requires_manual_benefit,
        ),
    )


@router.post(
    "/{code}/redeem",
    response_model=ApiResponse[DiscountResponse],
)
async def redeem_discount(
    code: str,
    data: DiscountRedeemRequest,
    db: AsyncSession = Depends(get_db),
):
    """Record a redemption in the usage ledger."""
    service = DiscountService(db)
    discount = await service.commit_usage(code, data.user_id, data.transaction_id)
    return ApiResponse(
        success=True,
        message="Discount redeemed",
        data=DiscountResponse.model_validate(discount),
    )
