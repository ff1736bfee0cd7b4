"""API endpoints for Subscriptions module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoola_billing.core.database.session import get_db
from schoola_billing.modules.subscriptions.models import SubscriptionStatus
from schoola_billing.modules.subscriptions.schemas import (
    SubscriptionCreate,
    SubscriptionFilters,
    SubscriptionPaymentCreate,
    SubscriptionResponse,
)
from schoola_billing.modules.subscriptions.service import SubscriptionService, to_response
from schoola_billing.shared.schemas.base import ApiResponse
from schoola_billing.shared.utils.dates import utc_now

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post(
    "",
    response_model=ApiResponse[SubscriptionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    data: SubscriptionCreate,
    db: AsyncSession = Depends(get_db),
):
    """Enroll a student on a plan."""
    service = SubscriptionService(db)
    subscription = await service.create_subscription(data)
    return ApiResponse(
        success=True,
        message="Subscription created successfully",
        data=to_response(subscription, utc_now()),
    )


@router.get(
    "",
    response_model=ApiResponse[list[SubscriptionResponse]],
)
async def list_subscriptions(
    student_id: str | None = Query(None),
    subscription_status: SubscriptionStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """List subscriptions, optionally by student and derived status."""
    now = utc_now()
    service = SubscriptionService(db)
    subscriptions = await service.list_subscriptions(
        SubscriptionFilters(student_id=student_id, status=subscription_status), now=now
    )
    return ApiResponse(success=True, data=[to_response(s, now) for s in subscriptions])


@router.get(
    "/{subscription_id}",
    response_model=ApiResponse[SubscriptionResponse],
)
async def get_subscription(subscription_id: int, db: AsyncSession = Depends(get_db)):
    service = SubscriptionService(db)
    subscription = await service.get_subscription(subscription_id)
    return ApiResponse(success=True, data=to_response(subscription, utc_now()))


@router.post(
    "/{subscription_id}/payments",
    response_model=ApiResponse[SubscriptionResponse],
)
async def record_subscription_payment(
    subscription_id: int,
    data: SubscriptionPaymentCreate,
    db: AsyncSession = Depends(get_db),
):
    """Add a received amount to the subscription."""
    now = utc_now()
    service = SubscriptionService(db)
    subscription = await service.record_payment(subscription_id, data.amount, now=now)
    return ApiResponse(
        success=True,
        message="Payment recorded",
        data=to_response(subscription, now),
    )


@router.post(
    "/{subscription_id}/sessions",
    response_model=ApiResponse[SubscriptionResponse],
)
async def consume_session(subscription_id: int, db: AsyncSession = Depends(get_db)):
    """Mark one session as attended."""
    now = utc_now()
    service = SubscriptionService(db)
    subscription = await service.consume_session(subscription_id, now=now)
    return ApiResponse(success=True, data=to_response(subscription, now))


@router.post(
    "/{subscription_id}/renew",
    response_model=ApiResponse[SubscriptionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def renew_subscription(subscription_id: int, db: AsyncSession = Depends(get_db)):
    """Start the next period of the plan as a new subscription."""
    now = utc_now()
    service = SubscriptionService(db)
    renewal = await service.renew(subscription_id, now=now)
    return ApiResponse(
        success=True,
        message="Subscription renewed",
        data=to_response(renewal, now),
    )
